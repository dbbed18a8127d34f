from typing import List
from porter_operator.resources.porter_resource import PorterResource
from porter_operator.types.models import ParameterSetSpec
from porter_operator.types.schemas import ParameterSetSpecSchema


class ParameterSet(PorterResource):
    """Named parameter mappings stored in porter."""

    KIND = "ParameterSet"
    PLURAL_NAME = "parametersets"
    SPEC_SCHEMA = ParameterSetSpecSchema
    DOCUMENT_FILE = "parameters.yaml"

    spec: ParameterSetSpec

    def apply_args(self) -> List[str]:
        return ["parameters", "apply", self.DOCUMENT_FILE]

    def delete_args(self) -> List[str]:
        return ["parameters", "delete", "-n", self.spec.namespace or "", self.spec.name or self.name]
