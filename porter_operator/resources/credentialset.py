from typing import List
from porter_operator.resources.porter_resource import PorterResource
from porter_operator.types.models import CredentialSetSpec
from porter_operator.types.schemas import CredentialSetSpecSchema


class CredentialSet(PorterResource):
    """Named credential mappings stored in porter."""

    KIND = "CredentialSet"
    PLURAL_NAME = "credentialsets"
    SPEC_SCHEMA = CredentialSetSpecSchema
    DOCUMENT_FILE = "credentials.yaml"

    spec: CredentialSetSpec

    def apply_args(self) -> List[str]:
        return ["credentials", "apply", self.DOCUMENT_FILE]

    def delete_args(self) -> List[str]:
        return ["credentials", "delete", "-n", self.spec.namespace or "", self.spec.name or self.name]
