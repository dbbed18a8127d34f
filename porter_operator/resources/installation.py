import copy
from typing import List, Optional
from porter_operator.resources.porter_resource import PorterResource
from porter_operator.types.models import InstallationSpec
from porter_operator.types.schemas import InstallationSpecSchema


class Installation(PorterResource):
    """A bundle installation.

    Uninstalling is not a separate porter command: the installation document is
    applied again with ``uninstalled: true``.
    """

    KIND = "Installation"
    PLURAL_NAME = "installations"
    SPEC_SCHEMA = InstallationSpecSchema
    DOCUMENT_FILE = "installation.yaml"

    spec: InstallationSpec

    def apply_args(self) -> List[str]:
        return ["installation", "apply", self.DOCUMENT_FILE]

    def delete_args(self) -> Optional[List[str]]:
        return None

    def prepare_delete_document(self) -> str:
        spec = copy.deepcopy(self.spec)
        spec.uninstalled = True
        return self.render_document(spec)
