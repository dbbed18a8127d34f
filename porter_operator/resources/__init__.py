from .base import BaseResource, BaseCustomResource
from .agentaction import AgentAction
from .porter_resource import PorterResource
from .installation import Installation
from .credentialset import CredentialSet
from .parameterset import ParameterSet
from .agentconfig import AgentConfig

__all__ = [
    "BaseResource",
    "BaseCustomResource",
    "AgentAction",
    "PorterResource",
    "Installation",
    "CredentialSet",
    "ParameterSet",
    "AgentConfig",
]
