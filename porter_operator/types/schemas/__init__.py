from .common import (
    LocalObjectReferenceSchema,
    ValueSourceSchema,
    NamedValueSourceSchema,
)
from .installation_spec import InstallationSpecSchema, BundleReferenceSchema
from .credentialset_spec import CredentialSetSpecSchema
from .parameterset_spec import ParameterSetSpecSchema
from .agentconfig_spec import AgentConfigSpecSchema, PluginFileSpecSchema, PluginSchema
from .porterconfig_spec import (
    PorterConfigSpecSchema,
    PorterConfigDocumentSchema,
    PluginConfigSchema,
)
from .agentaction_spec import AgentActionSpecSchema

__all__ = [
    "LocalObjectReferenceSchema",
    "ValueSourceSchema",
    "NamedValueSourceSchema",
    "InstallationSpecSchema",
    "BundleReferenceSchema",
    "CredentialSetSpecSchema",
    "ParameterSetSpecSchema",
    "AgentConfigSpecSchema",
    "PluginFileSpecSchema",
    "PluginSchema",
    "PorterConfigSpecSchema",
    "PorterConfigDocumentSchema",
    "PluginConfigSchema",
    "AgentActionSpecSchema",
]
