from .common import LocalObjectReference, ValueSource, NamedValueSource
from .installation_spec import InstallationSpec, BundleReference
from .credentialset_spec import CredentialSetSpec
from .parameterset_spec import ParameterSetSpec
from .agentconfig_spec import AgentConfigSpec, PluginFileSpec, Plugin
from .porterconfig_spec import PorterConfigSpec, PluginConfig
from .agentaction_spec import AgentActionSpec

__all__ = [
    "LocalObjectReference",
    "ValueSource",
    "NamedValueSource",
    "InstallationSpec",
    "BundleReference",
    "CredentialSetSpec",
    "ParameterSetSpec",
    "AgentConfigSpec",
    "PluginFileSpec",
    "Plugin",
    "PorterConfigSpec",
    "PluginConfig",
    "AgentActionSpec",
]
