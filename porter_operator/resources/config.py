"""Layered resolution of the agent and porter configuration used by a run.

Configuration is looked up, from least to most specific, in the operator
namespace (an object named ``default``), in the namespace of the run (an object
named ``default``) and finally in the object the run names explicitly. Each
layer overrides the top level fields it sets; nested structures such as the
plugin list are replaced as a whole.
"""
import re
import yaml
from typing import Any, Dict, List, Optional, Tuple
from porter_operator.common.models.plugins import PluginSet
from porter_operator.resources.base import BaseResource
from porter_operator.types.base import BaseModel, BaseSchema
from porter_operator.types.models import AgentConfigSpec, PorterConfigSpec, PluginConfig
from porter_operator.types.schemas import (
    AgentConfigSpecSchema,
    PorterConfigDocumentSchema,
    PorterConfigSpecSchema,
)
from porter_operator.types.settings import Settings
from porter_operator.utils.helpers import ordered_dict_to_dict

DEFAULT_CONFIG_NAME = "default"
AGENT_CONFIG_PLURAL = "agentconfigs"
PORTER_CONFIG_PLURAL = "porterconfigs"

DEFAULT_VOLUME_SIZE = "64Mi"
DEFAULT_INSTALLATION_SERVICE_ACCOUNT = "default"
PULL_ALWAYS = "Always"
PULL_IF_NOT_PRESENT = "IfNotPresent"
MUTABLE_TAGS = ("latest", "canary", "dev")

# algorithm:encoded, e.g. sha256:<hex>
_DIGEST = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]{32,}$")


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def merge_layers(schema: BaseSchema, layers: List[Optional[BaseModel]]) -> BaseModel:
    """Last-write-wins merge of the non-empty top level fields of each layer."""
    merged = {name: None for name in schema.fields}
    for layer in layers:
        if layer is None:
            continue
        for name in schema.fields:
            value = getattr(layer, name, None)
            if not _is_empty(value):
                merged[name] = value
    return schema.__model__(**merged)


def is_digest(version: str) -> bool:
    return bool(version) and bool(_DIGEST.match(version))


class ResolvedAgentConfig:
    """Agent configuration with defaults applied, as used to build an agent Job."""

    spec: AgentConfigSpec
    found: bool
    ready: bool
    source: Optional[str]

    def __init__(
        self,
        spec: AgentConfigSpec,
        conf: Settings,
        found: bool = False,
        ready: bool = False,
        source: Optional[str] = None,
    ):
        self.spec = spec
        self.conf = conf
        self.found = found
        self.ready = ready
        self.source = source

    @property
    def porter_repository(self) -> str:
        return self.spec.porter_repository or self.conf.porter_agent_repository

    @property
    def porter_version(self) -> str:
        return self.spec.porter_version or self.conf.porter_agent_version

    @property
    def porter_image(self) -> str:
        if is_digest(self.porter_version):
            return f"{self.porter_repository}@{self.porter_version}"
        return f"{self.porter_repository}:{self.porter_version}"

    @property
    def pull_policy(self) -> str:
        if self.spec.pull_policy:
            return self.spec.pull_policy
        if self.porter_version in MUTABLE_TAGS:
            return PULL_ALWAYS
        return PULL_IF_NOT_PRESENT

    @property
    def volume_size(self) -> str:
        return self.spec.volume_size or DEFAULT_VOLUME_SIZE

    @property
    def storage_class_name(self) -> Optional[str]:
        return self.spec.storage_class_name or None

    @property
    def service_account(self) -> Optional[str]:
        return self.spec.service_account or None

    @property
    def installation_service_account(self) -> str:
        return self.spec.installation_service_account or DEFAULT_INSTALLATION_SERVICE_ACCOUNT

    @property
    def plugins(self) -> PluginSet:
        plugin_file = self.spec.plugin_config_file
        return PluginSet.with_defaults(plugin_file.plugins if plugin_file else None)

    def plugins_claim_name(self, namespace: str) -> str:
        """Claim holding the installed plugins; empty when no AgentConfig is in effect."""
        if not self.found:
            return ""
        return self.plugins.claim_name(namespace)


def default_porter_config() -> PorterConfigSpec:
    """Porter configuration used when nothing is defined anywhere."""
    return PorterConfigSpec(
        debug=None,
        debug_plugins=None,
        namespace=None,
        experimental=None,
        build_driver=None,
        default_storage="in-cluster-mongodb",
        default_secrets=None,
        default_storage_plugin=None,
        default_secrets_plugin="kubernetes.secrets",
        storage=[
            PluginConfig(
                name="in-cluster-mongodb",
                plugin="mongodb",
                config={"url": "mongodb://mongodb.porter-operator-system.svc.cluster.local"},
            )
        ],
        secrets=None,
    )


def prepare_porter_config_document(spec: PorterConfigSpec) -> str:
    """Render porter's config.yaml."""
    data = ordered_dict_to_dict(PorterConfigDocumentSchema().dump(spec))
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


async def _read_layers(
    resource: BaseResource, plural: str, namespace: str, name: Optional[str]
) -> List[Tuple[str, Optional[Dict]]]:
    keys = [
        ("system", resource.conf.operator_namespace, DEFAULT_CONFIG_NAME),
        ("namespace", namespace, DEFAULT_CONFIG_NAME),
    ]
    if name:
        keys.append(("instance", namespace, name))

    layers = []
    seen = set()
    for level, ns, n in keys:
        # The operator namespace and the run namespace may be the same
        if (ns, n) in seen:
            continue
        seen.add((ns, n))
        body = await resource.get_custom_object(resource.custom_objects_api, plural, n, ns)
        if body is not None:
            resource.logger.debug(f"Found {plural} {ns}/{n} at the {level} level.")
        layers.append((level, body))
    return layers


async def resolve_agent_config(
    resource: BaseResource, namespace: str, name: Optional[str] = None
) -> ResolvedAgentConfig:
    """Merge the agent configuration layers that apply to a run in `namespace`."""
    schema = AgentConfigSpecSchema()
    layers = await _read_layers(resource, AGENT_CONFIG_PLURAL, namespace, name)
    found = [(level, body) for level, body in layers if body is not None]

    spec = merge_layers(schema, [schema.load(body.get("spec") or {}) for _, body in found])
    resolved = ResolvedAgentConfig(spec, resource.conf)
    if found:
        _, winner = found[-1]
        resolved.found = True
        resolved.ready = bool((winner.get("status") or {}).get("ready"))
        resolved.source = f"{winner['metadata']['namespace']}/{winner['metadata']['name']}"

    resource.logger.debug(
        f"Resolved porter agent configuration: image={resolved.porter_image}, "
        f"pullPolicy={resolved.pull_policy}, serviceAccount={resolved.service_account}, "
        f"volumeSize={resolved.volume_size}, "
        f"installationServiceAccount={resolved.installation_service_account}, "
        f"plugins={resolved.plugins.names if resolved.found else []}"
    )
    return resolved


async def resolve_porter_config(
    resource: BaseResource, namespace: str, name: Optional[str] = None
) -> PorterConfigSpec:
    """Merge the built-in default with the porter configuration layers of a run."""
    schema = PorterConfigSpecSchema()
    layers = await _read_layers(resource, PORTER_CONFIG_PLURAL, namespace, name)
    specs = [schema.load(body.get("spec") or {}) for _, body in layers if body is not None]
    return merge_layers(schema, [default_porter_config(), *specs])
