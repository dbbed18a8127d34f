"""AgentConfig reconciliation and the plugin volume it prepares.

Plugins are installed once per distinct plugin set and namespace into a claim
named after a digest of the set, so AgentConfigs configuring the same plugins
share it. A claim cannot be renamed, so installation goes through a temporary
claim whose volume is handed over to the hash-named claim once porter is done:

    Uninitialized -> InstallRunning -> AwaitingBind -> Rebinding -> Ready

Every claim of a plugin set carries the ``porter.sh/plugins`` selector label,
which is how the state is read back on each reconcile.
"""
from typing import Dict, List, Optional, Tuple
import kopf
from kubernetes_asyncio.client import (
    ApiException,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1VolumeResourceRequirements,
)
from porter_operator.common.models.labels import Labels
from porter_operator.common.models.plugins import PluginSet
from porter_operator.resources.agentaction import AgentAction
from porter_operator.resources.config import ResolvedAgentConfig
from porter_operator.resources.lifecycle import (
    ensure_finalizer_set,
    is_deleted,
    remove_finalizer,
    should_delete,
)
from porter_operator.resources.porter_resource import PorterResource
from porter_operator.resources.status import (
    CONDITION_COMPLETED,
    PHASE_SUCCEEDED,
    apply_action_to_status,
    patch_status,
)
from porter_operator.types.models import AgentConfigSpec
from porter_operator.types.schemas import AgentConfigSpecSchema
from porter_operator.utils.errors import already_exists_error, PluginVolumeCardinalityError
from porter_operator.utils.helpers import is_condition_true

CLAIM_BOUND = "Bound"

STATE_UNINITIALIZED = "Uninitialized"
STATE_INSTALL_RUNNING = "InstallRunning"
STATE_AWAITING_BIND = "AwaitingBind"
STATE_REBINDING = "Rebinding"
STATE_READY = "Ready"
STATE_CLEANING_UP = "CleaningUp"
STATE_DELETED = "Deleted"


def is_bound(claim: Optional[V1PersistentVolumeClaim]) -> bool:
    return claim is not None and claim.status is not None and claim.status.phase == CLAIM_BOUND


def is_action_complete(action: Optional[Dict]) -> bool:
    status = (action or {}).get("status") or {}
    return status.get("phase") == PHASE_SUCCEEDED and is_condition_true(
        status.get("conditions"), CONDITION_COMPLETED
    )


def split_claims(
    claims: List[V1PersistentVolumeClaim], claim_name: str
) -> Tuple[Optional[V1PersistentVolumeClaim], Optional[V1PersistentVolumeClaim]]:
    """Separate the hash-named claim from the temporary one.

    Returns None for the claims that do not exist. Raises ValueError for any
    combination the state machine cannot converge from: more than two claims,
    or two temporary claims. Only one install runs per plugin set, so at most
    one temporary claim can exist, even when no hash-named claim does yet.
    """
    hash_claims = [c for c in claims if c.metadata.name == claim_name]
    temp_claims = [c for c in claims if c.metadata.name != claim_name]
    if len(claims) > 2 or len(temp_claims) > 1:
        raise ValueError(f"unexpected plugin claims {[c.metadata.name for c in claims]}")
    return (
        hash_claims[0] if hash_claims else None,
        temp_claims[0] if temp_claims else None,
    )


def plugin_volume_state(
    hash_claim: Optional[V1PersistentVolumeClaim],
    temp_claim: Optional[V1PersistentVolumeClaim],
    action: Optional[Dict],
) -> str:
    if hash_claim is not None:
        if temp_claim is None and is_bound(hash_claim):
            return STATE_READY
        return STATE_REBINDING
    if temp_claim is not None:
        if action is not None and is_action_complete(action):
            return STATE_AWAITING_BIND
        return STATE_INSTALL_RUNNING
    return STATE_UNINITIALIZED


def apply_agent_config_status(status: Optional[Dict], generation: int, action: Optional[Dict]) -> Dict:
    """Action derived status plus readiness, which only survives within a generation."""
    status = dict(status or {})
    ready = bool(status.get("ready")) and status.get("observedGeneration") == generation
    status = apply_action_to_status(status, generation, action)
    status["ready"] = ready
    return status


class AgentConfig(PorterResource):
    """Configuration of the porter agent, including the plugins it runs with."""

    KIND = "AgentConfig"
    PLURAL_NAME = "agentconfigs"
    SPEC_SCHEMA = AgentConfigSpecSchema

    PLUGINS_HASH_ANNOTATION = "agent-config-plugins-hash"

    spec: AgentConfigSpec

    @property
    def plugins(self) -> PluginSet:
        plugin_file = self.spec.plugin_config_file
        return PluginSet.with_defaults(plugin_file.plugins if plugin_file else None)

    @property
    def resolved(self) -> ResolvedAgentConfig:
        return ResolvedAgentConfig(self.spec, self.conf, found=True)

    def apply_args(self) -> List[str]:
        return self.plugins.install_args()

    def delete_args(self) -> Optional[List[str]]:
        return None

    def claim_labels(self) -> Labels:
        return (
            self.plugins.selector_labels()
            .include_resource_kind(self.KIND)
            .include_resource_name(self.name)
        )

    def prepare_install_spec(self, claim_name: str) -> Dict:
        """Spec of the AgentAction installing the plugins into `claim_name`."""
        return {
            "agentConfig": {"name": self.name},
            "args": self.apply_args(),
            "volumes": [
                {
                    "name": AgentAction.VOLUME_PLUGINS_NAME,
                    "persistentVolumeClaim": {"claimName": claim_name},
                }
            ],
            "volumeMounts": [
                {
                    "name": AgentAction.VOLUME_PLUGINS_NAME,
                    "mountPath": AgentAction.VOLUME_PLUGINS_PATH,
                    "subPath": "plugins",
                }
            ],
        }

    def report_transition(self, from_state: str, to_state: str) -> None:
        self.logger.info(f"Plugin volume of {self.KIND} {self.name}: {from_state} -> {to_state}.")
        self.sensor.on_plugin_volume_transition(self.name, self.namespace, from_state, to_state)

    # =============================================================================
    # Reconcile
    # =============================================================================

    async def reconcile(self) -> Optional[Dict]:
        if await self.fetch() is None:
            self.logger.debug(f"{self.KIND} {self.name} not found, nothing to do.")
            return None

        action = await self.fetch_action()
        await self.sync_status(action)

        if should_delete(self.body):
            if await self.cleanup():
                await remove_finalizer(self)
            return self.body

        if is_deleted(self.body):
            self.logger.debug(f"{self.KIND} {self.name} is being deleted and holds no finalizer.")
            return self.body

        if await ensure_finalizer_set(self):
            return self.body

        await self.reconcile_plugin_volume(action)
        return self.body

    async def sync_status(self, action: Optional[Dict]) -> None:
        await patch_status(self, lambda status, body: apply_agent_config_status(
            status, int(body["metadata"].get("generation") or 0), action
        ))

    async def list_plugin_claims(self) -> List[V1PersistentVolumeClaim]:
        return await self.list_persistent_volume_claims(
            self.core_v1_api, self.namespace, self.plugins.selector_labels().as_str()
        )

    async def reconcile_plugin_volume(self, action: Optional[Dict]) -> str:
        """Advance the plugin volume by one step. Returns the state it was found in."""
        plugins = self.plugins
        claim_name = plugins.claim_name(self.namespace)
        claims = await self.list_plugin_claims()
        try:
            hash_claim, temp_claim = split_claims(claims, claim_name)
        except ValueError:
            raise PluginVolumeCardinalityError(
                self.namespace, plugins.hash, [c.metadata.name for c in claims]
            )

        state = plugin_volume_state(hash_claim, temp_claim, action)
        self.logger.debug(f"Plugin volume of {self.KIND} {self.name} ({plugins}) is {state}.")

        if action is not None and state != STATE_UNINITIALIZED and self.retry_requested(action):
            if state in (STATE_INSTALL_RUNNING, STATE_AWAITING_BIND):
                await self.retry_action(action)
            else:
                await self.acknowledge_retry(action, state)
            return state

        if state == STATE_READY:
            await self.mark_ready(hash_claim, STATE_REBINDING if action is not None else STATE_UNINITIALIZED)
        elif state == STATE_REBINDING:
            await self.rebind(temp_claim, hash_claim)
        elif state in (STATE_INSTALL_RUNNING, STATE_AWAITING_BIND):
            await self.install(temp_claim, action, claim_name)
        elif action is not None:
            self.logger.warning(
                f"{AgentAction.KIND} {action['metadata']['name']} exists for {self.KIND} {self.name} "
                f"but no plugin volume claim was found; update the {self.KIND} to install the plugins again."
            )
        else:
            claim = await self.create_temporary_claim()
            await self.dispatch(self.prepare_install_spec(claim.metadata.name), "install")
            self.report_transition(STATE_UNINITIALIZED, STATE_INSTALL_RUNNING)
        return state

    async def install(
        self,
        temp_claim: V1PersistentVolumeClaim,
        action: Optional[Dict],
        claim_name: str,
    ) -> None:
        if action is None:
            # The claim was created but the run was never requested
            await self.dispatch(self.prepare_install_spec(temp_claim.metadata.name), "install")
            self.report_transition(STATE_UNINITIALIZED, STATE_INSTALL_RUNNING)
            return

        if not is_action_complete(action):
            self.logger.debug(f"Waiting for {AgentAction.KIND} {action['metadata']['name']} to install plugins.")
            return

        if not is_bound(temp_claim):
            self.logger.debug(f"Waiting for plugin volume claim {temp_claim.metadata.name} to be bound.")
            return

        await self.create_hash_claim(temp_claim, claim_name)
        self.report_transition(STATE_AWAITING_BIND, STATE_REBINDING)

    async def acknowledge_retry(self, action: Dict, state: str) -> None:
        """Record a retry that came after the temporary claim was handed over.

        The installed volume already belongs to the hash-named claim, so there is
        nothing left for the action to rerun against. Only the annotation moves.
        The retry label, and with it the action's Job, stays as it is.
        """
        action_name = action["metadata"]["name"]
        patch = {
            "metadata": {
                "resourceVersion": action["metadata"].get("resourceVersion"),
                "annotations": {self.RETRY_ANNOTATION: self.retry or None},
            }
        }
        async with self.track_resource_sync(AgentAction.KIND, action_name, "patch"):
            await self.patch_custom_object(
                self.custom_objects_api, AgentAction.PLURAL_NAME, action_name, self.namespace, patch
            )
        message = (
            f"Plugins of {self.KIND} {self.name} are past installation ({state}), ignoring the retry. "
            f"Change the plugins to install them again."
        )
        self.logger.warning(message)
        kopf.warn(self.body, reason="RetryIgnored", message=message)

    async def create_temporary_claim(self) -> V1PersistentVolumeClaim:
        resolved = self.resolved
        claim = V1PersistentVolumeClaim(
            api_version="v1",
            kind="PersistentVolumeClaim",
            metadata=V1ObjectMeta(
                generate_name=f"{self.name}-",
                namespace=self.namespace,
                labels=self.claim_labels().as_dict(),
            ),
            spec=V1PersistentVolumeClaimSpec(
                access_modes=["ReadWriteOnce"],
                storage_class_name=resolved.storage_class_name,
                resources=V1VolumeResourceRequirements(
                    requests={"storage": resolved.volume_size}
                ),
            ),
        )
        async with self.track_resource_sync("PersistentVolumeClaim", claim.metadata.generate_name, "create"):
            claim = await self.create_persistent_volume_claim(self.core_v1_api, self.namespace, claim)
        self.logger.info(f"Created temporary plugin volume claim {claim.metadata.name} for {self.KIND} {self.name}.")
        return claim

    async def create_hash_claim(
        self, temp_claim: V1PersistentVolumeClaim, claim_name: str
    ) -> V1PersistentVolumeClaim:
        """Create the claim the installed volume is handed over to."""
        claim = V1PersistentVolumeClaim(
            api_version="v1",
            kind="PersistentVolumeClaim",
            metadata=V1ObjectMeta(
                name=claim_name,
                namespace=self.namespace,
                labels=self.claim_labels().as_dict(),
            ),
            spec=V1PersistentVolumeClaimSpec(
                access_modes=temp_claim.spec.access_modes,
                resources=temp_claim.spec.resources,
                storage_class_name=temp_claim.spec.storage_class_name,
                volume_name=temp_claim.spec.volume_name,
            ),
        )
        try:
            async with self.track_resource_sync("PersistentVolumeClaim", claim_name, "create"):
                claim = await self.create_persistent_volume_claim(self.core_v1_api, self.namespace, claim)
        except ApiException as ex:
            if not already_exists_error(ex):
                raise
            self.logger.debug(f"Plugin volume claim {claim_name} already exists.")
            return await self.fetch_persistent_volume_claim(self.core_v1_api, claim_name, self.namespace)
        self.logger.info(
            f"Created plugin volume claim {claim_name} for volume {temp_claim.spec.volume_name} "
            f"of {self.KIND} {self.name}."
        )
        return claim

    async def rebind(
        self, temp_claim: Optional[V1PersistentVolumeClaim], hash_claim: V1PersistentVolumeClaim
    ) -> None:
        """Point the installed volume at the hash-named claim and drop the temporary one."""
        if temp_claim is None:
            self.logger.debug(f"Waiting for plugin volume claim {hash_claim.metadata.name} to be bound.")
            return

        pv = await self.fetch_persistent_volume(self.core_v1_api, temp_claim.spec.volume_name)
        claim_ref = pv.spec.claim_ref if pv is not None else None
        if pv is not None and (
            claim_ref is None
            or claim_ref.name != hash_claim.metadata.name
            or claim_ref.uid != hash_claim.metadata.uid
        ):
            patch = {
                "metadata": {"resourceVersion": pv.metadata.resource_version},
                "spec": {
                    "claimRef": {
                        "apiVersion": "v1",
                        "kind": "PersistentVolumeClaim",
                        "namespace": hash_claim.metadata.namespace,
                        "name": hash_claim.metadata.name,
                        "uid": hash_claim.metadata.uid,
                        "resourceVersion": hash_claim.metadata.resource_version,
                    }
                },
            }
            async with self.track_resource_sync("PersistentVolume", pv.metadata.name, "patch"):
                await self.patch_persistent_volume(self.core_v1_api, pv.metadata.name, patch)
            self.logger.info(
                f"Repointed volume {pv.metadata.name} from claim {temp_claim.metadata.name} "
                f"to {hash_claim.metadata.name}."
            )
            return

        if not is_bound(hash_claim):
            self.logger.debug(f"Waiting for plugin volume claim {hash_claim.metadata.name} to be bound.")
            return

        name = temp_claim.metadata.name
        async with self.track_resource_sync("PersistentVolumeClaim", name, "delete"):
            if temp_claim.metadata.finalizers:
                await self.patch_persistent_volume_claim(
                    self.core_v1_api, name, self.namespace, {"metadata": {"finalizers": None}}
                )
            await self.delete_persistent_volume_claim(self.core_v1_api, name, self.namespace)
        self.logger.info(f"Deleted temporary plugin volume claim {name}.")

    async def mark_ready(self, hash_claim: V1PersistentVolumeClaim, from_state: str) -> None:
        was_ready = bool(self.status.get("ready"))

        def ready(status: Dict, body: Dict) -> Dict:
            status["ready"] = True
            return status

        await patch_status(self, ready)

        claim_name = hash_claim.metadata.name
        if self.annotations.get(self.PLUGINS_HASH_ANNOTATION) != claim_name:
            await self.patch_metadata({"annotations": {self.PLUGINS_HASH_ANNOTATION: claim_name}})

        if not was_ready:
            kopf.info(
                self.body,
                reason="PluginsReady",
                message=f"Plugins {', '.join(self.plugins.names)} are installed in {claim_name}.",
            )
            self.report_transition(from_state, STATE_READY)

    # =============================================================================
    # Cleanup
    # =============================================================================

    async def cleanup(self) -> bool:
        """Release the plugin volumes. Returns True once nothing is left.

        A volume loses its finalizers before its claim does, so that volume
        reclamation never races a claim still in use.
        """
        claims = await self.list_plugin_claims()
        for claim in claims:
            pv = await self.fetch_persistent_volume(self.core_v1_api, claim.spec.volume_name)
            if pv is not None:
                async with self.track_resource_sync("PersistentVolume", pv.metadata.name, "delete"):
                    if pv.metadata.finalizers:
                        await self.patch_persistent_volume(
                            self.core_v1_api, pv.metadata.name, {"metadata": {"finalizers": None}}
                        )
                    await self.delete_persistent_volume(self.core_v1_api, pv.metadata.name)
                self.logger.info(f"Deleted plugin volume {pv.metadata.name}.")

            name = claim.metadata.name
            async with self.track_resource_sync("PersistentVolumeClaim", name, "delete"):
                if claim.metadata.finalizers:
                    await self.patch_persistent_volume_claim(
                        self.core_v1_api, name, self.namespace, {"metadata": {"finalizers": None}}
                    )
                await self.delete_persistent_volume_claim(self.core_v1_api, name, self.namespace)
            self.logger.info(f"Deleted plugin volume claim {name}.")

        remaining = await self.list_plugin_claims()
        if remaining:
            self.logger.debug(
                f"Waiting for plugin volume claims {[c.metadata.name for c in remaining]} to go away."
            )
            return False

        if claims:
            self.report_transition(STATE_CLEANING_UP, STATE_DELETED)
        return True
