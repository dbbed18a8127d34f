"""Reconciliation shared by every porter resource kind.

A porter resource is realized by handing a document describing it to a porter
agent. Each generation of the resource gets exactly one AgentAction, found
again by its labels, and the resource status is a copy of that action's
status. The kinds only differ in the document they render and the porter
command they run.
"""
import base64
import yaml
from typing import Dict, List, Optional
import kopf
from porter_operator.common.models.labels import Labels
from porter_operator.resources.agentaction import AgentAction, retry_label_value
from porter_operator.resources.base import BaseCustomResource
from porter_operator.resources.lifecycle import (
    ensure_finalizer_set,
    is_delete_processed,
    is_deleted,
    is_finalizer_set,
    remove_finalizer,
    should_delete,
)
from porter_operator.resources.status import (
    apply_action_to_status,
    initialize_status,
    patch_status,
)
from porter_operator.types.models.common import LocalObjectReference
from porter_operator.utils.helpers import ordered_dict_to_dict


class PorterResource(BaseCustomResource):
    """A resource reconciled by running porter in an agent.

    Subclasses set ``KIND``, ``PLURAL_NAME``, ``SPEC_SCHEMA`` and
    ``DOCUMENT_FILE`` and implement :meth:`apply_args` and :meth:`delete_args`.
    """

    SPEC_SCHEMA = None
    DOCUMENT_FILE: str = None

    spec = None

    def load(self, body: Dict) -> None:
        super().load(body)
        self.spec = self.SPEC_SCHEMA().load((body or {}).get("spec") or {})

    @property
    def agent_config(self) -> Optional[LocalObjectReference]:
        return getattr(self.spec, "agent_config", None)

    @property
    def porter_config(self) -> Optional[LocalObjectReference]:
        return getattr(self.spec, "porter_config", None)

    def prepare_document(self) -> str:
        """Render the spec in porter's own file format."""
        return self.render_document(self.spec)

    def render_document(self, spec) -> str:
        data = self.SPEC_SCHEMA(exclude=("agent_config", "porter_config")).dump(spec)
        return yaml.safe_dump(ordered_dict_to_dict(data), default_flow_style=False, sort_keys=False)

    def apply_args(self) -> List[str]:
        raise NotImplementedError()

    def delete_args(self) -> Optional[List[str]]:
        """Arguments of the delete-mode command; None to apply a teardown document instead."""
        raise NotImplementedError()

    def prepare_delete_document(self) -> Optional[str]:
        return None

    def action_labels(self) -> Labels:
        """Labels identifying the action of the current generation, retry excluded."""
        return (
            Labels()
            .include_managed()
            .include_resource_kind(self.KIND)
            .include_resource_name(self.name)
            .include_resource_generation(self.generation)
        )

    # =============================================================================
    # Reconcile
    # =============================================================================

    async def reconcile(self) -> Optional[Dict]:
        """Converge the resource one step. Safe to call any number of times."""
        if await self.fetch() is None:
            self.logger.debug(f"{self.KIND} {self.name} not found, nothing to do.")
            return None

        action = await self.fetch_action()
        await self.sync_status(action)

        if is_delete_processed(self.body):
            self.logger.info(f"Deletion of {self.KIND} {self.name} has completed.")
            await remove_finalizer(self)
            return self.body

        if action is not None:
            if self.retry_requested(action):
                await self.retry_action(action)
            else:
                self.logger.debug(
                    f"{AgentAction.KIND} {action['metadata']['name']} already handles "
                    f"generation {self.generation} of {self.KIND} {self.name}."
                )
            return self.body

        if should_delete(self.body):
            await self.dispatch(self.prepare_action_spec(delete=True), "delete")
            return self.body

        if is_deleted(self.body) and not is_finalizer_set(self.body):
            self.logger.debug(f"{self.KIND} {self.name} is being deleted and holds no finalizer.")
            return self.body

        if await ensure_finalizer_set(self):
            # Adding the finalizer triggers another reconcile
            return self.body

        await self.dispatch(self.prepare_action_spec())
        return self.body

    async def sync_status(self, action: Optional[Dict]) -> None:
        await patch_status(self, lambda status, body: apply_action_to_status(
            status, int(body["metadata"].get("generation") or 0), action
        ))

    async def fetch_action(self) -> Optional[Dict]:
        actions = await self.list_custom_objects(
            self.custom_objects_api,
            AgentAction.PLURAL_NAME,
            self.namespace,
            self.action_labels().as_str(),
        )
        if len(actions) > 1:
            self.logger.warning(
                f"Found {len(actions)} {AgentAction.KIND}s for generation {self.generation} "
                f"of {self.KIND} {self.name}, using {actions[0]['metadata']['name']}."
            )
        return actions[0] if actions else None

    def retry_requested(self, action: Dict) -> bool:
        """The retry annotation changed since it was handed to `action`."""
        return self.retry != (action["metadata"].get("annotations") or {}).get(self.RETRY_ANNOTATION, "")

    async def retry_action(self, action: Dict) -> Dict:
        """Reset the status and hand the new retry marker to the existing action."""
        action_name = action["metadata"]["name"]
        self.logger.info(f"Retrying {AgentAction.KIND} {action_name} for {self.KIND} {self.name}.")

        def reset(status: Dict, body: Dict) -> Dict:
            status = initialize_status(status, int(body["metadata"].get("generation") or 0))
            status["action"] = {"name": action_name}
            return status

        await patch_status(self, reset)

        patch = {
            "metadata": {
                "resourceVersion": action["metadata"].get("resourceVersion"),
                "labels": {Labels.RETRY_LABEL: retry_label_value(self.retry)},
                "annotations": {self.RETRY_ANNOTATION: self.retry or None},
            }
        }
        async with self.track_resource_sync(AgentAction.KIND, action_name, "patch"):
            action = await self.patch_custom_object(
                self.custom_objects_api, AgentAction.PLURAL_NAME, action_name, self.namespace, patch
            )
        kopf.info(self.body, reason="Retry", message=f"Retrying {AgentAction.KIND} {action_name}.")
        self.sensor.on_agent_action_dispatched(self.KIND, self.name, self.namespace, "retry")
        return action

    # =============================================================================
    # Dispatch
    # =============================================================================

    def prepare_action_spec(self, delete: bool = False) -> Dict:
        """Spec of the AgentAction that applies or deletes this resource in porter."""
        spec = {}
        if self.agent_config is not None:
            spec["agentConfig"] = {"name": self.agent_config.name}
        if self.porter_config is not None:
            spec["porterConfig"] = {"name": self.porter_config.name}

        args = self.delete_args() if delete else None
        if args is not None:
            spec["args"] = args
            return spec

        document = self.prepare_delete_document() if delete else self.prepare_document()
        spec["args"] = self.apply_args()
        spec["files"] = {self.DOCUMENT_FILE: base64.b64encode(document.encode()).decode()}
        return spec

    def prepare_action(self, spec: Dict) -> Dict:
        """Wrap an action spec with the labels and owner of the current generation."""
        labels = Labels.generate_resource_labels(
            self.KIND, self.name, self.generation, retry_label_value(self.retry)
        ).include_missing(self.labels)

        action = {
            "apiVersion": self.API_VERSION,
            "kind": AgentAction.KIND,
            "metadata": {
                "generateName": f"{self.name}-",
                "namespace": self.namespace,
                "labels": labels.as_dict(),
                "annotations": self.annotations,
            },
            "spec": spec,
        }
        kopf.append_owner_reference(action, owner=self.body, controller=True, block_owner_deletion=True)
        return action

    async def dispatch(self, spec: Dict, mode: str = "apply") -> Dict:
        """Start a fresh run for the current generation."""
        await patch_status(self, lambda status, body: initialize_status(
            status, int(body["metadata"].get("generation") or 0)
        ))

        body = self.prepare_action(spec)
        async with self.track_resource_sync(AgentAction.KIND, body["metadata"]["generateName"], "create"):
            action = await self.create_custom_object(
                self.custom_objects_api, AgentAction.PLURAL_NAME, self.namespace, body
            )
        action_name = action["metadata"]["name"]
        self.logger.info(
            f"Created {AgentAction.KIND} {action_name} to {mode} {self.KIND} {self.name} "
            f"(generation {self.generation})."
        )
        kopf.info(
            self.body,
            reason="AgentActionCreated",
            message=f"Running porter {' '.join(spec.get('args') or [])} in {AgentAction.KIND} {action_name}.",
        )
        self.sensor.on_agent_action_dispatched(self.KIND, self.name, self.namespace, mode)

        await self.sync_status(action)
        return action
