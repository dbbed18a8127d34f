"""Status bookkeeping shared by every reconciled kind.

Statuses are plain dicts in their wire form. They are computed in memory and
written with a merge-patch that carries the resourceVersion the computation was
based on, so a concurrent writer turns the patch into a version conflict rather
than being silently overwritten. Conflicts are retried by recomputing the status
from a fresh read, bounded by time and by attempts.
"""
import asyncio
import copy
from typing import Callable, Dict, List, Optional
from kubernetes_asyncio.client import ApiException
from porter_operator.resources.base import BaseCustomResource
from porter_operator.utils.errors import conflict_error, not_found_error, StatusPatchTimeout
from porter_operator.utils.helpers import (
    deep_compare_dict,
    is_condition_true,
    upsert_condition,
)

PHASE_UNKNOWN = "Unknown"
PHASE_PENDING = "Pending"
PHASE_RUNNING = "Running"
PHASE_SUCCEEDED = "Succeeded"
PHASE_FAILED = "Failed"

CONDITION_SCHEDULED = "Scheduled"
CONDITION_STARTED = "Started"
CONDITION_COMPLETED = "Completed"
CONDITION_FAILED = "Failed"

StatusMutator = Callable[[Dict, Dict], Dict]


def initialize_status(status: Optional[Dict], generation: int) -> Dict:
    """Reset a reconciled resource's status for a new generation.

    ObservedGeneration only moves together with a full reset of phase and conditions.
    """
    status = dict(status or {})
    status["observedGeneration"] = generation
    status["phase"] = PHASE_UNKNOWN
    status["conditions"] = []
    status["action"] = None
    return status


def set_condition(
    conditions: Optional[List[Dict]],
    type: str,
    reason: str,
    observed_generation: int,
    message: str = "",
) -> List[Dict]:
    """Mark a condition true. Conditions already true are left untouched."""
    if is_condition_true(conditions, type):
        return list(conditions)
    return upsert_condition(
        conditions,
        {
            "type": type,
            "status": "True",
            "reason": reason,
            "message": message,
            "observedGeneration": observed_generation,
        },
    )


def apply_action_to_status(status: Optional[Dict], generation: int, action: Optional[Dict]) -> Dict:
    """Derive a reconciled resource's status from the execution request made for it."""
    status = dict(status or {})
    status["observedGeneration"] = generation
    status["phase"] = PHASE_UNKNOWN

    if action is None:
        status["action"] = None
        status["conditions"] = []
        return status

    action_status = action.get("status") or {}
    status["action"] = {"name": action["metadata"]["name"]}
    if action_status.get("phase"):
        status["phase"] = action_status["phase"]
    status["conditions"] = copy.deepcopy(action_status.get("conditions") or [])
    return status


def changed_fields(old: Optional[Dict], new: Optional[Dict]) -> List[str]:
    old, new = old or {}, new or {}
    return sorted(
        key
        for key in set(old) | set(new)
        if not deep_compare_dict({"v": old.get(key)}, {"v": new.get(key)})
    )


def prepare_status_patch(old: Optional[Dict], new: Dict) -> Dict:
    """Status section of a merge-patch turning `old` into `new`.

    Merge-patch merges maps, so fields present in `old` but gone from `new` are
    removed explicitly with a null.
    """
    patch = dict(new)
    for key in old or {}:
        if key not in new:
            patch[key] = None
    return patch


async def patch_status(
    resource: BaseCustomResource,
    mutate: StatusMutator,
    timeout: float = None,
    max_attempts: int = None,
) -> Optional[Dict]:
    """Compute and write a resource's status, retrying on version conflicts.

    ``mutate`` receives a copy of the latest status and the latest body and
    returns the desired status. It is called again on every attempt, always
    against a fresh read. Returns the updated body, or None when the object no
    longer exists or when there is nothing to write.
    """
    conf = resource.conf
    timeout = conf.status_patch_timeout_seconds if timeout is None else timeout
    max_attempts = conf.status_patch_max_attempts if max_attempts is None else max_attempts
    loop = asyncio.get_running_loop()
    started = loop.time()
    attempt = 0

    body = resource.body
    while True:
        attempt += 1
        if body is None:
            return None
        current = copy.deepcopy(body.get("status") or {})
        desired = mutate(copy.deepcopy(current), body)
        fields = changed_fields(current, desired)
        if not fields:
            return None

        patch = {
            "metadata": {"resourceVersion": body["metadata"]["resourceVersion"]},
            "status": prepare_status_patch(current, desired),
        }
        try:
            updated = await resource.patch_custom_object_status(
                resource.custom_objects_api,
                resource.PLURAL_NAME,
                resource.name,
                resource.namespace,
                patch,
            )
        except ApiException as ex:
            if not_found_error(ex):
                resource.logger.debug(f"{resource.KIND} {resource.name} is gone, skipping status update.")
                return None
            if not conflict_error(ex):
                raise
            elapsed = loop.time() - started
            resource.sensor.on_status_conflict(
                resource.KIND, resource.name, resource.namespace, attempt
            )
            if attempt >= max_attempts or elapsed >= timeout:
                raise StatusPatchTimeout(
                    resource.KIND, resource.name, resource.namespace, attempt, elapsed
                ) from ex
            resource.logger.debug(
                f"Status of {resource.KIND} {resource.name} changed underneath us "
                f"(attempt {attempt}), retrying against the latest version."
            )
            body = await resource.fetch()
            continue

        resource.load(updated)
        resource.sensor.on_status_update(
            resource.KIND, resource.name, resource.namespace, fields
        )
        return updated
