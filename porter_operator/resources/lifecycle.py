"""Deletion and finalizer rules.

A reconciled resource carries the porter finalizer for as long as the operator
still has work to do on its behalf. Deletion of the resource is requested by
the user, acted upon by the reconciler (usually by running a delete-mode
command) and only completed once the reconciler drops the finalizer.
"""
from typing import Dict
from porter_operator.resources.base import BaseCustomResource
from porter_operator.resources.status import CONDITION_COMPLETED
from porter_operator.utils.helpers import is_condition_true

FINALIZER_NAME = "porter.sh/finalizer"


def is_deleted(body: Dict) -> bool:
    return bool((body.get("metadata") or {}).get("deletionTimestamp"))


def is_finalizer_set(body: Dict) -> bool:
    return FINALIZER_NAME in ((body.get("metadata") or {}).get("finalizers") or [])


def should_delete(body: Dict) -> bool:
    """Deletion was requested and the operator still holds the object."""
    return is_deleted(body) and is_finalizer_set(body)


def is_delete_processed(body: Dict) -> bool:
    """The delete-mode request for the object ran to completion."""
    conditions = (body.get("status") or {}).get("conditions")
    return is_deleted(body) and is_condition_true(conditions, CONDITION_COMPLETED)


async def ensure_finalizer_set(resource: BaseCustomResource) -> bool:
    """Add the finalizer if missing. Returns True when the object was changed."""
    if is_finalizer_set(resource.body):
        return False
    resource.logger.info(f"Adding finalizer to {resource.KIND} {resource.name}.")
    await resource.patch_metadata({"finalizers": resource.finalizers + [FINALIZER_NAME]})
    return True


async def remove_finalizer(resource: BaseCustomResource) -> bool:
    """Drop the finalizer so the API server can finish deleting the object."""
    if not is_finalizer_set(resource.body):
        return False
    resource.logger.info(f"Removing finalizer from {resource.KIND} {resource.name}.")
    finalizers = [f for f in resource.finalizers if f != FINALIZER_NAME]
    await resource.patch_metadata({"finalizers": finalizers or None})
    return True
