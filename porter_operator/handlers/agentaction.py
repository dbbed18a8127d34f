import kopf
from logging import Logger
from porter_operator.common.models.labels import Labels
from porter_operator.handlers.reconcile import (
    controller_owner,
    forget,
    reconcile_action_and_owner,
    TRIGGER_EVENT,
    TRIGGER_OWNER,
    TRIGGER_TIMER,
)
from porter_operator.resources import AgentAction, BaseResource
from porter_operator.types.settings import RESYNC_INTERVAL_SECONDS

PLURAL = AgentAction.PLURAL_NAME


@kopf.on.event(BaseResource.GROUP_NAME, BaseResource.GROUP_VERSION, PLURAL)
async def on_event(type, name, namespace, logger: Logger, **kwargs):
    """Run AgentActions and report their progress to the resource they run for."""
    if type == "DELETED":
        forget(AgentAction.KIND, name, namespace)
        return
    await reconcile_action_and_owner(name, namespace, logger, TRIGGER_EVENT)


@kopf.timer(BaseResource.GROUP_NAME, BaseResource.GROUP_VERSION, PLURAL, interval=RESYNC_INTERVAL_SECONDS)
async def resync(name, namespace, logger: Logger, **kwargs):
    # Also retries actions waiting for their AgentConfig to become ready
    await reconcile_action_and_owner(name, namespace, logger, TRIGGER_TIMER)


@kopf.on.event(
    "batch",
    "v1",
    "jobs",
    labels={
        Labels.MANAGED_LABEL: "true",
        Labels.JOB_TYPE_LABEL: Labels.JOB_TYPE_AGENT,
    },
)
async def on_job_event(name, namespace, meta, logger: Logger, **kwargs):
    """Job progress is reflected on the AgentAction that started it."""
    owner = controller_owner(meta, AgentAction.KIND)
    if owner is None:
        logger.debug(f"Agent job {name} is not controlled by an {AgentAction.KIND}.")
        return
    await reconcile_action_and_owner(owner["name"], namespace, logger, TRIGGER_OWNER)
