import kopf
from logging import Logger
from porter_operator.handlers.reconcile import forget, reconcile, TRIGGER_EVENT, TRIGGER_TIMER
from porter_operator.resources import BaseResource, Installation
from porter_operator.types.settings import RESYNC_INTERVAL_SECONDS

KIND = Installation.KIND
PLURAL = Installation.PLURAL_NAME


@kopf.on.event(BaseResource.GROUP_NAME, BaseResource.GROUP_VERSION, PLURAL)
async def on_event(type, name, namespace, meta, logger: Logger, **kwargs):
    """Reconcile Installation resources on every change."""
    if type == "DELETED":
        forget(KIND, name, namespace)
        return
    await reconcile(KIND, name, namespace, logger, meta.get("generation", 0), TRIGGER_EVENT)


@kopf.timer(BaseResource.GROUP_NAME, BaseResource.GROUP_VERSION, PLURAL, interval=RESYNC_INTERVAL_SECONDS)
async def resync(name, namespace, meta, logger: Logger, **kwargs):
    await reconcile(KIND, name, namespace, logger, meta.get("generation", 0), TRIGGER_TIMER)
