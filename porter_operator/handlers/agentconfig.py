import kopf
from logging import Logger
from porter_operator.common.models.labels import Labels
from porter_operator.handlers.reconcile import forget, reconcile, TRIGGER_EVENT, TRIGGER_OWNER, TRIGGER_TIMER
from porter_operator.resources import AgentConfig, BaseResource
from porter_operator.types.settings import RESYNC_INTERVAL_SECONDS

KIND = AgentConfig.KIND
PLURAL = AgentConfig.PLURAL_NAME


@kopf.on.event(BaseResource.GROUP_NAME, BaseResource.GROUP_VERSION, PLURAL)
async def on_event(type, name, namespace, meta, logger: Logger, **kwargs):
    """Reconcile AgentConfig resources on every change."""
    if type == "DELETED":
        forget(KIND, name, namespace)
        return
    await reconcile(KIND, name, namespace, logger, meta.get("generation", 0), TRIGGER_EVENT)


@kopf.timer(BaseResource.GROUP_NAME, BaseResource.GROUP_VERSION, PLURAL, interval=RESYNC_INTERVAL_SECONDS)
async def resync(name, namespace, meta, logger: Logger, **kwargs):
    await reconcile(KIND, name, namespace, logger, meta.get("generation", 0), TRIGGER_TIMER)


@kopf.on.event("v1", "persistentvolumeclaims", labels={Labels.PLUGINS_LABEL: kopf.PRESENT})
async def on_plugin_claim_event(name, namespace, labels, logger: Logger, **kwargs):
    """Plugin claims binding or going away move the AgentConfig that created them."""
    if labels.get(Labels.RESOURCE_KIND_LABEL) != KIND:
        return
    owner = labels.get(Labels.RESOURCE_NAME_LABEL)
    if not owner:
        logger.debug(f"Plugin volume claim {name} does not name its {KIND}.")
        return
    await reconcile(KIND, owner, namespace, logger, trigger_source=TRIGGER_OWNER)
