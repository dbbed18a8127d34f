import asyncio
import kopf
import logging
from collections import defaultdict
from logging import Logger
from typing import Dict, Optional, Tuple, Type
from kubernetes_asyncio.client import ApiException
from porter_operator.resources import (
    AgentAction,
    AgentConfig,
    BaseCustomResource,
    CredentialSet,
    Installation,
    ParameterSet,
)
from porter_operator.utils.errors import conflict_error, convert_api_exception

# Event, owner and timer triggered reconciles of one object never overlap
reconcile_locks: Dict[Tuple[str, str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

RECONCILERS: Dict[str, Type[BaseCustomResource]] = {
    cls.KIND: cls
    for cls in (Installation, CredentialSet, ParameterSet, AgentConfig, AgentAction)
}

TRIGGER_EVENT = "event"
TRIGGER_OWNER = "owner"
TRIGGER_TIMER = "timer"


class TimerLogFilter(logging.Filter):
    def filter(self, record):
        """Timer logs are noisy so we filter them out."""
        return "Timer " not in record.getMessage()


kopf_logger = logging.getLogger("kopf.objects")
kopf_logger.addFilter(TimerLogFilter())


def get_sensor():
    """Get the sensor shared by all resources."""
    return getattr(BaseCustomResource, "sensor", None)


def forget(kind: str, name: str, namespace: str) -> None:
    """Drop the lock of an object that is gone from the cluster."""
    reconcile_locks.pop((kind, namespace, name), None)


def controller_owner(meta: Dict, kind: str = None) -> Optional[Dict]:
    """Owner reference of the controlling owner, optionally restricted to `kind`."""
    for ref in meta.get("ownerReferences") or []:
        if not ref.get("controller"):
            continue
        if kind is None or ref.get("kind") == kind:
            return ref
    return None


async def reconcile(
    kind: str,
    name: str,
    namespace: str,
    logger: Logger,
    generation: int = 0,
    trigger_source: str = TRIGGER_EVENT,
) -> Optional[Dict]:
    """Reconcile one object of `kind`, serialized with any other reconcile of it."""
    resource_cls = RECONCILERS.get(kind)
    if resource_cls is None:
        logger.debug(f"No reconciler for kind {kind}, skipping {namespace}/{name}.")
        return None

    sensor = get_sensor()
    async with reconcile_locks[(kind, namespace, name)]:
        sensor_state = None
        if sensor:
            sensor_state = sensor.on_reconcile_start(kind, name, namespace, generation, trigger_source)

        success = True
        error = None
        resource = resource_cls(name, namespace, logger=logger)
        try:
            logger.debug(f"Reconciling {kind}/{name} in {namespace} namespace ({trigger_source}).")
            body = await resource.reconcile()
            logger.debug(f"Reconciled {kind}/{name} in {namespace} namespace.")
            return body
        except kopf.TemporaryError as e:
            success = False
            error = e
            logger.info(f"Reconciliation of {kind}/{name} postponed: {e}")
            raise
        except ApiException as e:
            success = False
            error = e
            if conflict_error(e):
                logger.info(f"{kind}/{name} changed during reconciliation, retrying.")
                raise kopf.TemporaryError(f"{kind} {namespace}/{name} changed during reconciliation", delay=1) from e
            logger.error(f"Kubernetes API error during reconcilation of {kind}/{name}: {e.status} {e.reason}")
            convert_api_exception(e)
        except Exception as e:
            success = False
            error = e
            logger.error(f"Unexpected error during reconcilation of {kind}/{name}: {e}")
            logger.exception(e)
            raise
        finally:
            if sensor:
                sensor.on_reconcile_complete(kind, name, namespace, sensor_state, success, error)


async def reconcile_action_and_owner(
    name: str, namespace: str, logger: Logger, trigger_source: str = TRIGGER_EVENT
) -> None:
    """Reconcile an AgentAction, then the resource it runs for."""
    body = await reconcile(AgentAction.KIND, name, namespace, logger, trigger_source=trigger_source)
    if body is None:
        return
    owner = controller_owner(body.get("metadata") or {})
    if owner is None:
        logger.debug(f"{AgentAction.KIND} {name} has no controlling owner.")
        return
    await reconcile(owner["kind"], owner["name"], namespace, logger, trigger_source=TRIGGER_OWNER)
