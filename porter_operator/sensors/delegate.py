"""Sensor delegation for fan-out pattern.

This module provides SensorDelegate, which routes sensor events to multiple
monitoring backends simultaneously. Each backend receives the same events and
can maintain independent state. A failing backend never breaks reconciliation:
its errors are logged and the remaining backends still receive the event.
"""

from typing import Set, Dict, Optional, Any
import logging

from porter_operator.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class SensorDelegate(OperatorSensor):
    """Delegate sensor that fans out events to multiple backends.

    State tracking is handled per-sensor, so each backend receives its own
    state dict from start/complete hook pairs.

    Example:
        delegate = SensorDelegate()
        delegate.add(PrometheusMonitor())

        state = delegate.on_reconcile_start("Installation", "mysql", "default", 2, "event")
        delegate.on_reconcile_complete("Installation", "mysql", "default", state, True)
    """

    def __init__(self) -> None:
        self._sensors: Set[OperatorSensor] = set()

    def add(self, sensor: OperatorSensor) -> None:
        logger.info(f"Adding sensor: {sensor.__class__.__name__}")
        self._sensors.add(sensor)

    def remove(self, sensor: OperatorSensor) -> None:
        logger.info(f"Removing sensor: {sensor.__class__.__name__}")
        self._sensors.discard(sensor)

    def clear(self) -> None:
        logger.info(f"Clearing {len(self._sensors)} sensors")
        self._sensors.clear()

    def _start(self, hook: str, *args) -> Optional[Dict[OperatorSensor, Any]]:
        if not self._sensors:
            return None
        states = {}
        for sensor in self._sensors:
            try:
                state = getattr(sensor, hook)(*args)
                if state is not None:
                    states[sensor] = state
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )
        return states if states else None

    def _fire(self, hook: str, *args, **kwargs) -> None:
        for sensor in self._sensors:
            try:
                getattr(sensor, hook)(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        kind: str,
        name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[OperatorSensor, Any]]:
        """Delegate reconcile_start to all sensors.

        Returns:
            Dict mapping each sensor to its returned state, or None if no sensors
        """
        return self._start("on_reconcile_start", kind, name, namespace, generation, trigger_source)

    def on_reconcile_complete(
        self,
        kind: str,
        name: str,
        namespace: str,
        state: Optional[Dict[OperatorSensor, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Delegate reconcile_complete to all sensors with their specific state."""
        for sensor in self._sensors:
            try:
                sensor_state = state.get(sensor) if state else None
                sensor.on_reconcile_complete(kind, name, namespace, sensor_state, success, error)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.on_reconcile_complete: {e}",
                    exc_info=True,
                )

    # =============================================================================
    # Resource Operation Hooks
    # =============================================================================

    def on_resource_sync_start(
        self,
        kind: str,
        name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
    ) -> Optional[Dict[OperatorSensor, Any]]:
        """Delegate resource_sync_start to all sensors."""
        return self._start(
            "on_resource_sync_start", kind, name, resource_name, namespace, resource_type
        )

    def on_resource_sync_complete(
        self,
        kind: str,
        name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[OperatorSensor, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Delegate resource_sync_complete to all sensors with their specific state."""
        for sensor in self._sensors:
            try:
                sensor_state = state.get(sensor) if state else None
                sensor.on_resource_sync_complete(
                    kind,
                    name,
                    resource_name,
                    namespace,
                    resource_type,
                    sensor_state,
                    operation,
                    success,
                    error,
                )
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.on_resource_sync_complete: {e}",
                    exc_info=True,
                )

    # =============================================================================
    # Status Update Hooks
    # =============================================================================

    def on_status_update(
        self,
        kind: str,
        name: str,
        namespace: str,
        update_fields: list[str],
    ) -> None:
        self._fire("on_status_update", kind, name, namespace, update_fields)

    def on_status_conflict(
        self,
        kind: str,
        name: str,
        namespace: str,
        attempt: int,
    ) -> None:
        self._fire("on_status_conflict", kind, name, namespace, attempt)

    # =============================================================================
    # Execution Hooks
    # =============================================================================

    def on_agent_action_dispatched(
        self,
        kind: str,
        name: str,
        namespace: str,
        mode: str,
    ) -> None:
        self._fire("on_agent_action_dispatched", kind, name, namespace, mode)

    def on_plugin_volume_transition(
        self,
        name: str,
        namespace: str,
        from_state: str,
        to_state: str,
    ) -> None:
        self._fire("on_plugin_volume_transition", name, namespace, from_state, to_state)

    # =============================================================================
    # Utility Methods
    # =============================================================================

    def asdict(self) -> Dict[str, Any]:
        """Return combined state from all sensors."""
        return {
            sensor.__class__.__name__: sensor.asdict() for sensor in self._sensors
        }
