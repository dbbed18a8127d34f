"""Prometheus monitoring backend for the Porter operator.

This module provides PrometheusMonitor, which collects operator lifecycle events
and exposes them as Prometheus metrics:

1. Reconciliation Loop Health - Duration, throughput, errors per kind
2. Kubernetes Resource Sync - Child object operations and latency
3. Status Updates - Accepted patches and optimistic concurrency conflicts
4. Execution - Agent actions dispatched and plugin volume transitions
"""

from typing import Dict, Optional, Any
import time
import logging

from prometheus_client import Counter, Histogram, CollectorRegistry, REGISTRY

from porter_operator.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class PrometheusMonitor(OperatorSensor):
    """Prometheus metrics monitor for the Porter operator.

    Metrics are organized by prefix:
    - porterop_reconcile_* - Reconciliation loop metrics
    - porterop_resource_* - Kubernetes child object metrics
    - porterop_status_* - Status patch metrics
    - porterop_agent_actions_* / porterop_plugin_volume_* - Execution metrics
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        super().__init__()

        # =============================================================================
        # Reconciliation Loop Metrics
        # =============================================================================

        self.reconcile_duration = Histogram(
            'porterop_reconcile_duration_seconds',
            'Time spent in one reconcile pass',
            labelnames=['kind', 'namespace', 'trigger_source', 'result'],
            buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
            registry=registry,
        )

        self.reconcile_total = Counter(
            'porterop_reconcile_total',
            'Total number of reconcile passes',
            labelnames=['kind', 'namespace', 'trigger_source', 'result'],
            registry=registry,
        )

        self.reconcile_errors = Counter(
            'porterop_reconcile_errors_total',
            'Total number of reconcile errors',
            labelnames=['kind', 'namespace', 'error_type'],
            registry=registry,
        )

        # =============================================================================
        # Kubernetes Resource Sync Metrics
        # =============================================================================

        self.resource_sync_duration = Histogram(
            'porterop_resource_sync_duration_seconds',
            'Time spent creating, patching or deleting child objects',
            labelnames=['kind', 'namespace', 'resource_type', 'operation', 'result'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry,
        )

        self.resource_sync_total = Counter(
            'porterop_resource_sync_total',
            'Total number of child object operations',
            labelnames=['kind', 'namespace', 'resource_type', 'operation', 'result'],
            registry=registry,
        )

        self.resource_sync_errors = Counter(
            'porterop_resource_sync_errors_total',
            'Total number of child object operation errors',
            labelnames=['kind', 'namespace', 'resource_type', 'error_type'],
            registry=registry,
        )

        # =============================================================================
        # Status Update Metrics
        # =============================================================================

        self.status_updates = Counter(
            'porterop_status_updates_total',
            'Total number of status field updates',
            labelnames=['kind', 'namespace', 'update_field'],
            registry=registry,
        )

        self.status_conflicts = Counter(
            'porterop_status_conflicts_total',
            'Total number of status patches rejected with a version conflict',
            labelnames=['kind', 'namespace'],
            registry=registry,
        )

        # =============================================================================
        # Execution Metrics
        # =============================================================================

        self.agent_actions_dispatched = Counter(
            'porterop_agent_actions_dispatched_total',
            'Total number of execution requests created or retried',
            labelnames=['kind', 'namespace', 'mode'],
            registry=registry,
        )

        self.plugin_volume_transitions = Counter(
            'porterop_plugin_volume_transitions_total',
            'Total number of plugin volume state transitions',
            labelnames=['namespace', 'from_state', 'to_state'],
            registry=registry,
        )

        logger.info("PrometheusMonitor initialized with all metrics")

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
    ) -> Optional[Dict[str, Any]]:
        """Record reconciliation start time."""
        return {
            'start_time': time.time(),
            'trigger_source': trigger_source,
        }

    def on_reconcile_complete(
        self,
        kind: str,
        name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record reconciliation duration and result."""
        if state:
            duration = time.time() - state['start_time']
            result = 'success' if success else 'failure'
            labels = dict(
                kind=kind,
                namespace=namespace,
                trigger_source=state['trigger_source'],
                result=result,
            )
            self.reconcile_duration.labels(**labels).observe(duration)
            self.reconcile_total.labels(**labels).inc()

        if error:
            self.reconcile_errors.labels(
                kind=kind,
                namespace=namespace,
                error_type=error.__class__.__name__,
            ).inc()

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
    ) -> Optional[Dict[str, Any]]:
        """Record resource sync start time."""
        return {'start_time': time.time()}

    def on_resource_sync_complete(
        self,
        kind: str,
        name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[str, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record resource sync duration and result."""
        result = 'success' if success else 'failure'
        labels = dict(
            kind=kind,
            namespace=namespace,
            resource_type=resource_type,
            operation=operation,
            result=result,
        )
        if state:
            self.resource_sync_duration.labels(**labels).observe(
                time.time() - state['start_time']
            )
        self.resource_sync_total.labels(**labels).inc()

        if error:
            self.resource_sync_errors.labels(
                kind=kind,
                namespace=namespace,
                resource_type=resource_type,
                error_type=error.__class__.__name__,
            ).inc()

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
        for field in update_fields:
            self.status_updates.labels(
                kind=kind, namespace=namespace, update_field=field
            ).inc()

    def on_status_conflict(
        self,
        kind: str,
        name: str,
        namespace: str,
        attempt: int,
    ) -> None:
        self.status_conflicts.labels(kind=kind, namespace=namespace).inc()

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
        self.agent_actions_dispatched.labels(kind=kind, namespace=namespace, mode=mode).inc()

    def on_plugin_volume_transition(
        self,
        name: str,
        namespace: str,
        from_state: str,
        to_state: str,
    ) -> None:
        self.plugin_volume_transitions.labels(
            namespace=namespace, from_state=from_state, to_state=to_state
        ).inc()
