"""Base sensor classes for operator monitoring.

This module defines the base OperatorSensor class that provides lifecycle hooks
for monitoring operator events. All hooks are no-ops by default, allowing
subclasses to override only the events they care about.

The hook pattern follows Faust's sensor design:
- Hooks come in pairs: on_X_start() and on_X_complete()
- Start hooks return an optional state dict for tracking multi-phase operations
- Complete hooks receive the state dict from their corresponding start hook
- All hooks are optional - sensors only implement what they need
"""

from typing import Dict, Optional, Any
import logging

logger = logging.getLogger(__name__)


class OperatorSensor:
    """Base sensor class for Porter operator monitoring.

    This class defines lifecycle hooks for four categories:
    1. Reconciliation lifecycle (one pass over one resource)
    2. Resource operations (child objects created, patched or deleted)
    3. Status updates (including optimistic concurrency conflicts)
    4. Execution (agent actions dispatched, plugin volume progress)

    All methods are no-ops by default. Subclasses override only the hooks
    they need to monitor.

    Example:
        class LoggingSensor(OperatorSensor):
            def on_reconcile_start(self, kind, name, namespace, generation, trigger_source) -> Dict:
                return {'start_time': time.time()}

            def on_reconcile_complete(self, kind, name, namespace, state, success, error=None) -> None:
                duration = time.time() - state['start_time']
                logger.info(f"Reconciled {kind}/{name} in {duration}s")
    """

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
        """Called when a reconcile pass begins.

        Args:
            kind: Resource kind (Installation, AgentConfig, ...)
            name: Resource name
            namespace: Kubernetes namespace
            generation: Resource generation number
            trigger_source: What triggered the pass (event, timer, owner, ...)

        Returns:
            Optional state dict passed to on_reconcile_complete
        """
        pass

    def on_reconcile_complete(
        self,
        kind: str,
        name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Called when a reconcile pass completes.

        Args:
            kind: Resource kind
            name: Resource name
            namespace: Kubernetes namespace
            state: State dict returned from on_reconcile_start
            success: Whether the pass succeeded
            error: Exception if the pass failed
        """
        pass

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
        """Called when a child object operation begins.

        Args:
            kind: Kind of the owning resource
            name: Name of the owning resource
            resource_name: Name (or generateName prefix) of the child object
            namespace: Kubernetes namespace
            resource_type: Type of child object (Job, Secret, PersistentVolumeClaim, ...)

        Returns:
            Optional state dict passed to on_resource_sync_complete
        """
        pass

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
        """Called when a child object operation completes.

        Args:
            kind: Kind of the owning resource
            name: Name of the owning resource
            resource_name: Name of the child object
            namespace: Kubernetes namespace
            resource_type: Type of child object
            state: State dict returned from on_resource_sync_start
            operation: Operation performed (create, patch, delete)
            success: Whether operation succeeded
            error: Exception if operation failed
        """
        pass

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
        """Called when a status patch was accepted.

        Args:
            kind: Resource kind
            name: Resource name
            namespace: Kubernetes namespace
            update_fields: List of status fields that were updated
        """
        pass

    def on_status_conflict(
        self,
        kind: str,
        name: str,
        namespace: str,
        attempt: int,
    ) -> None:
        """Called when a status patch was rejected because the object changed.

        Args:
            kind: Resource kind
            name: Resource name
            namespace: Kubernetes namespace
            attempt: Attempt number that hit the conflict (1-based)
        """
        pass

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
        """Called when a reconciler creates or retries an execution request.

        Args:
            kind: Kind of the resource the request runs for
            name: Resource name
            namespace: Kubernetes namespace
            mode: apply, delete, install or retry
        """
        pass

    def on_plugin_volume_transition(
        self,
        name: str,
        namespace: str,
        from_state: str,
        to_state: str,
    ) -> None:
        """Called when an AgentConfig's plugin volume moves to another state.

        Args:
            name: AgentConfig name
            namespace: Kubernetes namespace
            from_state: Previous state
            to_state: New state
        """
        pass

    # =============================================================================
    # Utility Methods
    # =============================================================================

    def asdict(self) -> Dict[str, Any]:
        """Return sensor state as dictionary.

        This method should be overridden by sensors that maintain state
        (like Monitor classes with counters and metrics).
        """
        return {}
