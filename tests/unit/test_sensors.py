"""Unit tests for the sensor framework and Prometheus metrics."""

import pytest
from unittest.mock import Mock
from prometheus_client import CollectorRegistry
from porter_operator.resources import Installation
from porter_operator.sensors import OperatorSensor, PrometheusMonitor, SensorDelegate

NAMESPACE = "test"


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def monitor(registry):
    return PrometheusMonitor(registry=registry)


class TestPrometheusMonitor:
    """Tests for metrics recorded by the Prometheus backend."""

    def test_reconcile_success(self, monitor, registry):
        """A successful pass is counted and timed."""
        state = monitor.on_reconcile_start("Installation", "mysql", NAMESPACE, 1, "event")
        monitor.on_reconcile_complete("Installation", "mysql", NAMESPACE, state, True)

        labels = {"kind": "Installation", "namespace": NAMESPACE, "trigger_source": "event", "result": "success"}
        assert registry.get_sample_value("porterop_reconcile_total", labels) == 1.0
        assert registry.get_sample_value("porterop_reconcile_duration_seconds_count", labels) == 1.0

    def test_reconcile_error(self, monitor, registry):
        """Failures are counted by error type."""
        state = monitor.on_reconcile_start("AgentConfig", "default", NAMESPACE, 1, "timer")
        monitor.on_reconcile_complete("AgentConfig", "default", NAMESPACE, state, False, ValueError("x"))

        assert registry.get_sample_value(
            "porterop_reconcile_errors_total",
            {"kind": "AgentConfig", "namespace": NAMESPACE, "error_type": "ValueError"},
        ) == 1.0

    def test_status_metrics(self, monitor, registry):
        """Each updated field and each conflict is counted."""
        monitor.on_status_update("Installation", "mysql", NAMESPACE, ["phase", "conditions"])
        monitor.on_status_conflict("Installation", "mysql", NAMESPACE, 1)
        monitor.on_status_conflict("Installation", "mysql", NAMESPACE, 2)

        assert registry.get_sample_value(
            "porterop_status_updates_total",
            {"kind": "Installation", "namespace": NAMESPACE, "update_field": "phase"},
        ) == 1.0
        assert registry.get_sample_value(
            "porterop_status_conflicts_total", {"kind": "Installation", "namespace": NAMESPACE}
        ) == 2.0

    def test_execution_metrics(self, monitor, registry):
        """Dispatches and plugin volume transitions are counted."""
        monitor.on_agent_action_dispatched("Installation", "mysql", NAMESPACE, "apply")
        monitor.on_plugin_volume_transition("default", NAMESPACE, "Rebinding", "Ready")

        assert registry.get_sample_value(
            "porterop_agent_actions_dispatched_total",
            {"kind": "Installation", "namespace": NAMESPACE, "mode": "apply"},
        ) == 1.0
        assert registry.get_sample_value(
            "porterop_plugin_volume_transitions_total",
            {"namespace": NAMESPACE, "from_state": "Rebinding", "to_state": "Ready"},
        ) == 1.0


class TestSensorDelegate:
    """Tests for fanning events out to several sensors."""

    def test_fans_out_with_per_sensor_state(self):
        """Each sensor gets back the state it returned."""
        first, second = Mock(spec=OperatorSensor), Mock(spec=OperatorSensor)
        first.on_reconcile_start.return_value = {"first": 1}
        second.on_reconcile_start.return_value = {"second": 2}
        delegate = SensorDelegate()
        delegate.add(first)
        delegate.add(second)

        state = delegate.on_reconcile_start("Installation", "mysql", NAMESPACE, 1, "event")
        delegate.on_reconcile_complete("Installation", "mysql", NAMESPACE, state, True)

        first.on_reconcile_complete.assert_called_once_with("Installation", "mysql", NAMESPACE, {"first": 1}, True, None)
        second.on_reconcile_complete.assert_called_once_with(
            "Installation", "mysql", NAMESPACE, {"second": 2}, True, None
        )

    def test_failing_sensor_is_isolated(self):
        """An exploding sensor does not keep the others from seeing the event."""
        broken, healthy = Mock(spec=OperatorSensor), Mock(spec=OperatorSensor)
        broken.on_agent_action_dispatched.side_effect = RuntimeError("boom")
        delegate = SensorDelegate()
        delegate.add(broken)
        delegate.add(healthy)

        delegate.on_agent_action_dispatched("Installation", "mysql", NAMESPACE, "apply")
        healthy.on_agent_action_dispatched.assert_called_once_with("Installation", "mysql", NAMESPACE, "apply")

    def test_no_sensors(self):
        """Without sensors start hooks return no state."""
        assert SensorDelegate().on_reconcile_start("Installation", "mysql", NAMESPACE, 1, "event") is None

    def test_remove(self):
        """Removed sensors stop receiving events."""
        sensor = Mock(spec=OperatorSensor)
        delegate = SensorDelegate()
        delegate.add(sensor)
        delegate.remove(sensor)
        delegate.on_status_conflict("Installation", "mysql", NAMESPACE, 1)
        sensor.on_status_conflict.assert_not_called()


class TestTrackResourceSync:
    """Tests for reporting child object operations."""

    @pytest.mark.asyncio
    async def test_success(self):
        """A completed operation is reported as a success."""
        resource = Installation("mysql", NAMESPACE)
        resource.sensor = Mock()
        async with resource.track_resource_sync("Job", "mysql-", "create"):
            pass
        args = resource.sensor.on_resource_sync_complete.call_args.args
        assert args[6:] == ("create", True, None)

    @pytest.mark.asyncio
    async def test_failure(self):
        """A failing operation is reported and the error propagates."""
        resource = Installation("mysql", NAMESPACE)
        resource.sensor = Mock()
        error = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            async with resource.track_resource_sync("Secret", "mysql-", "create"):
                raise error
        args = resource.sensor.on_resource_sync_complete.call_args.args
        assert args[6:] == ("create", False, error)
