"""Porter Operator Sensor Framework.

Non-invasive instrumentation of operator lifecycle events through a hook-based
pattern, inspired by Faust's sensor architecture.

Key components:
- OperatorSensor: Base class defining lifecycle hooks for operator events
- SensorDelegate: Fan-out pattern for routing events to multiple sensor backends
- PrometheusMonitor: Prometheus metrics exporter

Usage:
    from porter_operator.sensors import SensorDelegate, PrometheusMonitor

    delegate = SensorDelegate()
    delegate.add(PrometheusMonitor())
"""

from porter_operator.sensors.base import OperatorSensor
from porter_operator.sensors.delegate import SensorDelegate
from porter_operator.sensors.prometheus import PrometheusMonitor
from porter_operator.sensors.server import init_metrics_server

__all__ = [
    'OperatorSensor',
    'SensorDelegate',
    'PrometheusMonitor',
    'init_metrics_server',
]
