"""HTTP server for exposing Prometheus metrics.

Uses the built-in prometheus_client HTTP server in a background thread so the
operator event loop is never blocked. The port is read from METRICS_PORT
(default 8000).
"""

import os
import logging
from threading import Thread
from prometheus_client import start_http_server

logger = logging.getLogger(__name__)


def start_metrics_server(port: int = 8000) -> None:
    """Start Prometheus metrics HTTP server, serving http://0.0.0.0:port/metrics."""
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
    except OSError as e:
        logger.error(f"Failed to start metrics server on port {port}: {e}")
        raise


def init_metrics_server() -> None:
    """Initialize metrics server with port from environment."""
    port = int(os.environ.get('METRICS_PORT', '8000'))

    # Daemon thread so it doesn't block shutdown
    thread = Thread(target=start_metrics_server, args=(port,), daemon=True)
    thread.start()

    logger.info(f"Metrics server initialization complete (port: {port})")
