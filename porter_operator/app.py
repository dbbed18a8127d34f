import kopf
import logging
import porter_operator.handlers.installation as installation
import porter_operator.handlers.credentialset as credentialset
import porter_operator.handlers.parameterset as parameterset
import porter_operator.handlers.agentconfig as agentconfig
import porter_operator.handlers.agentaction as agentaction
import porter_operator.handlers.probes as probes
from porter_operator.types.settings import Settings
from porter_operator.resources.base import BaseResource
from porter_operator.sensors import init_metrics_server, SensorDelegate, PrometheusMonitor
from kubernetes_asyncio import config
from kubernetes_asyncio.client.api_client import ApiClient


# Configure Kopf settings
@kopf.on.startup()
async def setup(
    settings: kopf.OperatorSettings, memo: kopf.Memo, logger: logging.Logger, **kwargs
):
    # Load Kubernetes config - try in-cluster first (for production), then local kubeconfig (for dev)
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        logger.info("In-cluster config not found, trying local kubeconfig")
        try:
            await config.load_kube_config()
            logger.info("Loaded local Kubernetes configuration")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    memo.conf = Settings()
    BaseResource.conf = memo.conf

    # Create a shared ApiClient for all resources to prevent connection leaks
    BaseResource.shared_api_client = ApiClient()
    logger.info("Shared Kubernetes API client initialized")

    # Initialize sensor infrastructure
    sensor_delegate = SensorDelegate()
    sensor_delegate.add(PrometheusMonitor())
    memo.sensor = sensor_delegate
    BaseResource.sensor = sensor_delegate
    logger.info("Sensor infrastructure initialized with PrometheusMonitor")

    # Initialize Prometheus metrics server
    try:
        init_metrics_server()
    except Exception as e:
        logger.error(f"Failed to start metrics server: {e}")
        # Don't fail operator startup if metrics server fails
        logger.warning("Continuing without metrics server")

    logger.info(
        f"Using operator namespace {memo.conf.operator_namespace}, default agent image "
        f"{memo.conf.porter_agent_repository}:{memo.conf.porter_agent_version}"
    )

    # Limit the number of concurrent workers to prevent flooding the API
    settings.batching.worker_limit = memo.conf.worker_limit

    # Only post events to the Kubernetes API for logging >= Warning
    settings.posting.enabled = True
    settings.posting.level = logging.WARNING


@kopf.on.cleanup()
async def cleanup(logger: logging.Logger, **kwargs):
    """Cleanup handler for operator shutdown."""
    logger.info("Shutting down operator...")

    # Close the shared API client
    if BaseResource.shared_api_client is not None:
        await BaseResource.shared_api_client.close()
        BaseResource.shared_api_client = None
        logger.info("Shared API client closed")

    logger.info("Operator shutdown complete")


__all__ = [
    "installation",
    "credentialset",
    "parameterset",
    "agentconfig",
    "agentaction",
    "probes",
]
