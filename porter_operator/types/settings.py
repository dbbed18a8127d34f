import os
from typing import Any

_TRUE, _FALSE = {"True", "true", "yes", "1"}, {"False", "false", "no", "0"}


def _getenv(name: str, *default: Any) -> Any:
    try:
        v = os.environ[name]
        if v in _TRUE:
            return True
        elif v in _FALSE:
            return False
        else:
            return v
    except KeyError:
        pass
    if default:
        return default[0]
    raise KeyError(name)


# ------------------------------------------------
# ---- Defaults and environment variables ----
# ------------------------------------------------

#: Namespace the operator runs in; holds the system level "default" AgentConfig and PorterConfig
OPERATOR_NAMESPACE = _getenv("OPERATOR_NAMESPACE", "porter-operator-system")

#: Porter agent image repository used when no AgentConfig sets one
PORTER_AGENT_REPOSITORY = _getenv("PORTER_AGENT_REPOSITORY", "ghcr.io/getporter/porter-agent")

#: Porter agent image version used when no AgentConfig sets one
PORTER_AGENT_VERSION = _getenv("PORTER_AGENT_VERSION", "v1.0.2")

#: Overall time budget for retrying a status patch that keeps hitting version conflicts
STATUS_PATCH_TIMEOUT_SECONDS = float(_getenv("STATUS_PATCH_TIMEOUT_SECONDS", 60))

#: Upper bound on status patch attempts within the time budget
STATUS_PATCH_MAX_ATTEMPTS = int(_getenv("STATUS_PATCH_MAX_ATTEMPTS", 50))

#: Interval of the periodic resync that also retries failed reconciles
RESYNC_INTERVAL_SECONDS = float(_getenv("RESYNC_INTERVAL_SECONDS", 60))

#: Maximum number of concurrent kopf workers
WORKER_LIMIT = int(_getenv("WORKER_LIMIT", 10))


class Settings:
    """Operator settings"""

    operator_namespace: str = OPERATOR_NAMESPACE
    porter_agent_repository: str = PORTER_AGENT_REPOSITORY
    porter_agent_version: str = PORTER_AGENT_VERSION
    status_patch_timeout_seconds: float = STATUS_PATCH_TIMEOUT_SECONDS
    status_patch_max_attempts: int = STATUS_PATCH_MAX_ATTEMPTS
    worker_limit: int = WORKER_LIMIT

    def __init__(
        self,
        *args,
        operator_namespace: str = None,
        porter_agent_repository: str = None,
        porter_agent_version: str = None,
        status_patch_timeout_seconds: float = None,
        status_patch_max_attempts: int = None,
        worker_limit: int = None,
        **kwargs,
    ):
        if operator_namespace is not None:
            self.operator_namespace = operator_namespace

        if porter_agent_repository is not None:
            self.porter_agent_repository = porter_agent_repository

        if porter_agent_version is not None:
            self.porter_agent_version = porter_agent_version

        if status_patch_timeout_seconds is not None:
            self.status_patch_timeout_seconds = status_patch_timeout_seconds

        if status_patch_max_attempts is not None:
            self.status_patch_max_attempts = status_patch_max_attempts

        if worker_limit is not None:
            self.worker_limit = worker_limit
