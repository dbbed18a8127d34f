import json
import kopf
import kubernetes_asyncio

_ALREADY_EXISTS = "alreadyexists"
_NOT_FOUND = "notfound"
_CONFLICT = "conflict"


def _reason(ex: kubernetes_asyncio.client.ApiException) -> str:
    try:
        err = json.loads(ex.body) if ex.body else {}
    except (json.JSONDecodeError, TypeError):
        return ""
    return str(err.get("reason", "")).lower()


def already_exists_error(ex: kubernetes_asyncio.client.ApiException) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 409 and _reason(ex) == _ALREADY_EXISTS


def not_found_error(ex: kubernetes_asyncio.client.ApiException) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 404 or _reason(ex) == _NOT_FOUND


def conflict_error(ex: kubernetes_asyncio.client.ApiException) -> bool:
    """Optimistic concurrency failure: the object changed since it was read."""
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 409 and _reason(ex) in (_CONFLICT, "")


def convert_api_exception(ex: kubernetes_asyncio.client.ApiException, permanent: bool = None):
    """
    Convert kubernetes ApiException to a Kopf-friendly exception.

    Args:
        ex: The ApiException to convert
        permanent: If True, raises PermanentError (won't retry). If False, raises TemporaryError (will retry).
                   If None, automatically determines based on status code.

    Raises:
        kopf.TemporaryError or kopf.PermanentError with serializable error details
    """
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        raise ex

    error_msg = f"Kubernetes API error ({ex.status}): {ex.reason}"
    try:
        if ex.body:
            body = json.loads(ex.body)
            if "message" in body:
                error_msg = f"{error_msg} - {body['message']}"
    except (json.JSONDecodeError, AttributeError, TypeError):
        pass

    # 4xx errors (except 408, 409, 429) are typically permanent
    if permanent is None:
        is_permanent = 400 <= ex.status < 500 and ex.status not in [408, 409, 429]
    else:
        is_permanent = permanent

    if is_permanent:
        raise kopf.PermanentError(error_msg) from ex
    else:
        raise kopf.TemporaryError(error_msg, delay=30) from ex


class PorterOperatorError(Exception):
    """Base class for errors raised by the reconciliation engine."""


class StatusPatchTimeout(PorterOperatorError):
    """Status could not be written before the conflict retry budget ran out."""

    def __init__(self, kind: str, name: str, namespace: str, attempts: int, elapsed: float):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"Timed out patching status of {kind} {namespace}/{name} "
            f"after {attempts} attempts ({elapsed:.1f}s) of version conflicts"
        )


class PluginVolumeCardinalityError(PorterOperatorError):
    """The set of claims carrying one plugin hash is not a state the operator can converge from."""

    def __init__(self, namespace: str, plugins_hash: str, claims: list):
        self.namespace = namespace
        self.plugins_hash = plugins_hash
        self.claims = claims
        super().__init__(
            f"Found {len(claims)} plugin volume claims in namespace {namespace} for plugin hash "
            f"{plugins_hash} ({', '.join(claims) or 'none'}); manual cleanup is required"
        )


class AgentConfigNotReady(kopf.TemporaryError):
    """The resolved agent configuration has not finished installing its plugins."""

    def __init__(self, name: str, namespace: str, delay: float = 10):
        self.name = name
        self.namespace = namespace
        super().__init__(
            f"Agent configuration {namespace}/{name} is not ready to be used, waiting for the next retry",
            delay=delay,
        )
