import kopf
from porter_operator.resources.base import BaseResource
from porter_operator.utils.helpers import now


# Liveness probe
@kopf.on.probe(id="now")
def get_current_timestamp(**kwargs):
    return now()


@kopf.on.probe(id="api_client")
def get_api_client_state(**kwargs):
    """Whether startup created the client shared by every reconciler."""
    return BaseResource.shared_api_client is not None
