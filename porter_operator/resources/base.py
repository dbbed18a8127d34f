import mmh3
import hashlib
from contextlib import asynccontextmanager
from logging import Logger, getLogger
from typing import Any, Dict, List, Optional, Union
from porter_operator.utils.objects import cached_property
from porter_operator.utils.helpers import canonicalize_dict
from porter_operator.utils.errors import not_found_error
from porter_operator.types.settings import Settings
from porter_operator.sensors import SensorDelegate
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    BatchV1Api,
    CoreV1Api,
    CustomObjectsApi,
    V1Job,
    V1PersistentVolume,
    V1PersistentVolumeClaim,
    V1Secret,
    V1ServiceAccount,
)

MERGE_PATCH = "application/merge-patch+json"


class BaseResource:
    """Base resource model.

    Holds the shared Kubernetes API clients and the thin wrappers every
    reconciler uses to read and write objects. Reads return ``None`` when the
    object does not exist; every other API error propagates.
    """

    PORTER_OPERATOR_NAME = "porter-operator"
    GROUP_NAME = "porter.sh"
    GROUP_VERSION = "v1"
    API_VERSION = f"{GROUP_NAME}/{GROUP_VERSION}"
    RESOURCE_HASH_ANNOTATION = "porter.sh/resource-hash"

    # The are defined by subclass
    KIND: str = None
    PLURAL_NAME: str = None

    conf: Settings = Settings()
    sensor: SensorDelegate = SensorDelegate()
    shared_api_client: ApiClient = None

    _name: str
    _namespace: str
    logger: Logger

    def __init__(self, name: str, namespace: str, logger: Logger = None):
        self._name = name
        self._namespace = namespace
        self.logger = logger or getLogger(__name__)

    @property
    def name(self) -> str:
        return self._name

    @property
    def namespace(self) -> str:
        return self._namespace

    @cached_property
    def api_client(self) -> ApiClient:
        # Use the shared API client if available, otherwise create a new one
        if self.shared_api_client is not None:
            return self.shared_api_client
        return ApiClient()

    @cached_property
    def core_v1_api(self) -> CoreV1Api:
        return CoreV1Api(self.api_client)

    @cached_property
    def batch_v1_api(self) -> BatchV1Api:
        return BatchV1Api(self.api_client)

    @cached_property
    def custom_objects_api(self) -> CustomObjectsApi:
        return CustomObjectsApi(self.api_client)

    def compute_hash(self, data: Any) -> str:
        """Compute a murmur3 hash, digested with SHA-256 to 16 characters."""
        if isinstance(data, dict):
            _data = canonicalize_dict(data)
        elif isinstance(data, str):
            _data = data.encode()
        else:
            raise ValueError(f"Hash of {type(data)} is not supporetd.")
        mumur_str = str(mmh3.hash128(_data))

        hash_obj = hashlib.sha256(mumur_str.encode("utf-8"))
        full_hash = hash_obj.hexdigest()

        # First 16 characters for readability in annotations
        return full_hash[:16]

    def prepare_hash_annotation(self, hash: Union[str, int]) -> Dict[str, str]:
        """Prepare hash annotation for k8s resources."""
        return {self.RESOURCE_HASH_ANNOTATION: str(hash)}

    def annotate_hash(self, obj: Union[V1Job, V1Secret]) -> None:
        """Stamp a child object with a content hash of its sanitized form."""
        data = self.api_client.sanitize_for_serialization(obj)
        obj.metadata.annotations = {
            **(obj.metadata.annotations or {}),
            **self.prepare_hash_annotation(self.compute_hash(data)),
        }

    @asynccontextmanager
    async def track_resource_sync(
        self, resource_type: str, resource_name: str, operation: str
    ):
        """Report a child object operation to the sensors."""
        sensor_state = self.sensor.on_resource_sync_start(
            self.KIND, self.name, resource_name, self.namespace, resource_type
        )
        success, error = True, None
        try:
            yield
        except Exception as e:
            success, error = False, e
            raise
        finally:
            self.sensor.on_resource_sync_complete(
                self.KIND,
                self.name,
                resource_name,
                self.namespace,
                resource_type,
                sensor_state,
                operation,
                success,
                error,
            )

    # =============================================================================
    # Custom objects
    # =============================================================================

    async def get_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        plural: str,
        name: str,
        namespace: str,
    ) -> Optional[Dict]:
        try:
            return await custom_objects_api.get_namespaced_custom_object(
                group=self.GROUP_NAME,
                version=self.GROUP_VERSION,
                namespace=namespace,
                plural=plural,
                name=name,
            )
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise

    async def list_custom_objects(
        self,
        custom_objects_api: CustomObjectsApi,
        plural: str,
        namespace: str,
        label_selector: str = None,
    ) -> List[Dict]:
        result = await custom_objects_api.list_namespaced_custom_object(
            group=self.GROUP_NAME,
            version=self.GROUP_VERSION,
            namespace=namespace,
            plural=plural,
            label_selector=label_selector,
        )
        return result.get("items", []) if result else []

    async def create_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        plural: str,
        namespace: str,
        body: Dict,
    ) -> Dict:
        return await custom_objects_api.create_namespaced_custom_object(
            group=self.GROUP_NAME,
            version=self.GROUP_VERSION,
            namespace=namespace,
            plural=plural,
            body=body,
        )

    async def patch_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        plural: str,
        name: str,
        namespace: str,
        body: Dict,
    ) -> Dict:
        return await custom_objects_api.patch_namespaced_custom_object(
            group=self.GROUP_NAME,
            version=self.GROUP_VERSION,
            namespace=namespace,
            plural=plural,
            name=name,
            body=body,
            _content_type=MERGE_PATCH,
        )

    async def patch_custom_object_status(
        self,
        custom_objects_api: CustomObjectsApi,
        plural: str,
        name: str,
        namespace: str,
        body: Dict,
    ) -> Dict:
        return await custom_objects_api.patch_namespaced_custom_object_status(
            group=self.GROUP_NAME,
            version=self.GROUP_VERSION,
            namespace=namespace,
            plural=plural,
            name=name,
            body=body,
            _content_type=MERGE_PATCH,
        )

    # =============================================================================
    # Jobs
    # =============================================================================

    async def list_jobs(
        self, batch_v1_api: BatchV1Api, namespace: str, label_selector: str
    ) -> List[V1Job]:
        result = await batch_v1_api.list_namespaced_job(
            namespace=namespace, label_selector=label_selector
        )
        return list(result.items or [])

    async def create_job(
        self, batch_v1_api: BatchV1Api, namespace: str, job: V1Job
    ) -> V1Job:
        return await batch_v1_api.create_namespaced_job(namespace=namespace, body=job)

    # =============================================================================
    # Secrets and service accounts
    # =============================================================================

    async def fetch_secret(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> Optional[V1Secret]:
        try:
            return await core_v1_api.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise

    async def list_secrets(
        self, core_v1_api: CoreV1Api, namespace: str, label_selector: str
    ) -> List[V1Secret]:
        result = await core_v1_api.list_namespaced_secret(
            namespace=namespace, label_selector=label_selector
        )
        return list(result.items or [])

    async def create_secret(
        self, core_v1_api: CoreV1Api, namespace: str, secret: V1Secret
    ) -> V1Secret:
        return await core_v1_api.create_namespaced_secret(namespace=namespace, body=secret)

    async def fetch_service_account(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> Optional[V1ServiceAccount]:
        try:
            return await core_v1_api.read_namespaced_service_account(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise

    # =============================================================================
    # Persistent volumes and claims
    # =============================================================================

    async def fetch_persistent_volume_claim(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> Optional[V1PersistentVolumeClaim]:
        try:
            return await core_v1_api.read_namespaced_persistent_volume_claim(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise

    async def list_persistent_volume_claims(
        self, core_v1_api: CoreV1Api, namespace: str, label_selector: str
    ) -> List[V1PersistentVolumeClaim]:
        result = await core_v1_api.list_namespaced_persistent_volume_claim(
            namespace=namespace, label_selector=label_selector
        )
        return list(result.items or [])

    async def create_persistent_volume_claim(
        self, core_v1_api: CoreV1Api, namespace: str, pvc: V1PersistentVolumeClaim
    ) -> V1PersistentVolumeClaim:
        return await core_v1_api.create_namespaced_persistent_volume_claim(
            namespace=namespace, body=pvc
        )

    async def patch_persistent_volume_claim(
        self, core_v1_api: CoreV1Api, name: str, namespace: str, patch: Dict
    ) -> V1PersistentVolumeClaim:
        return await core_v1_api.patch_namespaced_persistent_volume_claim(
            name=name, namespace=namespace, body=patch, _content_type=MERGE_PATCH
        )

    async def delete_persistent_volume_claim(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> None:
        try:
            await core_v1_api.delete_namespaced_persistent_volume_claim(
                name=name, namespace=namespace
            )
        except ApiException as ex:
            if not_found_error(ex):
                return
            raise

    async def fetch_persistent_volume(
        self, core_v1_api: CoreV1Api, name: str
    ) -> Optional[V1PersistentVolume]:
        if not name:
            return None
        try:
            return await core_v1_api.read_persistent_volume(name=name)
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise

    async def patch_persistent_volume(
        self, core_v1_api: CoreV1Api, name: str, patch: Dict
    ) -> V1PersistentVolume:
        return await core_v1_api.patch_persistent_volume(
            name=name, body=patch, _content_type=MERGE_PATCH
        )

    async def delete_persistent_volume(self, core_v1_api: CoreV1Api, name: str) -> None:
        try:
            await core_v1_api.delete_persistent_volume(name=name)
        except ApiException as ex:
            if not_found_error(ex):
                return
            raise


class BaseCustomResource(BaseResource):
    """A porter.sh custom object read through the custom objects API.

    Wraps the raw body returned by the API server and exposes the metadata the
    reconcilers key their decisions on.
    """

    RETRY_ANNOTATION = "porter.sh/retry"

    body: Dict = None

    def __init__(self, name: str, namespace: str, logger: Logger = None):
        super().__init__(name, namespace, logger=logger)
        self.body = None

    def load(self, body: Dict) -> None:
        """Adopt a freshly read body. Subclasses parse their spec here."""
        self.body = body

    @property
    def metadata(self) -> Dict:
        return (self.body or {}).get("metadata", {})

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def generation(self) -> int:
        return int(self.metadata.get("generation") or 0)

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def labels(self) -> Dict[str, str]:
        return dict(self.metadata.get("labels") or {})

    @property
    def annotations(self) -> Dict[str, str]:
        return dict(self.metadata.get("annotations") or {})

    @property
    def finalizers(self) -> List[str]:
        return list(self.metadata.get("finalizers") or [])

    @property
    def status(self) -> Dict:
        return dict((self.body or {}).get("status") or {})

    @property
    def retry(self) -> str:
        """Raw value of the user supplied retry annotation."""
        return self.annotations.get(self.RETRY_ANNOTATION, "")

    async def fetch(self) -> Optional[Dict]:
        """Read the latest state of this object and load it; None when it is gone."""
        body = await self.get_custom_object(
            self.custom_objects_api, self.PLURAL_NAME, self.name, self.namespace
        )
        if body is not None:
            self.load(body)
        return body

    async def patch_metadata(self, metadata: Dict) -> Dict:
        """Merge-patch metadata, guarded by the resourceVersion the decision was based on."""
        patch = {"metadata": {**metadata, "resourceVersion": self.resource_version}}
        body = await self.patch_custom_object(
            self.custom_objects_api, self.PLURAL_NAME, self.name, self.namespace, patch
        )
        self.load(body)
        return body
