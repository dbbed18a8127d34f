"""Shared fixtures: an in-memory stand-in for the Kubernetes API.

The fake implements just the calls the reconcilers make, with the API server
behaviours they depend on: label selectors, generateName, optimistic locking
on resourceVersion, generation bumps on spec changes and on deletion,
finalizer gated deletion and JSON merge-patch semantics.
"""
import copy
import itertools
import json
import uuid
from types import SimpleNamespace
from typing import Dict, List, Optional
from unittest.mock import Mock

# Patches kopf before it is imported anywhere else
import porter_operator  # noqa: F401

import kopf
import pytest
import pytest_asyncio
from kubernetes_asyncio.client import ApiClient, ApiException
from porter_operator.resources import base
from porter_operator.resources.base import BaseResource
from porter_operator.sensors import SensorDelegate
from porter_operator.types.settings import Settings

NAMESPACE = "test"
OPERATOR_NAMESPACE = "porter-operator-system"

KINDS = {
    "installations": "Installation",
    "credentialsets": "CredentialSet",
    "parametersets": "ParameterSet",
    "agentconfigs": "AgentConfig",
    "agentactions": "AgentAction",
    "porterconfigs": "PorterConfig",
}


def api_error(status: int, reason: str) -> ApiException:
    ex = ApiException(status=status, reason=reason)
    ex.body = json.dumps({"kind": "Status", "reason": reason, "code": status})
    return ex


def merge_patch(target, patch):
    """RFC 7386 JSON merge-patch."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


def parse_selector(selector: Optional[str]) -> Dict[str, str]:
    if not selector:
        return {}
    parsed = {}
    for term in selector.split(","):
        key, _, value = term.partition("=")
        parsed[key] = value
    return parsed


def matches(obj: Dict, selector: Optional[str]) -> bool:
    labels = (obj.get("metadata") or {}).get("labels") or {}
    return all(labels.get(k) == v for k, v in parse_selector(selector).items())


class FakeCluster:
    """Object store keyed by (collection, namespace, name)."""

    def __init__(self, api_client: ApiClient):
        self.api_client = api_client
        self.objects: Dict[tuple, Dict] = {}
        self.writes: List[tuple] = []
        self.status_conflicts: Dict[str, int] = {}
        self._rv = itertools.count(1)
        self._suffix = itertools.count(1)

    # ---- serialization ----

    def to_dict(self, obj) -> Dict:
        if isinstance(obj, dict):
            return copy.deepcopy(obj)
        return self.api_client.sanitize_for_serialization(obj)

    def to_model(self, obj: Dict, model: str):
        return self.api_client.deserialize(SimpleNamespace(data=json.dumps(obj)), model)

    # ---- store ----

    def _key(self, collection: str, namespace: Optional[str], name: str) -> tuple:
        return (collection, namespace, name)

    def get(self, collection: str, namespace: Optional[str], name: str) -> Optional[Dict]:
        obj = self.objects.get(self._key(collection, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def read(self, collection: str, namespace: Optional[str], name: str) -> Dict:
        obj = self.get(collection, namespace, name)
        if obj is None:
            raise api_error(404, "NotFound")
        return obj

    def list(self, collection: str, namespace: Optional[str] = None, selector: str = None) -> List[Dict]:
        return [
            copy.deepcopy(obj)
            for (coll, ns, _), obj in sorted(self.objects.items(), key=lambda kv: kv[0])
            if coll == collection and (namespace is None or ns == namespace) and matches(obj, selector)
        ]

    def _store(self, collection: str, namespace: Optional[str], obj: Dict) -> Dict:
        meta = obj["metadata"]
        meta["resourceVersion"] = str(next(self._rv))
        key = self._key(collection, namespace, meta["name"])
        if meta.get("deletionTimestamp") and not meta.get("finalizers"):
            self.objects.pop(key, None)
        else:
            self.objects[key] = obj
        return copy.deepcopy(obj)

    def create(self, collection: str, namespace: Optional[str], body, kind: str = None) -> Dict:
        obj = self.to_dict(body)
        meta = obj.setdefault("metadata", {})
        if not meta.get("name"):
            if not meta.get("generateName"):
                raise api_error(422, "Invalid")
            meta["name"] = f"{meta['generateName']}{next(self._suffix):05d}"
        if self._key(collection, namespace, meta["name"]) in self.objects:
            raise api_error(409, "AlreadyExists")
        if namespace is not None:
            meta["namespace"] = namespace
        meta["uid"] = str(uuid.uuid4())
        if collection in KINDS:
            meta["generation"] = 1
            obj.setdefault("apiVersion", "porter.sh/v1")
            obj.setdefault("kind", KINDS[collection])
        elif kind:
            obj.setdefault("kind", kind)
        self.writes.append(("create", collection, meta["name"]))
        return self._store(collection, namespace, obj)

    def patch(self, collection: str, namespace: Optional[str], name: str, patch: Dict, subresource: str = None) -> Dict:
        obj = self.read(collection, namespace, name)
        patch = copy.deepcopy(patch)
        rv = (patch.get("metadata") or {}).pop("resourceVersion", None)

        if subresource == "status" and self.status_conflicts.get(name):
            # Someone else wrote the object in between
            self.status_conflicts[name] -= 1
            obj = self._store(collection, namespace, obj)

        if rv is not None and rv != obj["metadata"]["resourceVersion"]:
            raise api_error(409, "Conflict")

        if subresource == "status":
            patch = {"status": patch.get("status")}
        else:
            patch.pop("status", None)

        updated = merge_patch(obj, patch)
        if "generation" in obj["metadata"] and updated.get("spec") != obj.get("spec"):
            updated["metadata"]["generation"] = obj["metadata"]["generation"] + 1
        self.writes.append(("patch", collection, name))
        return self._store(collection, namespace, updated)

    def delete(self, collection: str, namespace: Optional[str], name: str) -> None:
        obj = self.read(collection, namespace, name)
        self.writes.append(("delete", collection, name))
        meta = obj["metadata"]
        if meta.get("finalizers"):
            if not meta.get("deletionTimestamp"):
                meta["deletionTimestamp"] = "2024-01-01T00:00:00Z"
                if "generation" in meta:
                    meta["generation"] += 1
                self._store(collection, namespace, obj)
            return
        self.objects.pop(self._key(collection, namespace, name), None)

    # ---- test helpers ----

    def add_custom(
        self,
        plural: str,
        name: str,
        spec: Dict = None,
        namespace: str = NAMESPACE,
        labels: Dict = None,
        annotations: Dict = None,
    ) -> Dict:
        body = {
            "metadata": {"name": name, "labels": labels or {}, "annotations": annotations or {}},
            "spec": spec or {},
        }
        created = self.create(plural, namespace, body)
        self.writes.clear()
        return created

    def update_spec(self, plural: str, name: str, spec: Dict, namespace: str = NAMESPACE) -> Dict:
        obj = self.read(plural, namespace, name)
        obj["spec"] = spec
        obj["metadata"]["generation"] += 1
        return self._store(plural, namespace, obj)

    def set_annotation(self, plural: str, name: str, key: str, value: str, namespace: str = NAMESPACE) -> Dict:
        obj = self.read(plural, namespace, name)
        obj["metadata"].setdefault("annotations", {})[key] = value
        return self._store(plural, namespace, obj)

    def set_status(self, collection: str, name: str, status: Dict, namespace: str = NAMESPACE) -> Dict:
        obj = self.read(collection, namespace, name)
        obj["status"] = merge_patch(obj.get("status") or {}, status)
        return self._store(collection, namespace, obj)

    def add_service_account(self, name: str, image_pull_secrets: List[str] = None, namespace: str = NAMESPACE):
        body = {
            "metadata": {"name": name},
            "imagePullSecrets": [{"name": n} for n in image_pull_secrets or []],
        }
        return self.create("serviceaccounts", namespace, body, kind="ServiceAccount")

    def add_secret(self, name: str, type: str, data: Dict, namespace: str = NAMESPACE):
        body = {"metadata": {"name": name}, "type": type, "data": data}
        return self.create("secrets", namespace, body, kind="Secret")

    def bind_claim(self, name: str, volume_name: str = None, namespace: str = NAMESPACE) -> Dict:
        """Bind a claim to a new volume the way a provisioner would."""
        claim = self.read("persistentvolumeclaims", namespace, name)
        volume_name = volume_name or f"pv-{name}"
        if self.get("persistentvolumes", None, volume_name) is None:
            self.create(
                "persistentvolumes",
                None,
                {
                    "metadata": {"name": volume_name, "finalizers": ["kubernetes.io/pv-protection"]},
                    "spec": {
                        "capacity": {"storage": "64Mi"},
                        "accessModes": ["ReadWriteOnce"],
                        "claimRef": {
                            "kind": "PersistentVolumeClaim",
                            "namespace": namespace,
                            "name": name,
                            "uid": claim["metadata"]["uid"],
                        },
                    },
                },
                kind="PersistentVolume",
            )
        claim["spec"]["volumeName"] = volume_name
        claim["status"] = {"phase": "Bound"}
        return self._store("persistentvolumeclaims", namespace, claim)

    def custom_objects(self, plural: str, namespace: str = NAMESPACE) -> List[Dict]:
        return self.list(plural, namespace)


class FakeCustomObjectsApi:
    def __init__(self, cluster: FakeCluster):
        self.cluster = cluster

    async def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        return self.cluster.read(plural, namespace, name)

    async def list_namespaced_custom_object(self, group, version, namespace, plural, label_selector=None):
        return {"items": self.cluster.list(plural, namespace, label_selector)}

    async def create_namespaced_custom_object(self, group, version, namespace, plural, body):
        return self.cluster.create(plural, namespace, body)

    async def patch_namespaced_custom_object(self, group, version, namespace, plural, name, body, _content_type=None):
        return self.cluster.patch(plural, namespace, name, body)

    async def patch_namespaced_custom_object_status(
        self, group, version, namespace, plural, name, body, _content_type=None
    ):
        return self.cluster.patch(plural, namespace, name, body, subresource="status")


class FakeBatchV1Api:
    def __init__(self, cluster: FakeCluster):
        self.cluster = cluster

    async def list_namespaced_job(self, namespace, label_selector=None):
        jobs = self.cluster.list("jobs", namespace, label_selector)
        return SimpleNamespace(items=[self.cluster.to_model(j, "V1Job") for j in jobs])

    async def create_namespaced_job(self, namespace, body):
        return self.cluster.to_model(self.cluster.create("jobs", namespace, body, kind="Job"), "V1Job")


class FakeCoreV1Api:
    def __init__(self, cluster: FakeCluster):
        self.cluster = cluster

    def _model(self, obj, model):
        return self.cluster.to_model(obj, model)

    async def read_namespaced_secret(self, name, namespace):
        return self._model(self.cluster.read("secrets", namespace, name), "V1Secret")

    async def list_namespaced_secret(self, namespace, label_selector=None):
        items = self.cluster.list("secrets", namespace, label_selector)
        return SimpleNamespace(items=[self._model(s, "V1Secret") for s in items])

    async def create_namespaced_secret(self, namespace, body):
        return self._model(self.cluster.create("secrets", namespace, body, kind="Secret"), "V1Secret")

    async def read_namespaced_service_account(self, name, namespace):
        return self._model(self.cluster.read("serviceaccounts", namespace, name), "V1ServiceAccount")

    async def read_namespaced_persistent_volume_claim(self, name, namespace):
        return self._model(
            self.cluster.read("persistentvolumeclaims", namespace, name), "V1PersistentVolumeClaim"
        )

    async def list_namespaced_persistent_volume_claim(self, namespace, label_selector=None):
        items = self.cluster.list("persistentvolumeclaims", namespace, label_selector)
        return SimpleNamespace(items=[self._model(c, "V1PersistentVolumeClaim") for c in items])

    async def create_namespaced_persistent_volume_claim(self, namespace, body):
        created = self.cluster.create("persistentvolumeclaims", namespace, body, kind="PersistentVolumeClaim")
        return self._model(created, "V1PersistentVolumeClaim")

    async def patch_namespaced_persistent_volume_claim(self, name, namespace, body, _content_type=None):
        patched = self.cluster.patch("persistentvolumeclaims", namespace, name, body)
        return self._model(patched, "V1PersistentVolumeClaim")

    async def delete_namespaced_persistent_volume_claim(self, name, namespace):
        self.cluster.delete("persistentvolumeclaims", namespace, name)

    async def read_persistent_volume(self, name):
        return self._model(self.cluster.read("persistentvolumes", None, name), "V1PersistentVolume")

    async def patch_persistent_volume(self, name, body, _content_type=None):
        return self._model(self.cluster.patch("persistentvolumes", None, name, body), "V1PersistentVolume")

    async def delete_persistent_volume(self, name):
        self.cluster.delete("persistentvolumes", None, name)


@pytest_asyncio.fixture
async def api_client():
    client = ApiClient()
    yield client
    await client.close()


@pytest.fixture
def cluster(api_client, monkeypatch):
    """A fake cluster wired into every resource."""
    fake = FakeCluster(api_client)
    monkeypatch.setattr(base, "CoreV1Api", lambda client=None: FakeCoreV1Api(fake))
    monkeypatch.setattr(base, "BatchV1Api", lambda client=None: FakeBatchV1Api(fake))
    monkeypatch.setattr(base, "CustomObjectsApi", lambda client=None: FakeCustomObjectsApi(fake))
    monkeypatch.setattr(BaseResource, "shared_api_client", api_client)
    monkeypatch.setattr(BaseResource, "conf", Settings(operator_namespace=OPERATOR_NAMESPACE))
    monkeypatch.setattr(BaseResource, "sensor", SensorDelegate())
    return fake


@pytest.fixture(autouse=True)
def kopf_events(monkeypatch):
    """Kubernetes events are only posted from inside a running operator."""
    events = Mock()
    monkeypatch.setattr(kopf, "event", events.event)
    monkeypatch.setattr(kopf, "info", events.info)
    monkeypatch.setattr(kopf, "warn", events.warn)
    return events
