"""
Override for kopf._cogs.helpers.thirdparty module to support kubernetes_asyncio.

Kopf only recognises models from the synchronous ``kubernetes`` client when it
appends owner references, labels or annotations to child objects. Every child
object this operator creates (Jobs, Secrets, PersistentVolumeClaims) is a
``kubernetes_asyncio`` model, so Kopf's detection is widened before it loads.

This override can be removed once https://github.com/nolar/kopf/pull/809 is merged
and released in a new version of Kopf.

This module MUST be imported before any Kopf imports. The patch works by replacing
the kopf._cogs.helpers.thirdparty module in sys.modules before Kopf's internal
imports load it.
"""
import abc
import sys
import types
from typing import Any, Optional


def patch_kopf_thirdparty():
    """Patch Kopf's thirdparty detection before it loads."""

    if 'kopf._cogs.helpers.thirdparty' in sys.modules:
        existing = sys.modules['kopf._cogs.helpers.thirdparty']
        if hasattr(existing, '_porter_patched'):
            return

    # pykube objects are never produced by this operator
    class PykubeObject:
        pass

    from kubernetes_asyncio.client import V1ObjectMeta, V1OwnerReference

    class KubernetesModel(abc.ABC):
        @classmethod
        def __subclasshook__(cls, subcls: Any) -> Any:
            if cls is KubernetesModel:
                if any(
                    C.__module__.startswith("kubernetes.client.models.")
                    or C.__module__.startswith("kubernetes_asyncio.client.models.")
                    for C in subcls.__mro__
                ):
                    return True
            return NotImplemented

        @property
        def metadata(self) -> Optional[V1ObjectMeta]:
            raise NotImplementedError

        @metadata.setter
        def metadata(self, _: Optional[V1ObjectMeta]) -> None:
            raise NotImplementedError

    thirdparty_module = types.ModuleType('thirdparty')
    thirdparty_module.PykubeObject = PykubeObject
    thirdparty_module.KubernetesModel = KubernetesModel
    thirdparty_module.V1ObjectMeta = V1ObjectMeta
    thirdparty_module.V1OwnerReference = V1OwnerReference
    thirdparty_module._porter_patched = True

    sys.modules['kopf._cogs.helpers.thirdparty'] = thirdparty_module

    print("[porter-operator] Applied Kopf thirdparty patch for kubernetes_asyncio support")


patch_kopf_thirdparty()
