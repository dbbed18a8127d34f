from typing import Dict


class ResourceLabels:
    PORTER_DOMAIN: str = "porter.sh/"

    MANAGED_LABEL = PORTER_DOMAIN + "managed"

    RESOURCE_KIND_LABEL = PORTER_DOMAIN + "resourceKind"

    RESOURCE_NAME_LABEL = PORTER_DOMAIN + "resourceName"

    RESOURCE_GENERATION_LABEL = PORTER_DOMAIN + "resourceGeneration"

    RETRY_LABEL = PORTER_DOMAIN + "retry"

    JOB_TYPE_LABEL = PORTER_DOMAIN + "jobType"

    SECRET_TYPE_LABEL = PORTER_DOMAIN + "secretType"

    PLUGINS_LABEL = PORTER_DOMAIN + "plugins"


class Labels(ResourceLabels):
    """Label set applied to everything the operator creates.

    The labels double as the idempotency key of the reconcilers: an execution
    request is looked up by the kind, name, generation and retry of the resource
    it was created for.
    """

    JOB_TYPE_AGENT = "porter-agent"

    JOB_TYPE_INSTALLER = "bundle-installer"

    SECRET_TYPE_CONFIG = "porter-config"

    SECRET_TYPE_WORKDIR = "workdir"

    SECRET_TYPE_IMAGE_PULL = "image-pull-secret"

    _labels: Dict[str, str]

    def __init__(self, labels: Dict[str, str] = None) -> None:
        self._labels = dict(labels) if labels else dict()

    def update(self, labels: Dict[str, str]) -> "Labels":
        self._labels.update(labels.copy())
        return self

    def as_dict(self) -> Dict[str, str]:
        """Return labels are dictionary."""
        return self._labels.copy()

    def as_str(self) -> str:
        """Return labels as a comma separated equality selector."""
        return ",".join([f"{k}={v}" for k, v in self._labels.items()])

    def as_sorted_str(self) -> str:
        """Return labels sorted by key and separated by spaces, the form porter accepts on the command line."""
        return " ".join([f"{k}={v}" for k, v in sorted(self._labels.items())])

    def include(self, label: str, value: str) -> "Labels":
        self.update({label: value})
        return self

    def include_missing(self, labels: Dict[str, str]) -> "Labels":
        """Add labels that do not collide with ones already set."""
        for k, v in (labels or {}).items():
            self._labels.setdefault(k, v)
        return self

    def include_managed(self) -> "Labels":
        return self.include(self.MANAGED_LABEL, "true")

    def include_resource_kind(self, kind: str) -> "Labels":
        return self.include(self.RESOURCE_KIND_LABEL, kind)

    def include_resource_name(self, name: str) -> "Labels":
        return self.include(self.RESOURCE_NAME_LABEL, name)

    def include_resource_generation(self, generation: int) -> "Labels":
        return self.include(self.RESOURCE_GENERATION_LABEL, str(generation))

    def include_retry(self, retry: str) -> "Labels":
        return self.include(self.RETRY_LABEL, retry or "")

    def include_job_type(self, job_type: str) -> "Labels":
        return self.include(self.JOB_TYPE_LABEL, job_type)

    def include_secret_type(self, secret_type: str) -> "Labels":
        return self.include(self.SECRET_TYPE_LABEL, secret_type)

    def include_plugins(self, plugins_hash: str) -> "Labels":
        return self.include(self.PLUGINS_LABEL, plugins_hash)

    def get(self, label: str, default: str = None) -> str:
        return self._labels.get(label, default)

    def contains(self, other: "Labels") -> bool:
        """Returns True if all labels in `other` are contained."""
        return all(
            key in self._labels and self._labels[key] == value
            for key, value in other.as_dict().items()
        )

    def copy(self) -> "Labels":
        return Labels(self._labels)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Labels):
            return NotImplemented
        return self._labels == other._labels

    def __str__(self):
        return f"Labels<{self._labels}>"

    @classmethod
    def generate_resource_labels(
        cls, kind: str, name: str, generation: int, retry: str
    ) -> "Labels":
        """Labels identifying the execution request created for one generation and retry of a resource."""
        return (
            Labels()
            .include_managed()
            .include_resource_kind(kind)
            .include_resource_name(name)
            .include_resource_generation(generation)
            .include_retry(retry)
        )

    @classmethod
    def generate_plugin_labels(cls, plugins_hash: str) -> "Labels":
        """Selector labels of every claim holding one plugin set."""
        return Labels().include_managed().include_plugins(plugins_hash)
