"""Data models shared by the reconciliation controller and the admission webhook.

Workloads arrive either as manifest dictionaries (admission payloads) or as
kubernetes client models (watch cache). Both are reduced to an immutable
WorkloadSnapshot before any policy is evaluated.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional, Tuple

from kubernetes.client import ApiClient

from ekspose.exceptions import WorkloadDecodeError


class ContainerKind(str, Enum):
    """Where a container is declared in the pod template."""

    INIT = "init"
    MAIN = "main"


class WorkloadRef(NamedTuple):
    """Identity of a workload, used as the work queue key."""

    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    @classmethod
    def parse(cls, key: str) -> "WorkloadRef":
        """Split a ``namespace/name`` key; a bare name is cluster scoped."""
        parts = key.split("/")
        if len(parts) == 1 and parts[0]:
            return cls(namespace="", name=parts[0])
        if len(parts) == 2 and parts[1]:
            return cls(namespace=parts[0], name=parts[1])
        raise ValueError(f"unexpected key format: {key!r}")

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class ContainerImage:
    kind: ContainerKind
    name: str
    image: str
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkloadSnapshot:
    """Read-only view of a workload taken at reconciliation or admission time.

    Attributes:
        name: Workload name.
        namespace: Workload namespace (may be empty in admission payloads).
        uid: Object UID, empty for objects not yet persisted.
        labels: The workload's own labels.
        pod_template_labels: Labels of the pod template; used as Service selector.
        containers: Init containers first, then main containers, in declaration order.

    """

    name: str
    namespace: str
    uid: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    pod_template_labels: Dict[str, str] = field(default_factory=dict)
    containers: Tuple[ContainerImage, ...] = ()
    replicas: Optional[int] = None

    @property
    def ref(self) -> WorkloadRef:
        return WorkloadRef(self.namespace, self.name)

    @property
    def images(self) -> list[str]:
        """Every declared image, duplicates preserved."""
        return [container.image for container in self.containers]

    def with_namespace(self, namespace: str) -> "WorkloadSnapshot":
        return WorkloadSnapshot(
            name=self.name,
            namespace=namespace,
            uid=self.uid,
            labels=self.labels,
            pod_template_labels=self.pod_template_labels,
            containers=self.containers,
            replicas=self.replicas,
        )

    @classmethod
    def from_object(cls, obj: Any) -> "WorkloadSnapshot":
        """Build a snapshot from a manifest dict or a kubernetes client model."""
        if isinstance(obj, dict):
            return cls.from_manifest(obj)
        return cls.from_manifest(ApiClient().sanitize_for_serialization(obj))

    @classmethod
    def from_manifest(cls, manifest: Any) -> "WorkloadSnapshot":
        """Decode a workload manifest (camelCase keys, as sent by the API server).

        Raises:
            WorkloadDecodeError: If the manifest does not have a workload's shape.

        """
        if not isinstance(manifest, dict):
            raise WorkloadDecodeError(f"workload must be an object, got {type(manifest).__name__}")

        metadata = _mapping(manifest.get("metadata"), "metadata")
        spec = _mapping(manifest.get("spec"), "spec")

        if "template" in spec:
            template = _mapping(spec.get("template"), "spec.template")
            template_labels = _labels(
                _mapping(template.get("metadata"), "spec.template.metadata").get("labels"),
                "spec.template.metadata.labels",
            )
            pod_spec = _mapping(template.get("spec"), "spec.template.spec")
        else:
            # Bare pods carry their containers directly under spec
            template_labels = _labels(metadata.get("labels"), "metadata.labels")
            pod_spec = spec

        containers = _containers(pod_spec.get("initContainers"), ContainerKind.INIT) + _containers(
            pod_spec.get("containers"), ContainerKind.MAIN
        )

        replicas = spec.get("replicas")
        if replicas is not None and (isinstance(replicas, bool) or not isinstance(replicas, int)):
            raise WorkloadDecodeError(f"spec.replicas must be an integer, got {replicas!r}")

        return cls(
            name=_string(metadata.get("name"), "metadata.name"),
            namespace=_string(metadata.get("namespace"), "metadata.namespace"),
            uid=_string(metadata.get("uid"), "metadata.uid"),
            labels=_labels(metadata.get("labels"), "metadata.labels"),
            pod_template_labels=template_labels,
            containers=containers,
            replicas=replicas,
        )


def _mapping(value: Any, path: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise WorkloadDecodeError(f"{path} must be an object, got {type(value).__name__}")
    return value


def _string(value: Any, path: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise WorkloadDecodeError(f"{path} must be a string, got {type(value).__name__}")
    return value


def _labels(value: Any, path: str) -> Dict[str, str]:
    labels = _mapping(value, path)
    for key, label in labels.items():
        if not isinstance(label, str):
            raise WorkloadDecodeError(f"{path}.{key} must be a string")
    return dict(labels)


def _containers(value: Any, kind: ContainerKind) -> Tuple[ContainerImage, ...]:
    path = "initContainers" if kind is ContainerKind.INIT else "containers"
    if value is None:
        return ()
    if not isinstance(value, list):
        raise WorkloadDecodeError(f"{path} must be a list, got {type(value).__name__}")

    decoded = []
    for index, container in enumerate(value):
        container = _mapping(container, f"{path}[{index}]")
        env: Dict[str, str] = {}
        env_list = container.get("env") or []
        if not isinstance(env_list, list):
            raise WorkloadDecodeError(f"{path}[{index}].env must be a list")
        for entry in env_list:
            entry = _mapping(entry, f"{path}[{index}].env[]")
            env_name = _string(entry.get("name"), f"{path}[{index}].env[].name")
            # valueFrom references resolve at runtime only
            env[env_name] = _string(entry.get("value"), f"{path}[{index}].env[{env_name}].value")
        decoded.append(
            ContainerImage(
                kind=kind,
                name=_string(container.get("name"), f"{path}[{index}].name"),
                image=_string(container.get("image"), f"{path}[{index}].image"),
                env=env,
            )
        )
    return tuple(decoded)
