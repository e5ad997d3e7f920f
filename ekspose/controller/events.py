"""Translate watch notifications into work queue keys.

Watch callbacks receive untyped payloads. Each one is classified into a
small closed set of variants before anything else looks at it, so handlers
never cast blindly.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from kubernetes.client import ApiClient, V1Deployment
from loguru import logger

from ekspose.controller.workqueue import RateLimitingQueue
from ekspose.exceptions import WorkloadDecodeError
from ekspose.models import WorkloadSnapshot

WORKLOAD_KIND = "Deployment"


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Delivered on delete when the watch missed the object's final state."""

    key: str
    obj: Any = None


@dataclass(frozen=True)
class Workload:
    snapshot: WorkloadSnapshot
    created: str = ""
    deleted: str = ""


@dataclass(frozen=True)
class Tombstone:
    key: str
    workload: Optional[Workload]


@dataclass(frozen=True)
class Unrecognized:
    type_name: str
    reason: str


Payload = Union[Workload, Tombstone, Unrecognized]


def classify(obj: Any) -> Payload:
    """Sort a watch payload into Workload, Tombstone or Unrecognized."""
    if isinstance(obj, DeletedFinalStateUnknown):
        inner = classify(obj.obj)
        return Tombstone(key=obj.key, workload=inner if isinstance(inner, Workload) else None)

    if isinstance(obj, V1Deployment):
        manifest = ApiClient().sanitize_for_serialization(obj)
    elif isinstance(obj, dict) and obj.get("kind") == WORKLOAD_KIND:
        manifest = obj
    else:
        return Unrecognized(type_name=type(obj).__name__, reason=f"not a {WORKLOAD_KIND}")

    try:
        snapshot = WorkloadSnapshot.from_manifest(manifest)
    except WorkloadDecodeError as e:
        return Unrecognized(type_name=type(obj).__name__, reason=str(e))

    metadata = manifest.get("metadata") or {}
    return Workload(
        snapshot=snapshot,
        created=str(metadata.get("creationTimestamp") or ""),
        deleted=str(metadata.get("deletionTimestamp") or ""),
    )


class EventDispatcher:
    """Watch handler that enqueues workload keys on add and update.

    Deletes are logged only. Derived Services and Ingresses are left in place
    when their workload disappears.
    """

    def __init__(self, queue: RateLimitingQueue):
        self.queue = queue

    def on_add(self, obj: Any) -> None:
        payload = classify(obj)
        if not isinstance(payload, Workload):
            self._drop("add", payload)
            return

        snapshot = payload.snapshot
        logger.info(
            f"{WORKLOAD_KIND} added: {snapshot.ref} uid={snapshot.uid} created={payload.created} "
            f"replicas={snapshot.replicas} labels={snapshot.labels}"
        )
        self.queue.add(snapshot.ref)

    def on_update(self, old: Any, new: Any) -> None:
        old_payload, new_payload = classify(old), classify(new)
        if not isinstance(old_payload, Workload) or not isinstance(new_payload, Workload):
            self._drop("update", new_payload if isinstance(old_payload, Workload) else old_payload)
            return

        before, after = old_payload.snapshot, new_payload.snapshot
        changes = []
        if before.replicas != after.replicas:
            changes.append(f"replicas {before.replicas} -> {after.replicas}")
        if before.images != after.images:
            changes.append(f"images {before.images} -> {after.images}")
        logger.info(
            f"{WORKLOAD_KIND} updated: {after.ref} uid={after.uid}"
            + (f" ({'; '.join(changes)})" if changes else "")
        )
        self.queue.add(after.ref)

    def on_delete(self, obj: Any) -> None:
        payload = classify(obj)
        if isinstance(payload, Tombstone):
            if payload.workload is None:
                logger.warning(f"Dropping delete for {payload.key}: tombstone does not hold a {WORKLOAD_KIND}")
                return
            payload = payload.workload

        if not isinstance(payload, Workload):
            self._drop("delete", payload)
            return

        snapshot = payload.snapshot
        logger.info(
            f"{WORKLOAD_KIND} deleted: {snapshot.ref} uid={snapshot.uid} created={payload.created}"
            + (f" deleted={payload.deleted}" if payload.deleted else "")
        )

    @staticmethod
    def _drop(event: str, payload: Payload) -> None:
        if isinstance(payload, Tombstone):
            logger.warning(f"Dropping {event} event: unexpected tombstone for {payload.key}")
        else:
            logger.warning(f"Dropping {event} event: {payload.type_name} ({payload.reason})")
