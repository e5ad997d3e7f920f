"""Reconciliation controller: expose every Deployment through a Service and an Ingress.

Each queue item moves Pending -> InFlight -> Done | Requeued. Only Done
resets the item's backoff. Objects that vanished before processing and
resources that already exist both count as Done.
"""

import threading
from typing import Any, Callable, List, Optional, Protocol

from kubernetes.client.exceptions import ApiException
from loguru import logger

from ekspose.cluster import ClusterClient
from ekspose.config import ControllerConfig
from ekspose.controller.resources import build_ingress, build_service
from ekspose.controller.workqueue import ExponentialBackoffRateLimiter, RateLimitingQueue
from ekspose.exceptions import ReconcileError
from ekspose.models import WorkloadRef, WorkloadSnapshot
from ekspose.policy import NO_AUTO_CREATION, PolicyFlags

HTTP_CONFLICT = 409


class WorkloadLister(Protocol):
    def get(self, namespace: str, name: str) -> Optional[Any]: ...

    def wait_for_cache_sync(self, stop_event: threading.Event) -> bool: ...


class ReconciliationController:
    """Drains the work queue and creates missing derived resources.

    Args:
        cluster: Shared Kubernetes client used for create calls.
        lister: Cached workload lookup (the watch source).
        config: Controller settings.
        queue: Optional pre-built queue; one is created from ``config`` otherwise.

    """

    def __init__(
        self,
        cluster: ClusterClient,
        lister: WorkloadLister,
        config: ControllerConfig,
        queue: Optional[RateLimitingQueue] = None,
    ):
        self.cluster = cluster
        self.lister = lister
        self.config = config
        self.queue = queue if queue is not None else RateLimitingQueue(
            ExponentialBackoffRateLimiter(base=config.backoff_base, maximum=config.backoff_max),
        )
        self._stop_event = threading.Event()
        self._workers: List[threading.Thread] = []

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Process items until the stop signal fires, then shut the queue down."""
        if stop_event is not None:
            self._stop_event = stop_event
        stop_event = self._stop_event
        logger.info("Starting controller")

        if not self.lister.wait_for_cache_sync(stop_event):
            logger.warning("Stopped before the Deployment cache synced")
            self.queue.shut_down()
            return

        logger.info(f"Cache synced, starting {self.config.workers} worker(s)")
        for index in range(self.config.workers):
            worker = threading.Thread(target=self.worker, name=f"ekspose-worker-{index}", daemon=True)
            worker.start()
            self._workers.append(worker)

        stop_event.wait()
        logger.info("Shutting down controller")
        self.queue.shut_down()

    def stop(self) -> None:
        self._stop_event.set()
        self.queue.shut_down()

    def worker(self) -> None:
        while self.process_next_item():
            pass

    def process_next_item(self) -> bool:
        """Handle one queue item; False once the queue is shutting down."""
        ref, shutdown = self.queue.get()
        if shutdown:
            return False

        try:
            self.sync(ref)
        except Exception as e:
            logger.error(f"Error syncing {ref}: {e}; requeue #{self.queue.num_requeues(ref) + 1}")
            self.queue.add_rate_limited(ref)
        else:
            self.queue.forget(ref)
        finally:
            self.queue.done(ref)
        return True

    def sync(self, ref: WorkloadRef) -> None:
        """Bring the Service and Ingress for ``ref`` into existence.

        Raises:
            ReconcileError: If a create call fails for any reason other than
                the resource already existing.

        """
        obj = self.lister.get(ref.namespace, ref.name)
        if obj is None:
            logger.info(f"Deployment {ref} not found, assuming it was deleted")
            return

        snapshot = WorkloadSnapshot.from_object(obj)
        self.sync_snapshot(snapshot)

    def sync_snapshot(self, snapshot: WorkloadSnapshot) -> None:
        flags = PolicyFlags.from_snapshot(snapshot)
        if flags.no_auto_exposure:
            logger.info(f"Skipping Service and Ingress for {snapshot.ref} ({NO_AUTO_CREATION} is set)")
            return

        logger.info(f"Ensuring Service and Ingress for {snapshot.ref}")
        self._create_if_absent(
            "Service",
            snapshot,
            lambda: self.cluster.core.create_namespaced_service(
                snapshot.namespace, build_service(snapshot, self.config)
            ),
        )
        self._create_if_absent(
            "Ingress",
            snapshot,
            lambda: self.cluster.networking.create_namespaced_ingress(
                snapshot.namespace, build_ingress(snapshot, self.config)
            ),
        )

    def _create_if_absent(self, kind: str, snapshot: WorkloadSnapshot, create: Callable[[], Any]) -> None:
        try:
            create()
        except ApiException as e:
            if e.status == HTTP_CONFLICT:
                logger.info(f"{kind} {snapshot.ref} already exists, skipping creation")
                return
            raise ReconcileError(
                f"failed to create {kind} {snapshot.ref}: {e.status} {e.reason}",
                kind=kind,
                namespace=snapshot.namespace,
                name=snapshot.name,
            ) from e

        logger.info(f"{kind} created: {snapshot.ref}")
