"""List-and-watch source for Deployments with a local cache.

The controller only reads from the cache. Every resync period the watch is
restarted with a fresh list, which replays still-present objects as updates
and reports vanished ones as deletes.
"""

import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from kubernetes import watch
from kubernetes.client.exceptions import ApiException
from loguru import logger

from ekspose.cluster import ClusterClient
from ekspose.controller.events import DeletedFinalStateUnknown
from ekspose.models import WorkloadRef

HTTP_GONE = 410


class EventHandler(Protocol):
    def on_add(self, obj: Any) -> None: ...

    def on_update(self, old: Any, new: Any) -> None: ...

    def on_delete(self, obj: Any) -> None: ...


def object_key(obj: Any) -> str:
    return WorkloadRef(obj.metadata.namespace or "", obj.metadata.name).key


class DeploymentInformer:
    def __init__(
        self,
        cluster: ClusterClient,
        namespace: Optional[str] = None,
        resync_period: float = 600.0,
        retry_delay: float = 5.0,
    ):
        self.cluster = cluster
        self.namespace = namespace
        self.resync_period = resync_period
        self.retry_delay = retry_delay
        self._lock = threading.Lock()
        self._cache: Dict[str, Any] = {}
        self._handlers: List[EventHandler] = []
        self._synced = threading.Event()
        self._watch: Optional[watch.Watch] = None

    def add_event_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_cache_sync(self, stop_event: threading.Event, poll: float = 0.1) -> bool:
        """Block until the first list completed; False if stopped first."""
        while not stop_event.is_set():
            if self._synced.wait(timeout=poll):
                return True
        return False

    def get(self, namespace: str, name: str) -> Optional[Any]:
        """Cached lookup; None when the object is not (or no longer) known."""
        with self._lock:
            return self._cache.get(WorkloadRef(namespace, name).key)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._cache)

    def run(self, stop_event: threading.Event) -> None:
        logger.info(f"Watching Deployments in {self.namespace or 'all namespaces'}")
        while not stop_event.is_set():
            try:
                resource_version = self._relist()
                self._watch_from(resource_version, stop_event)
            except ApiException as e:
                if e.status == HTTP_GONE:
                    logger.info("Watch resourceVersion expired, relisting")
                    continue
                logger.error(f"Deployment watch failed: {e.status} {e.reason}")
                stop_event.wait(self.retry_delay)
            except Exception as e:
                logger.error(f"Deployment watch error: {e}")
                stop_event.wait(self.retry_delay)
        logger.info("Deployment watch stopped")

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.stop()

    def _list_target(self) -> Tuple[Callable, tuple]:
        if self.namespace:
            return self.cluster.apps.list_namespaced_deployment, (self.namespace,)
        return self.cluster.apps.list_deployment_for_all_namespaces, ()

    def _relist(self) -> str:
        func, args = self._list_target()
        result = func(*args)
        fresh = {object_key(obj): obj for obj in result.items}

        with self._lock:
            previous = self._cache
            self._cache = fresh

        for key, obj in fresh.items():
            if key in previous:
                self._dispatch("on_update", previous[key], obj)
            else:
                self._dispatch("on_add", obj)
        for key, obj in previous.items():
            if key not in fresh:
                self._dispatch("on_delete", DeletedFinalStateUnknown(key=key, obj=obj))

        if not self._synced.is_set():
            logger.info(f"Deployment cache synced ({len(fresh)} objects)")
            self._synced.set()
        return result.metadata.resource_version

    def _watch_from(self, resource_version: str, stop_event: threading.Event) -> None:
        func, args = self._list_target()
        self._watch = watch.Watch()
        stream = self._watch.stream(
            func,
            *args,
            resource_version=resource_version,
            timeout_seconds=int(self.resync_period),
        )
        for event in stream:
            if stop_event.is_set():
                self._watch.stop()
                break
            self.apply(event)

    def apply(self, event: Dict[str, Any]) -> None:
        """Apply one watch event to the cache and notify handlers."""
        event_type = event.get("type")
        obj = event.get("object")

        if event_type == "ERROR":
            raw = event.get("raw_object") or {}
            raise ApiException(status=raw.get("code"), reason=raw.get("message", "watch error"))

        key = object_key(obj)
        with self._lock:
            old = self._cache.get(key)
            if event_type == "DELETED":
                self._cache.pop(key, None)
            else:
                self._cache[key] = obj

        if event_type == "DELETED":
            self._dispatch("on_delete", obj)
        elif old is None:
            self._dispatch("on_add", obj)
        else:
            self._dispatch("on_update", old, obj)

    def _dispatch(self, method: str, *args: Any) -> None:
        for handler in self._handlers:
            try:
                getattr(handler, method)(*args)
            except Exception:
                logger.exception(f"Event handler {method} failed")
