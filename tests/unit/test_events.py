from kubernetes import client

from ekspose.controller.events import (
    DeletedFinalStateUnknown,
    EventDispatcher,
    Tombstone,
    Unrecognized,
    Workload,
    classify,
)
from ekspose.models import WorkloadRef
from tests.fixtures.k8s import container, deployment_manifest, v1_deployment


def test_classify_manifest():
    payload = classify(deployment_manifest(name="web", namespace="apps"))

    assert isinstance(payload, Workload)
    assert payload.snapshot.ref == WorkloadRef("apps", "web")
    assert payload.created == "2026-10-19T12:00:00Z"
    assert payload.deleted == ""


def test_classify_client_model():
    payload = classify(v1_deployment(name="api", images=("api:2.1", "envoy:1.29")))

    assert isinstance(payload, Workload)
    assert payload.snapshot.uid == "uid-api"
    assert payload.snapshot.images == ["api:2.1", "envoy:1.29"]


def test_classify_other_kinds_are_unrecognized():
    service = client.V1Service(metadata=client.V1ObjectMeta(name="web"))

    assert isinstance(classify(service), Unrecognized)
    assert isinstance(classify({"kind": "StatefulSet", "metadata": {"name": "db"}}), Unrecognized)
    assert isinstance(classify("default/web"), Unrecognized)


def test_classify_undecodable_workload():
    manifest = deployment_manifest()
    manifest["spec"]["template"]["spec"]["containers"] = {"name": "app"}

    payload = classify(manifest)

    assert isinstance(payload, Unrecognized)
    assert "containers must be a list" in payload.reason


def test_classify_tombstone():
    wrapped = classify(DeletedFinalStateUnknown(key="default/web", obj=deployment_manifest()))
    empty = classify(DeletedFinalStateUnknown(key="default/gone"))

    assert isinstance(wrapped, Tombstone)
    assert wrapped.workload.snapshot.name == "web"
    assert isinstance(empty, Tombstone)
    assert empty.workload is None


def test_add_enqueues_key(queue):
    EventDispatcher(queue).on_add(deployment_manifest(name="web"))

    assert queue.get() == (WorkloadRef("default", "web"), False)


def test_update_always_enqueues_new_key(queue):
    dispatcher = EventDispatcher(queue)
    old = deployment_manifest(name="web")

    dispatcher.on_update(old, deployment_manifest(name="web"))

    assert len(queue) == 1

    new = deployment_manifest(name="web", replicas=3, containers=[container("app", "app:1.1")])
    dispatcher.on_update(old, new)

    # still deduplicated against the pending key
    assert len(queue) == 1


def test_update_with_unrecognized_side_is_dropped(queue):
    EventDispatcher(queue).on_update("garbage", deployment_manifest())

    assert len(queue) == 0


def test_delete_is_never_enqueued(queue):
    dispatcher = EventDispatcher(queue)

    dispatcher.on_delete(deployment_manifest())
    dispatcher.on_delete(DeletedFinalStateUnknown(key="default/web", obj=deployment_manifest()))
    dispatcher.on_delete(DeletedFinalStateUnknown(key="default/gone"))

    assert len(queue) == 0


def test_unrecognized_add_is_dropped(queue):
    EventDispatcher(queue).on_add({"kind": "ConfigMap", "metadata": {"name": "settings"}})

    assert len(queue) == 0
