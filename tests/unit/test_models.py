import pytest

from ekspose.exceptions import WorkloadDecodeError
from ekspose.models import ContainerKind, WorkloadRef, WorkloadSnapshot
from ekspose.policy import PolicyFlags, is_enabled
from tests.fixtures.k8s import container, deployment_manifest, v1_deployment


def test_snapshot_from_manifest():
    snapshot = WorkloadSnapshot.from_manifest(
        deployment_manifest(
            name="web",
            namespace="apps",
            init_containers=[container("migrate", "migrate:1.0")],
            containers=[container("app", "app:1.0", env={"LOG_LEVEL": "debug"}), container("proxy", "envoy:1.29")],
            template_labels={"app": "web", "tier": "frontend"},
            replicas=2,
        )
    )

    assert snapshot.ref == WorkloadRef("apps", "web")
    assert snapshot.labels == {"team": "platform"}
    assert snapshot.pod_template_labels == {"app": "web", "tier": "frontend"}
    assert snapshot.replicas == 2
    assert snapshot.images == ["migrate:1.0", "app:1.0", "envoy:1.29"]
    assert [c.kind for c in snapshot.containers] == [ContainerKind.INIT, ContainerKind.MAIN, ContainerKind.MAIN]
    assert snapshot.containers[1].env == {"LOG_LEVEL": "debug"}


def test_snapshot_from_bare_pod():
    pod = {
        "kind": "Pod",
        "metadata": {"name": "debug", "namespace": "default", "labels": {"run": "debug"}},
        "spec": {"containers": [container("shell", "busybox:1.36")]},
    }

    snapshot = WorkloadSnapshot.from_manifest(pod)

    assert snapshot.pod_template_labels == {"run": "debug"}
    assert snapshot.images == ["busybox:1.36"]


def test_snapshot_from_client_model_matches_manifest():
    snapshot = WorkloadSnapshot.from_object(v1_deployment(name="api", images=("api:2.1",), env={"A": "b"}))

    assert snapshot.ref == WorkloadRef("default", "api")
    assert snapshot.pod_template_labels == {"app": "api"}
    assert snapshot.containers[0].env == {"A": "b"}


def test_env_value_from_reads_as_empty():
    app = container("app", "app:1.0")
    app["env"] = [{"name": "TOKEN", "valueFrom": {"secretKeyRef": {"name": "s", "key": "t"}}}]

    snapshot = WorkloadSnapshot.from_manifest(deployment_manifest(containers=[app]))

    assert snapshot.containers[0].env == {"TOKEN": ""}


def test_with_namespace_returns_copy():
    snapshot = WorkloadSnapshot.from_manifest(deployment_manifest(namespace=""))

    moved = snapshot.with_namespace("apps")

    assert moved.namespace == "apps"
    assert snapshot.namespace == ""
    assert moved.images == snapshot.images


@pytest.mark.parametrize(
    "mutate",
    [
        lambda m: m.update(metadata=["web"]),
        lambda m: m["metadata"].update(name=42),
        lambda m: m["spec"].update(replicas="3"),
        lambda m: m["spec"]["template"]["metadata"].update(labels={"app": 1}),
        lambda m: m["spec"]["template"]["spec"].update(initContainers="busybox"),
        lambda m: m["spec"]["template"]["spec"]["containers"][0].update(env={"A": "b"}),
    ],
)
def test_snapshot_decode_errors(mutate):
    manifest = deployment_manifest()
    mutate(manifest)

    with pytest.raises(WorkloadDecodeError):
        WorkloadSnapshot.from_manifest(manifest)


def test_snapshot_requires_object():
    with pytest.raises(WorkloadDecodeError, match="must be an object"):
        WorkloadSnapshot.from_manifest(None)


def test_workload_ref_keys():
    assert WorkloadRef("default", "web").key == "default/web"
    assert str(WorkloadRef("", "cluster-wide")) == "cluster-wide"
    assert WorkloadRef.parse("apps/api") == WorkloadRef("apps", "api")
    assert WorkloadRef.parse("solo") == WorkloadRef("", "solo")


@pytest.mark.parametrize("key", ["", "a/b/c", "ns/"])
def test_workload_ref_parse_rejects_bad_keys(key):
    with pytest.raises(ValueError):
        WorkloadRef.parse(key)


@pytest.mark.parametrize(
    "value,expected",
    [("yes", True), ("true", True), ("TRUE", True), (" Yes ", True), ("1", False), ("on", False), ("", False)],
)
def test_flag_values(value, expected):
    assert is_enabled(value) is expected


def test_flags_read_from_any_container():
    snapshot = WorkloadSnapshot.from_manifest(
        deployment_manifest(
            init_containers=[container("init", "busybox:1.36", env={"NO_AUTO_CREATION": "yes"})],
            containers=[
                container("app", "app:1.0", env={"BYPASS_CVE_DENIED": "no"}),
                container("proxy", "envoy:1.29", env={"BYPASS_CVE_DENIED": "True"}),
            ],
        )
    )

    flags = PolicyFlags.from_snapshot(snapshot)

    assert flags.no_auto_exposure is True
    assert flags.bypass_cve_denial is True


def test_flags_default_off():
    flags = PolicyFlags.from_snapshot(WorkloadSnapshot.from_manifest(deployment_manifest()))

    assert flags == PolicyFlags()
