from ekspose.controller.resources import REWRITE_ANNOTATION, build_ingress, build_service
from ekspose.models import WorkloadSnapshot
from tests.fixtures.k8s import deployment_manifest


def snapshot_for(**kwargs) -> WorkloadSnapshot:
    return WorkloadSnapshot.from_manifest(deployment_manifest(**kwargs))


def test_service_selects_pod_template_labels(controller_config):
    snapshot = snapshot_for(name="web", namespace="apps", template_labels={"app": "web", "tier": "frontend"})

    service = build_service(snapshot, controller_config)

    assert service.metadata.name == "web"
    assert service.metadata.namespace == "apps"
    assert service.metadata.labels == {"ekspose.io/workload": "web", "app": "web", "component": "service"}
    assert service.spec.selector == {"app": "web", "tier": "frontend"}
    assert [(port.name, port.port) for port in service.spec.ports] == [("http", 80)]


def test_service_port_follows_config(controller_config):
    controller_config.service_port = 8080

    service = build_service(snapshot_for(), controller_config)

    assert service.spec.ports[0].port == 8080


def test_ingress_routes_path_to_service(controller_config):
    snapshot = snapshot_for(name="checkout", namespace="shop")

    ingress = build_ingress(snapshot, controller_config)

    assert ingress.metadata.name == "checkout"
    assert ingress.metadata.namespace == "shop"
    assert ingress.metadata.annotations == {REWRITE_ANNOTATION: "/"}
    assert ingress.metadata.labels["component"] == "ingress"

    rule = ingress.spec.rules[0]
    assert rule.host == "demo.local"
    path = rule.http.paths[0]
    assert path.path == "/checkout"
    assert path.path_type == "Prefix"
    assert path.backend.service.name == "checkout"
    assert path.backend.service.port.number == 80


def test_ingress_host_follows_config(controller_config):
    controller_config.ingress_host = "apps.example.com"

    ingress = build_ingress(snapshot_for(), controller_config)

    assert ingress.spec.rules[0].host == "apps.example.com"
