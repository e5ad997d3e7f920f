"""Service and Ingress derived from a workload.

Both objects are named after the workload, so creating them is idempotent.
"""

from typing import Dict

from kubernetes import client

from ekspose.config import ControllerConfig
from ekspose.models import WorkloadSnapshot

REWRITE_ANNOTATION = "nginx.ingress.kubernetes.io/rewrite-target"
PORT_NAME = "http"


def resource_labels(snapshot: WorkloadSnapshot, component: str, config: ControllerConfig) -> Dict[str, str]:
    return {
        config.workload_label_key: snapshot.name,
        "app": snapshot.name,
        "component": component,
    }


def build_service(snapshot: WorkloadSnapshot, config: ControllerConfig) -> client.V1Service:
    """Service selecting the workload's pods by their pod-template labels."""
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(
            name=snapshot.name,
            namespace=snapshot.namespace,
            labels=resource_labels(snapshot, "service", config),
        ),
        spec=client.V1ServiceSpec(
            selector=dict(snapshot.pod_template_labels),
            ports=[client.V1ServicePort(name=PORT_NAME, port=config.service_port)],
        ),
    )


def build_ingress(snapshot: WorkloadSnapshot, config: ControllerConfig) -> client.V1Ingress:
    """Ingress routing ``<host>/<workload-name>`` to the same-named Service."""
    path = client.V1HTTPIngressPath(
        path=f"/{snapshot.name}",
        path_type="Prefix",
        backend=client.V1IngressBackend(
            service=client.V1IngressServiceBackend(
                name=snapshot.name,
                port=client.V1ServiceBackendPort(number=config.service_port),
            )
        ),
    )
    return client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=client.V1ObjectMeta(
            name=snapshot.name,
            namespace=snapshot.namespace,
            annotations={REWRITE_ANNOTATION: "/"},
            labels=resource_labels(snapshot, "ingress", config),
        ),
        spec=client.V1IngressSpec(
            rules=[
                client.V1IngressRule(
                    host=config.ingress_host,
                    http=client.V1HTTPIngressRuleValue(paths=[path]),
                )
            ]
        ),
    )
