"""Kubernetes API access.

A single ClusterClient is built at startup and handed to every component
that talks to the API server.
"""

import os
from pathlib import Path
from typing import Optional

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException
from loguru import logger

from ekspose.exceptions import ClusterConnectionError


def kubeconfig_path() -> Path:
    """Return the kubeconfig location ($KUBECONFIG, then ~/.kube/config)."""
    if os.environ.get("KUBECONFIG"):
        return Path(os.environ["KUBECONFIG"])
    return Path.home() / ".kube" / "config"


class ClusterClient:
    """Typed API groups over one shared ApiClient.

    Attributes:
        api_client: The underlying kubernetes ApiClient.
        core: CoreV1Api, used for Services.
        networking: NetworkingV1Api, used for Ingresses.
        apps: AppsV1Api, used to list and watch Deployments.

    """

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)
        self.networking = client.NetworkingV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)

    @classmethod
    def from_environment(cls, context: Optional[str] = None) -> "ClusterClient":
        """Load a local kubeconfig when present, otherwise in-cluster config.

        Raises:
            ClusterConnectionError: If neither configuration can be loaded.

        """
        path = kubeconfig_path()
        try:
            if path.exists():
                configuration = client.Configuration()
                config.load_kube_config(
                    config_file=str(path),
                    context=context,
                    client_configuration=configuration,
                )
                logger.info(f"Using kubeconfig {path} (context: {context or 'current'})")
            else:
                configuration = client.Configuration()
                config.load_incluster_config(client_configuration=configuration)
                logger.info("Using in-cluster configuration")
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e

        return cls(client.ApiClient(configuration))

    def close(self) -> None:
        self.api_client.close()
