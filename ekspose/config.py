"""
Configuration management for the ekspose controller and webhook using Pydantic.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseSettings):
    """Settings shared by every web server."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server configuration
    bind_address: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    uds_path: Optional[str] = None

    # TLS configuration
    tls_cert_path: Optional[Path] = None
    tls_key_path: Optional[Path] = None

    debug: bool = False

    @field_validator("tls_cert_path", "tls_key_path")
    @classmethod
    def validate_paths(cls, v):
        """Validate that TLS material exists if specified."""
        if v is not None and not Path(v).exists():
            raise ValueError(f"Path does not exist: {v}")
        return v

    def export_json(self) -> str:
        """Export configuration as JSON."""
        return self.model_dump_json(indent=2)


class AdmissionConfig(ServerConfig):
    """Configuration for the image-scanning admission webhook."""

    trivy_binary: str = "trivy"
    # Empty means trivy scans standalone, without a server
    trivy_server_url: str = "http://trivy-server-service.default.svc:8080"
    scan_timeout: float = Field(default=120.0, gt=0)
    scan_concurrency: int = Field(default=1, ge=1)


class ControllerConfig(BaseSettings):
    """Configuration for the Service/Ingress reconciliation controller."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # kubeconfig context; in-cluster config is used when no kubeconfig exists
    context: Optional[str] = None
    watch_namespace: Optional[str] = None
    resync_period: float = Field(default=600.0, gt=0)
    workers: int = Field(default=1, ge=1)

    # Derived resources
    ingress_host: str = "demo.local"
    service_port: int = Field(default=80, ge=1, le=65535)
    workload_label_key: str = "ekspose.io/workload"

    # Requeue backoff
    backoff_base: float = Field(default=0.005, gt=0)
    backoff_max: float = Field(default=1000.0, gt=0)

    debug: bool = False

    @field_validator("context", "watch_namespace")
    @classmethod
    def empty_as_none(cls, v):
        return v or None

    def export_json(self) -> str:
        """Export configuration as JSON."""
        return self.model_dump_json(indent=2)
