# conftest.py
"""
Shared test fixtures for the ekspose controller and admission webhook tests
"""

import pytest
from fastapi.testclient import TestClient

from ekspose.admission.admission_controller import AdmissionDecisionEngine, AdmissionServer
from ekspose.config import AdmissionConfig, ControllerConfig
from ekspose.controller.reconciler import ReconciliationController
from ekspose.controller.workqueue import ExponentialBackoffRateLimiter, RateLimitingQueue
from tests.fixtures.k8s import FakeCluster, FakeLister, FakeScanner

CONFIG_ENV_VARS = [
    "BIND_ADDRESS", "PORT", "UDS_PATH", "TLS_CERT_PATH", "TLS_KEY_PATH", "DEBUG",
    "TRIVY_BINARY", "TRIVY_SERVER_URL", "SCAN_TIMEOUT", "SCAN_CONCURRENCY",
    "CONTEXT", "WATCH_NAMESPACE", "RESYNC_PERIOD", "WORKERS", "INGRESS_HOST",
    "SERVICE_PORT", "WORKLOAD_LABEL_KEY", "BACKOFF_BASE", "BACKOFF_MAX",
]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep settings independent of the caller's environment and any .env file."""
    for var in CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def controller_config() -> ControllerConfig:
    return ControllerConfig(backoff_base=0.001, backoff_max=0.01)


@pytest.fixture
def admission_config() -> AdmissionConfig:
    return AdmissionConfig(trivy_server_url="http://trivy.test:8080")


@pytest.fixture
def fake_cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def fake_lister() -> FakeLister:
    return FakeLister()


@pytest.fixture
def queue():
    work_queue = RateLimitingQueue(ExponentialBackoffRateLimiter(base=0.001, maximum=0.01))
    yield work_queue
    work_queue.shut_down()


@pytest.fixture
def controller(fake_cluster, fake_lister, controller_config, queue) -> ReconciliationController:
    return ReconciliationController(fake_cluster, fake_lister, controller_config, queue=queue)


@pytest.fixture
def fake_scanner() -> FakeScanner:
    return FakeScanner()


@pytest.fixture
def engine(fake_scanner, admission_config) -> AdmissionDecisionEngine:
    return AdmissionDecisionEngine(fake_scanner, admission_config)


@pytest.fixture
def admission_client(engine, admission_config):
    server = AdmissionServer(admission_config, engine=engine)
    with TestClient(server.app) as client:
        yield client
