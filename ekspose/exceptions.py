"""Exception hierarchy for ekspose."""


class EksposeException(Exception):
    """Base exception for all ekspose errors."""

    pass


class ClusterConnectionError(EksposeException):
    """Raised when no kubeconfig or in-cluster configuration can be loaded."""

    pass


class ReconcileError(EksposeException):
    """Raised when a derived resource cannot be created.

    "Already exists" is never reported through this exception; anything
    that reaches the caller is retried with backoff.
    """

    def __init__(self, message: str, kind: str = "", namespace: str = "", name: str = ""):
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ScanException(EksposeException):
    """Raised when the vulnerability scanner cannot produce a result for an image."""

    def __init__(self, message: str, image: str = ""):
        super().__init__(message)
        self.image = image


class WorkloadDecodeError(EksposeException):
    """Raised when a payload cannot be decoded into a workload object."""

    pass


class AdmissionRequestError(EksposeException):
    """Raised for malformed admission transport envelopes.

    These are caller errors and are answered with an HTTP 400.
    """

    status_code = 400
