from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Decision(str, Enum):
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"


class ScanFinding(BaseModel):
    """A single critical vulnerability reported for an image."""

    id: str = Field(description="Vulnerability identifier, e.g. CVE-2024-1234")
    url: str = Field(default="", description="Primary reference URL")


class ImageScanResult(BaseModel):
    name: str
    critical_cves: int = 0
    cves: List[ScanFinding] = Field(default_factory=list)


class ValidationOutcome(BaseModel):
    """Per-request audit record returned in every admission response."""

    deployment: str
    namespace: str
    images: List[ImageScanResult] = Field(default_factory=list)
    decision: Decision = Decision.ALLOWED

    @property
    def denied(self) -> bool:
        return self.decision is Decision.DENIED

    def message(self) -> str:
        return self.model_dump_json(indent=2)


class AdmissionStatus(BaseModel):
    code: Optional[int] = None
    message: str = ""


class AdmissionResponse(BaseModel):
    uid: str
    allowed: bool
    status: AdmissionStatus


class AdmissionReviewResponse(BaseModel):
    apiVersion: str = "admission.k8s.io/v1"
    kind: str = "AdmissionReview"
    response: AdmissionResponse


class HealthResponse(BaseModel):
    status: str
