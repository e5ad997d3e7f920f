import asyncio
import json
from typing import Dict, List, Optional, Protocol

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from ekspose.config import AdmissionConfig
from ekspose.exceptions import AdmissionRequestError, ScanException, WorkloadDecodeError
from ekspose.models import WorkloadSnapshot
from ekspose.policy import BYPASS_CVE_DENIED, PolicyFlags
from ekspose.responses import (
    AdmissionResponse,
    AdmissionReviewResponse,
    AdmissionStatus,
    Decision,
    HealthResponse,
    ImageScanResult,
    ValidationOutcome,
)
from ekspose.server import WebServer
from ekspose.validators.trivy import ScanResult, TrivyScanner

JSON_CONTENT_TYPE = "application/json"


class Scanner(Protocol):
    async def scan(self, image: str) -> ScanResult: ...


def parse_admission_review(content_type: Optional[str], body: bytes) -> Dict:
    """Validate the transport envelope of an admission request.

    Raises:
        AdmissionRequestError: On a wrong content type, an empty body,
            invalid JSON or a missing ``request`` field.

    """
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type != JSON_CONTENT_TYPE:
        raise AdmissionRequestError(f"Content-Type: {content_type!r} should be {JSON_CONTENT_TYPE!r}")

    if not body:
        raise AdmissionRequestError("admission request body is empty")

    try:
        review = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise AdmissionRequestError(f"could not parse admission review request: {e}")

    if not isinstance(review, dict) or not isinstance(review.get("request"), dict):
        raise AdmissionRequestError("admission review request field is missing")

    return review


class AdmissionDecisionEngine:
    """Scan every image of a workload and decide whether it may be admitted.

    Scanner failures are logged and the image is left out of the outcome;
    they never deny a request on their own.
    """

    def __init__(self, scanner: Scanner, config: AdmissionConfig):
        self.scanner = scanner
        self.config = config

    async def evaluate(self, review: Dict) -> AdmissionReviewResponse:
        request = review["request"]
        uid = str(request.get("uid") or "")

        if request.get("operation") == "DELETE":
            return self._respond(review, uid, True, "DELETE operations are not scanned")

        try:
            snapshot = WorkloadSnapshot.from_manifest(request.get("object"))
        except WorkloadDecodeError as e:
            logger.error(f"Failed to decode workload in request {uid}: {e}")
            return self._respond(review, uid, False, f"failed to decode workload: {e}", code=400)

        if not snapshot.namespace and request.get("namespace"):
            snapshot = snapshot.with_namespace(str(request["namespace"]))

        flags = PolicyFlags.from_snapshot(snapshot)
        logger.info(
            f"Validating {snapshot.ref}: images={snapshot.images} "
            f"{BYPASS_CVE_DENIED}={'true' if flags.bypass_cve_denial else 'false'}"
        )

        results = await self.scan_images(snapshot.images)
        outcome = self.decide(snapshot, results, flags)

        logger.info(f"Admission decision for {snapshot.ref}: {outcome.decision.value}")
        return self._respond(review, uid, not outcome.denied, outcome.message())

    async def scan_images(self, images: List[str]) -> List[ImageScanResult]:
        """Scan in declaration order; failed scans are dropped from the result."""
        if self.config.scan_concurrency <= 1:
            results = [await self._scan_one(image) for image in images]
        else:
            semaphore = asyncio.Semaphore(self.config.scan_concurrency)

            async def bounded(image: str) -> Optional[ImageScanResult]:
                async with semaphore:
                    return await self._scan_one(image)

            results = await asyncio.gather(*(bounded(image) for image in images))

        return [result for result in results if result is not None]

    async def _scan_one(self, image: str) -> Optional[ImageScanResult]:
        logger.info(f"Scanning image {image}")
        try:
            result = await self.scanner.scan(image)
        except ScanException as e:
            logger.error(f"Error scanning image {image}: {e}")
            return None

        return ImageScanResult(name=image, critical_cves=result.count, cves=list(result.findings))

    @staticmethod
    def decide(snapshot: WorkloadSnapshot, results: List[ImageScanResult], flags: PolicyFlags) -> ValidationOutcome:
        denied = any(result.critical_cves > 0 for result in results)
        if denied and flags.bypass_cve_denial:
            logger.warning(
                f"{snapshot.ref} has critical CVEs across {len(results)} image(s), "
                f"allowing because {BYPASS_CVE_DENIED} is set"
            )
            denied = False

        return ValidationOutcome(
            deployment=snapshot.name,
            namespace=snapshot.namespace,
            images=results,
            decision=Decision.DENIED if denied else Decision.ALLOWED,
        )

    @staticmethod
    def _respond(
        review: Dict,
        uid: str,
        allowed: bool,
        message: str,
        code: Optional[int] = None,
    ) -> AdmissionReviewResponse:
        return AdmissionReviewResponse(
            apiVersion=review.get("apiVersion") or "admission.k8s.io/v1",
            kind=review.get("kind") or "AdmissionReview",
            response=AdmissionResponse(
                uid=uid,
                allowed=allowed,
                status=AdmissionStatus(code=code, message=message),
            ),
        )


class AdmissionServer(WebServer):
    """Validating admission webhook for workload images."""

    def __init__(self, config: AdmissionConfig, engine: Optional[AdmissionDecisionEngine] = None):
        self.engine = engine or AdmissionDecisionEngine(TrivyScanner(config), config)
        super().__init__(config)

    def _setup_routes(self):
        """Setup web routes."""
        self.app.add_api_route("/validate", self.validate, methods=["POST"])
        self.app.add_api_route("/health", self.health, methods=["GET"], response_model=HealthResponse)

    async def health(self) -> HealthResponse:
        return HealthResponse(status="ok")

    async def validate(self, request: Request):
        logger.info("Received /validate request")
        body = await request.body()

        try:
            review = parse_admission_review(request.headers.get("content-type"), body)
        except AdmissionRequestError as e:
            logger.error(f"Error parsing admission request: {e}")
            raise HTTPException(status_code=e.status_code, detail=str(e))

        response = await self.engine.evaluate(review)
        logger.info("Admission response sent")
        return JSONResponse(response.model_dump(exclude_none=True))
