import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, List

from loguru import logger

from ekspose.config import AdmissionConfig
from ekspose.exceptions import ScanException
from ekspose.responses import ScanFinding

CRITICAL = "CRITICAL"


@dataclass
class ScanResult:
    """Critical findings for one image. Lower severities are never reported."""

    safe: bool
    findings: List[ScanFinding] = field(default_factory=list)
    count: int = 0


def parse_trivy_report(output: bytes) -> ScanResult:
    """Extract CRITICAL vulnerabilities from ``trivy --format json`` output.

    Raises:
        ScanException: If the output is not a JSON object.

    """
    try:
        report = json.loads(output)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ScanException(f"Failed to parse trivy output: {e}")

    if not isinstance(report, dict):
        raise ScanException(f"Unexpected trivy output type: {type(report).__name__}")

    findings = []
    for target in _list(report.get("Results")):
        for vulnerability in _list(target.get("Vulnerabilities") if isinstance(target, dict) else None):
            if not isinstance(vulnerability, dict):
                continue
            severity = vulnerability.get("Severity")
            if not isinstance(severity, str) or severity.upper() != CRITICAL:
                continue
            findings.append(
                ScanFinding(
                    id=str(vulnerability.get("VulnerabilityID") or ""),
                    url=str(vulnerability.get("PrimaryURL") or ""),
                )
            )

    return ScanResult(safe=not findings, findings=findings, count=len(findings))


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


async def _terminate(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        # already exited
        pass
    await process.wait()


class TrivyScanner:
    """Scans images with the trivy CLI, optionally against a trivy server."""

    def __init__(self, config: AdmissionConfig):
        self.config = config

    def command(self, image: str) -> List[str]:
        cmd = [
            self.config.trivy_binary,
            "image",
            "--quiet",
            "--scanners",
            "vuln",
            "--severity",
            CRITICAL,
            "--format",
            "json",
        ]
        if self.config.trivy_server_url:
            cmd.extend(["--server", self.config.trivy_server_url])
        cmd.append(image)
        return cmd

    async def scan(self, image: str) -> ScanResult:
        """Scan one image.

        Raises:
            ScanException: If trivy cannot be run, times out, fails, or
                prints something that is not a report.

        """
        cmd = self.command(image)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ScanException(f"Unable to run {self.config.trivy_binary}: {e}", image=image) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.config.scan_timeout)
        except asyncio.TimeoutError as e:
            await _terminate(process)
            raise ScanException(
                f"trivy scan timed out after {self.config.scan_timeout}s for {image}", image=image
            ) from e
        except asyncio.CancelledError:
            logger.warning(f"Scan of {image} cancelled, killing trivy")
            await _terminate(process)
            raise

        if process.returncode != 0:
            raise ScanException(
                f"trivy scan failed for {image} (exit {process.returncode}): "
                f"{stderr.decode(errors='replace').strip()}",
                image=image,
            )

        try:
            result = parse_trivy_report(stdout)
        except ScanException as e:
            e.image = image
            raise

        if result.count:
            logger.warning(
                f"{result.count} critical CVE(s) found in {image}: "
                + ", ".join(finding.id for finding in result.findings)
            )
        else:
            logger.info(f"No critical CVEs found in {image}")
        return result
