"""Trivy CLI wrapper for container image vulnerability scanning."""

import json
import logging
import os
from pathlib import Path

from imagegate.backoff import Backoff
from imagegate.consts import SCAN_DEFAULT_TIMEOUT, SCAN_MAX_RETRIES
from imagegate.models.model_scan import Finding, Severity
from imagegate.scanner.base import BaseScanner, parse_timestamp

logger = logging.getLogger(__name__)


class TrivyScanner(BaseScanner):
    """Wraps Trivy CLI for scanning a locally built image."""

    name = "trivy"
    default_executable = "trivy"

    SEVERITY_MAP = {
        "critical": Severity.CRITICAL,
        "high": Severity.HIGH,
        "medium": Severity.MEDIUM,
        "low": Severity.LOW,
        "unknown": Severity.UNKNOWN,
    }

    def __init__(
        self,
        executable: str | None = None,
        timeout: int = SCAN_DEFAULT_TIMEOUT,
        max_retries: int = SCAN_MAX_RETRIES,
        backoff: Backoff | None = None,
        cache_dir: Path | str | None = None,
    ):
        """Initialize TrivyScanner.

        Args:
            executable: Path to trivy executable (default: "trivy")
            timeout: Scan timeout in seconds
            max_retries: Maximum retries for transient errors
            backoff: Backoff policy between retries
            cache_dir: Custom cache directory for Trivy (default: Trivy's own)
        """
        super().__init__(executable, timeout, max_retries, backoff)
        self.cache_dir = Path(cache_dir) if cache_dir else None

    def build_command(self, digest: str) -> list[str]:
        return [
            self.executable,
            "image",
            "--format",
            "json",
            "--quiet",
            "--scanners",
            "vuln",
            "--severity",
            "UNKNOWN,LOW,MEDIUM,HIGH,CRITICAL",
            "--timeout",
            f"{self.timeout}s",
            digest,
        ]

    def environment(self) -> dict[str, str] | None:
        if not self.cache_dir:
            return None
        env = os.environ.copy()
        env["TRIVY_CACHE_DIR"] = str(self.cache_dir)
        logger.debug(f"Using custom cache dir: {self.cache_dir}")
        return env

    def parse_output(self, output: str) -> list[Finding]:
        """Parse Trivy JSON output.

        Trivy output structure: {"Results": [{"Vulnerabilities": [...]}]}.
        Both keys may be null when nothing was found.
        """
        data = json.loads(output)
        findings = []

        for result in data.get("Results") or []:
            for vuln in result.get("Vulnerabilities") or []:
                findings.append(
                    Finding(
                        package=vuln["PkgName"],
                        installed_version=vuln.get("InstalledVersion") or "",
                        vulnerability_id=vuln["VulnerabilityID"],
                        severity=self.normalize_severity(vuln.get("Severity")),
                        fixed_version=vuln.get("FixedVersion") or None,
                        title=vuln.get("Title") or None,
                        published_at=parse_timestamp(vuln.get("PublishedDate")),
                    )
                )

        return findings
