"""Scanner capability interface and the shared scan/retry/classify machinery."""

import logging
import re
import shutil
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from imagegate.backoff import Backoff, retry_with_backoff
from imagegate.consts import ERROR_OUTPUT_LIMIT, SCAN_DEFAULT_TIMEOUT, SCAN_MAX_RETRIES
from imagegate.errors import ScannerUnavailable
from imagegate.models.model_scan import (
    TRANSIENT_ERRORS,
    Finding,
    ScanErrorType,
    ScanReport,
    ScanStatus,
    Severity,
)
from imagegate.process import run_command

logger = logging.getLogger(__name__)


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 timestamp from scanner output, None if absent or bad."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def merge_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Deduplicate findings by (package, vulnerability id).

    Order is the first appearance of each key. On collision the highest
    severity wins, the first non-empty optional fields win, and the
    reporting scanners are unioned.
    """
    merged: dict[tuple[str, str], Finding] = {}

    for finding in findings:
        existing = merged.get(finding.key)
        if existing is None:
            merged[finding.key] = finding.model_copy(
                update={"scanners": list(finding.scanners)}
            )
            continue

        update: dict = {}
        if finding.severity.rank > existing.severity.rank:
            update["severity"] = finding.severity
        if not existing.fixed_version and finding.fixed_version:
            update["fixed_version"] = finding.fixed_version
        if not existing.installed_version and finding.installed_version:
            update["installed_version"] = finding.installed_version
        if not existing.title and finding.title:
            update["title"] = finding.title
        if existing.published_at is None and finding.published_at is not None:
            update["published_at"] = finding.published_at
        new_scanners = [s for s in finding.scanners if s not in existing.scanners]
        if new_scanners:
            update["scanners"] = existing.scanners + new_scanners
        if update:
            merged[finding.key] = existing.model_copy(update=update)

    return list(merged.values())


class BaseScanner(ABC):
    """Capability interface: ``scan(digest) -> ScanReport``.

    Subclasses provide the tool command, the output parser and an explicit
    SEVERITY_MAP from the tool's vocabulary (lower-cased) to Severity.
    Unmapped severities become Severity.UNKNOWN.
    """

    name: str = "base"
    default_executable: str = ""
    SEVERITY_MAP: dict[str, Severity] = {}

    def __init__(
        self,
        executable: str | None = None,
        timeout: int = SCAN_DEFAULT_TIMEOUT,
        max_retries: int = SCAN_MAX_RETRIES,
        backoff: Backoff | None = None,
    ):
        """Initialize scanner.

        Args:
            executable: Path to the scanner executable (default: tool name)
            timeout: Timeout per invocation in seconds
            max_retries: Maximum retries for transient errors
            backoff: Backoff policy between retries
        """
        self.executable = executable or self.default_executable
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff or Backoff()

    def is_installed(self) -> bool:
        """Check if the scanner executable is on PATH."""
        return shutil.which(self.executable) is not None

    def normalize_severity(self, raw: object) -> Severity:
        """Map a tool-specific severity string to Severity."""
        if not isinstance(raw, str):
            return Severity.UNKNOWN
        return self.SEVERITY_MAP.get(raw.strip().lower(), Severity.UNKNOWN)

    @abstractmethod
    def build_command(self, digest: str) -> list[str]:
        """Command line that scans ``digest`` and prints JSON to stdout."""
        ...

    @abstractmethod
    def parse_output(self, output: str) -> list[Finding]:
        """Parse tool JSON output into findings.

        May raise ValueError/KeyError/TypeError on malformed output; these
        are reported as PARSE_ERROR.
        """
        ...

    def environment(self) -> dict[str, str] | None:
        """Extra environment for the scanner process (None inherits)."""
        return None

    def classify_error(self, error_msg: str, returncode: int) -> ScanErrorType:
        """Classify error type based on scanner stderr output.

        Args:
            error_msg: Error message from stderr
            returncode: Process return code

        Returns:
            ScanErrorType classification
        """
        error_lower = error_msg.lower()

        # Cache/DB lock errors
        if "lock" in error_lower and ("cache" in error_lower or "timeout" in error_lower or "db" in error_lower):
            return ScanErrorType.CACHE_LOCK

        # Image not found
        if re.search(r"manifest.*(not found|unknown)", error_lower):
            return ScanErrorType.IMAGE_NOT_FOUND
        if ("not found" in error_lower or "no such image" in error_lower) and (
            "image" in error_lower or "repository" in error_lower
        ):
            return ScanErrorType.IMAGE_NOT_FOUND

        # Rate limiting
        if "rate limit" in error_lower or "too many requests" in error_lower:
            return ScanErrorType.RATE_LIMIT

        # Network errors
        if "timeout" in error_lower or "timed out" in error_lower:
            return ScanErrorType.NETWORK_TIMEOUT
        if "network" in error_lower or "connection" in error_lower:
            return ScanErrorType.NETWORK_TIMEOUT

        # Authorization errors
        if "unauthorized" in error_lower or "forbidden" in error_lower:
            return ScanErrorType.UNAUTHORIZED

        # Crash (non-zero exit without clear error)
        if returncode != 0 and not error_msg.strip():
            return ScanErrorType.TOOL_CRASH

        return ScanErrorType.UNKNOWN

    async def _invoke(self, digest: str) -> list[Finding]:
        """Run the scanner once.

        Raises:
            ScannerUnavailable: With ``error_type`` in its context
        """
        result = await run_command(
            self.build_command(digest),
            timeout=self.timeout,
            env=self.environment(),
        )

        if result.not_found:
            raise ScannerUnavailable(
                f"{self.executable} not found in PATH",
                scanner=self.name,
                digest=digest,
                error_type=ScanErrorType.TOOL_NOT_INSTALLED,
            )

        if result.timed_out:
            raise ScannerUnavailable(
                f"Scan timeout ({self.timeout}s)",
                scanner=self.name,
                digest=digest,
                error_type=ScanErrorType.TIMEOUT,
            )

        if not result.success:
            error_type = self.classify_error(result.stderr, result.returncode)
            logger.debug(f"{self.name} failed ({error_type.value}): {result.stderr}")
            raise ScannerUnavailable(
                f"{self.name} error (code {result.returncode}): "
                f"{result.stderr[:ERROR_OUTPUT_LIMIT]}",
                scanner=self.name,
                digest=digest,
                error_type=error_type,
            )

        try:
            findings = self.parse_output(result.stdout)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ScannerUnavailable(
                f"Failed to parse {self.name} output: {str(e)[:ERROR_OUTPUT_LIMIT]}",
                scanner=self.name,
                digest=digest,
                error_type=ScanErrorType.PARSE_ERROR,
            ) from e

        return [f.model_copy(update={"scanners": [self.name]}) for f in findings]

    async def _attempt(self, digest: str) -> ScanReport:
        """One scanner attempt, converted into a report."""
        start = time.monotonic()
        try:
            findings = await self._invoke(digest)
        except ScannerUnavailable as e:
            error_type = e.context.get("error_type", ScanErrorType.UNKNOWN)
            status = (
                ScanStatus.TIMED_OUT
                if error_type == ScanErrorType.TIMEOUT
                else ScanStatus.TOOL_ERROR
            )
            return ScanReport(
                scanner=self.name,
                digest=digest,
                status=status,
                error=e.message,
                error_type=error_type,
                duration_seconds=time.monotonic() - start,
            )

        return ScanReport(
            scanner=self.name,
            digest=digest,
            status=ScanStatus.SUCCEEDED,
            findings=merge_findings(findings),
            duration_seconds=time.monotonic() - start,
        )

    async def scan(self, digest: str) -> ScanReport:
        """Scan ``digest``, retrying transient errors with backoff.

        Never raises for tool failures: they degrade to a TIMED_OUT or
        TOOL_ERROR report carrying zero findings.
        """
        start = time.monotonic()
        logger.info(f"Scanning {digest} with {self.name}")

        report, attempts = await retry_with_backoff(
            lambda: self._attempt(digest),
            should_retry=lambda r: r.error_type in TRANSIENT_ERRORS,
            max_retries=self.max_retries,
            backoff=self.backoff,
            label=f"{self.name} scan of {digest}",
        )

        report = report.model_copy(
            update={"attempts": attempts, "duration_seconds": time.monotonic() - start}
        )

        if report.is_degraded:
            logger.warning(
                f"✗ {self.name}: {report.error} (type: {report.error_type.value})"
            )
        else:
            counts = {severity: 0 for severity in Severity}
            for finding in report.findings:
                counts[finding.severity] += 1
            logger.info(
                f"✓ {self.name}: {counts[Severity.CRITICAL]}C {counts[Severity.HIGH]}H "
                f"{counts[Severity.MEDIUM]}M {counts[Severity.LOW]}L "
                f"{counts[Severity.UNKNOWN]}U"
            )
        return report
