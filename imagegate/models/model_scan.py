"""Data models for vulnerability scanning."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from imagegate.models.common import _utc_now


class Severity(str, Enum):
    """Normalized vulnerability severity.

    UNKNOWN ranks below LOW and never meets a LOW-or-higher threshold.
    """

    UNKNOWN = "unknown"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def _missing_(cls, value: object) -> "Severity | None":
        # Case-insensitive lookup so policy files may say "HIGH" or "High"
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None

    @property
    def rank(self) -> int:
        """Numeric rank for ordering (UNKNOWN=0 ... CRITICAL=4)."""
        return _SEVERITY_RANK[self]

    def at_least(self, threshold: "Severity") -> bool:
        """Check if this severity meets or exceeds a threshold."""
        return self.rank >= threshold.rank


_SEVERITY_RANK = {
    Severity.UNKNOWN: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class ScanStatus(str, Enum):
    """Outcome of a single scanner invocation."""

    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed-out"
    TOOL_ERROR = "tool-error"


class ScanErrorType(str, Enum):
    """Classification of scan error types for retry decisions."""

    # Transient errors - retried with exponential backoff
    NETWORK_TIMEOUT = "network_timeout"
    RATE_LIMIT = "rate_limit"
    CACHE_LOCK = "cache_lock"

    # Permanent errors - not retried
    IMAGE_NOT_FOUND = "image_not_found"
    UNAUTHORIZED = "unauthorized"
    TOOL_NOT_INSTALLED = "tool_not_installed"
    PARSE_ERROR = "parse_error"

    # Infrastructure errors
    TOOL_CRASH = "tool_crash"
    TIMEOUT = "timeout"

    UNKNOWN = "unknown"


TRANSIENT_ERRORS = frozenset(
    {
        ScanErrorType.NETWORK_TIMEOUT,
        ScanErrorType.RATE_LIMIT,
        ScanErrorType.CACHE_LOCK,
    }
)


class Finding(BaseModel):
    """A single reported vulnerability instance tied to a package version."""

    package: str = Field(description="Affected package name")
    installed_version: str = Field(default="", description="Installed package version")
    vulnerability_id: str = Field(description="CVE/GHSA/vendor advisory identifier")
    severity: Severity = Field(default=Severity.UNKNOWN, description="Normalized severity")
    fixed_version: str | None = Field(default=None, description="First version with a fix")
    title: str | None = Field(default=None, description="Short advisory title")
    published_at: datetime | None = Field(
        default=None, description="Advisory disclosure date, used by age rules"
    )
    scanners: list[str] = Field(
        default_factory=list, description="Scanners that reported this finding"
    )

    @property
    def key(self) -> tuple[str, str]:
        """Deduplication key: (package, vulnerability id)."""
        return (self.package, self.vulnerability_id)

    @property
    def is_fixable(self) -> bool:
        """Whether a fixed-in version is known."""
        return bool(self.fixed_version)


class ScanReport(BaseModel):
    """Normalized result of one scanner run against one digest."""

    scanner: str = Field(description="Scanner identity (trivy, grype, anchore)")
    digest: str = Field(description="Image digest that was scanned")
    scanned_at: datetime = Field(default_factory=_utc_now)
    status: ScanStatus = Field(default=ScanStatus.SUCCEEDED)
    findings: list[Finding] = Field(default_factory=list)
    error: str | None = Field(default=None, description="Error message for degraded runs")
    error_type: ScanErrorType | None = Field(default=None)
    duration_seconds: float = Field(default=0.0, ge=0.0)
    attempts: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def degraded_reports_have_no_findings(self) -> "ScanReport":
        """A timed-out or failed scanner contributes zero findings."""
        if self.status != ScanStatus.SUCCEEDED and self.findings:
            msg = f"{self.scanner} report with status {self.status.value} cannot carry findings"
            raise ValueError(msg)
        return self

    @property
    def is_degraded(self) -> bool:
        """True when the scanner timed out or errored."""
        return self.status != ScanStatus.SUCCEEDED


class AggregatedReport(BaseModel):
    """Joined output of all configured scanners for one digest.

    ``reports`` keeps configured scanner order. ``findings`` is the union of
    all scanner findings, deduplicated by (package, vulnerability id).
    """

    digest: str
    scanned_at: datetime = Field(default_factory=_utc_now)
    reports: list[ScanReport] = Field(default_factory=list)
    findings: list[Finding] = Field(default_factory=list)

    @property
    def scanners(self) -> list[str]:
        """Scanner names in configured order."""
        return [r.scanner for r in self.reports]

    @property
    def degraded_reports(self) -> list[ScanReport]:
        """Reports whose scanner timed out or errored."""
        return [r for r in self.reports if r.is_degraded]

    def count_by_severity(self) -> dict[Severity, int]:
        """Count findings by severity."""
        counts = {severity: 0 for severity in Severity}
        for finding in self.findings:
            counts[finding.severity] += 1
        return counts
