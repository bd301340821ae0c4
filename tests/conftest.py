"""Pytest configuration and fixtures."""

import asyncio
from datetime import UTC, datetime

import pytest

from imagegate.backoff import Backoff
from imagegate.models.model_build import BuildResult, PublishResult
from imagegate.models.model_policy import Policy, PolicyRule, Verdict
from imagegate.models.model_scan import (
    AggregatedReport,
    Finding,
    ScanErrorType,
    ScanReport,
    ScanStatus,
    Severity,
)
from imagegate.scanner.base import BaseScanner, merge_findings

DIGEST = "sha256:" + "a" * 64
OTHER_DIGEST = "sha256:" + "b" * 64
SCANNED_AT = datetime(2024, 6, 1, tzinfo=UTC)


def make_finding(
    vulnerability_id: str = "CVE-2024-0001",
    package: str = "openssl",
    severity: Severity = Severity.HIGH,
    **kwargs,
) -> Finding:
    """Build a Finding with sensible defaults."""
    kwargs.setdefault("installed_version", "3.0.1")
    return Finding(
        vulnerability_id=vulnerability_id,
        package=package,
        severity=severity,
        **kwargs,
    )


def make_scan_report(
    scanner: str = "trivy",
    findings: list[Finding] | None = None,
    status: ScanStatus = ScanStatus.SUCCEEDED,
    digest: str = DIGEST,
) -> ScanReport:
    """Build a per-scanner report; degraded reports get a matching error type."""
    if status == ScanStatus.SUCCEEDED:
        return ScanReport(
            scanner=scanner,
            digest=digest,
            scanned_at=SCANNED_AT,
            findings=[f.model_copy(update={"scanners": [scanner]}) for f in findings or []],
        )
    return ScanReport(
        scanner=scanner,
        digest=digest,
        scanned_at=SCANNED_AT,
        status=status,
        error="timed out" if status == ScanStatus.TIMED_OUT else "exit code 1",
        error_type=ScanErrorType.TIMEOUT if status == ScanStatus.TIMED_OUT else ScanErrorType.UNKNOWN,
    )


def make_aggregated(*reports: ScanReport, digest: str = DIGEST) -> AggregatedReport:
    """Join per-scanner reports the way ScanConnector does."""
    return AggregatedReport(
        digest=digest,
        scanned_at=SCANNED_AT,
        reports=list(reports),
        findings=merge_findings(f for r in reports for f in r.findings),
    )


class FakeScanner(BaseScanner):
    """Scanner double that returns a canned report without running a tool."""

    default_executable = "fake-scanner"

    def __init__(
        self,
        name: str = "fake",
        findings: list[Finding] | None = None,
        status: ScanStatus = ScanStatus.SUCCEEDED,
        delay: float = 0.0,
        error: Exception | None = None,
    ):
        super().__init__()
        self.name = name
        self.findings = findings or []
        self.status = status
        self.delay = delay
        self.error = error
        self.calls: list[str] = []
        self.cancelled = False

    def build_command(self, digest: str) -> list[str]:
        return [self.executable, digest]

    def parse_output(self, output: str) -> list[Finding]:
        return []

    async def scan(self, digest: str) -> ScanReport:
        self.calls.append(digest)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return make_scan_report(self.name, self.findings, self.status, digest=digest)


@pytest.fixture
def no_backoff() -> Backoff:
    """Backoff that never sleeps."""
    return Backoff(initial_delay=0.0, max_delay=0.0, jitter_factor=0.0)


@pytest.fixture
def high_finding() -> Finding:
    return make_finding("CVE-2024-0001", "openssl", Severity.HIGH, fixed_version="3.0.2")


@pytest.fixture
def critical_finding() -> Finding:
    return make_finding("CVE-2024-9999", "glibc", Severity.CRITICAL, installed_version="2.31")


@pytest.fixture
def clean_report() -> AggregatedReport:
    return make_aggregated(make_scan_report("trivy"))


@pytest.fixture
def high_threshold_policy() -> Policy:
    return Policy(name="block-high", rules=[PolicyRule(name="no-high", min_severity=Severity.HIGH)])


@pytest.fixture
def build_result() -> BuildResult:
    return BuildResult(image_ref="app:1.0", digest=DIGEST, context_path="/ctx")


@pytest.fixture
def passing_verdict() -> Verdict:
    return Verdict(digest=DIGEST, passed=True)


@pytest.fixture
def publish_result() -> PublishResult:
    return PublishResult(
        destination="registry.example.com/app:1.0",
        digest=DIGEST,
        repo_digest="sha256:" + "c" * 64,
    )
