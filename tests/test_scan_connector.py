"""Tests for ScanConnector fan-out, join and caching."""

import asyncio
from pathlib import Path

import pytest

from conftest import DIGEST, FakeScanner, make_finding
from imagegate.models.model_scan import ScanErrorType, ScanStatus, Severity
from imagegate.scanner.scan_cache import ScanCache
from imagegate.scanner.scan_connector import ScanConnector
from imagegate.storage.cache.file_caching import FileCache


class TestScanConnector:
    """Tests for ScanConnector class."""

    @pytest.mark.asyncio
    async def test_dedupes_across_scanners(self) -> None:
        trivy = FakeScanner(
            "trivy",
            [
                make_finding("CVE-1", "openssl", Severity.MEDIUM),
                make_finding("CVE-2", "zlib", Severity.LOW),
            ],
        )
        grype = FakeScanner(
            "grype",
            [make_finding("CVE-1", "openssl", Severity.HIGH, fixed_version="3.0.2")],
        )

        report = await ScanConnector([trivy, grype]).scan(DIGEST)

        assert report.digest == DIGEST
        assert report.scanners == ["trivy", "grype"]
        assert [f.vulnerability_id for f in report.findings] == ["CVE-1", "CVE-2"]
        merged = report.findings[0]
        assert merged.severity == Severity.HIGH
        assert merged.fixed_version == "3.0.2"
        assert merged.scanners == ["trivy", "grype"]

    @pytest.mark.asyncio
    async def test_partial_failure_does_not_abort_others(self) -> None:
        broken = FakeScanner("grype", error=RuntimeError("kaboom"))
        timed_out = FakeScanner("anchore", status=ScanStatus.TIMED_OUT)
        healthy = FakeScanner("trivy", [make_finding("CVE-1")])

        report = await ScanConnector([healthy, broken, timed_out]).scan(DIGEST)

        statuses = {r.scanner: r.status for r in report.reports}
        assert statuses == {
            "trivy": ScanStatus.SUCCEEDED,
            "grype": ScanStatus.TOOL_ERROR,
            "anchore": ScanStatus.TIMED_OUT,
        }
        grype_report = report.reports[1]
        assert grype_report.error_type == ScanErrorType.UNKNOWN
        assert "kaboom" in grype_report.error
        assert len(report.findings) == 1
        assert [r.scanner for r in report.degraded_reports] == ["grype", "anchore"]

    @pytest.mark.asyncio
    async def test_concurrency_bound(self) -> None:
        running = 0
        peak = 0

        class TrackingScanner(FakeScanner):
            async def scan(self, digest: str):
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1
                return await super().scan(digest)

        scanners = [TrackingScanner(f"s{i}") for i in range(5)]
        report = await ScanConnector(scanners, concurrency=2).scan(DIGEST)

        assert peak == 2
        assert len(report.reports) == 5

    @pytest.mark.asyncio
    async def test_progress_callback(self) -> None:
        progress: list[tuple[int, int]] = []
        scanners = [FakeScanner("a"), FakeScanner("b")]

        await ScanConnector(scanners).scan(DIGEST, progress_callback=lambda c, t: progress.append((c, t)))

        assert progress == [(1, 2), (2, 2)]

    @pytest.mark.asyncio
    async def test_cancellation_reaches_in_flight_scanners(self) -> None:
        slow = FakeScanner("slow", delay=10)
        other = FakeScanner("other", delay=10)
        task = asyncio.create_task(ScanConnector([slow, other]).scan(DIGEST))
        await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert slow.cancelled
        assert other.cancelled

    def test_requires_scanners(self) -> None:
        with pytest.raises(ValueError):
            ScanConnector([])

    @pytest.mark.asyncio
    async def test_successful_reports_cached(self, tmp_path: Path) -> None:
        cache = ScanCache(FileCache(tmp_path), ttl=3600)
        scanner = FakeScanner("trivy", [make_finding("CVE-1")])
        connector = ScanConnector([scanner], scan_cache=cache)

        first = await connector.scan(DIGEST)
        second = await connector.scan(DIGEST)

        assert scanner.calls == [DIGEST]
        assert second.findings == first.findings

    @pytest.mark.asyncio
    async def test_degraded_reports_not_cached(self, tmp_path: Path) -> None:
        cache = ScanCache(FileCache(tmp_path), ttl=3600)
        scanner = FakeScanner("trivy", status=ScanStatus.TOOL_ERROR)
        connector = ScanConnector([scanner], scan_cache=cache)

        await connector.scan(DIGEST)
        await connector.scan(DIGEST)

        assert scanner.calls == [DIGEST, DIGEST]
        assert cache.get("trivy", DIGEST) is None
