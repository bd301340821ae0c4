"""Runs every configured scanner against one digest and joins the results."""

import asyncio
import logging
import time
from collections.abc import Callable

from imagegate.consts import SCAN_CONCURRENCY
from imagegate.models.model_scan import (
    AggregatedReport,
    ScanErrorType,
    ScanReport,
    ScanStatus,
)
from imagegate.scanner.base import BaseScanner, merge_findings
from imagegate.scanner.scan_cache import ScanCache

logger = logging.getLogger(__name__)


class ScanConnector:
    """Fans a digest out to a bounded pool of scanners.

    A scanner that fails never aborts its siblings: its failure becomes a
    degraded report and the join still produces one AggregatedReport.
    """

    def __init__(
        self,
        scanners: list[BaseScanner],
        concurrency: int = SCAN_CONCURRENCY,
        scan_cache: ScanCache | None = None,
    ):
        """Initialize ScanConnector.

        Args:
            scanners: Scanners in configured order
            concurrency: Maximum scanners running at once
            scan_cache: Optional cache of successful reports
        """
        if not scanners:
            raise ValueError("At least one scanner is required")
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.scanners = scanners
        self.concurrency = concurrency
        self.scan_cache = scan_cache

    async def _scan_one(self, scanner: BaseScanner, digest: str) -> ScanReport:
        if self.scan_cache is not None:
            cached = self.scan_cache.get(scanner.name, digest)
            if cached is not None:
                logger.info(f"✓ {scanner.name}: cached report reused")
                return cached

        start = time.monotonic()
        try:
            report = await scanner.scan(digest)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # scan() degrades tool failures itself; this covers bugs in a scanner
            logger.error(f"✗ {scanner.name}: unexpected error: {e}")
            report = ScanReport(
                scanner=scanner.name,
                digest=digest,
                status=ScanStatus.TOOL_ERROR,
                error=f"Unexpected error: {e}",
                error_type=ScanErrorType.UNKNOWN,
                duration_seconds=time.monotonic() - start,
            )

        if self.scan_cache is not None:
            self.scan_cache.put(report)
        return report

    async def scan(
        self,
        digest: str,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> AggregatedReport:
        """Scan ``digest`` with every scanner, at most ``concurrency`` at once.

        Args:
            digest: Local image digest
            progress_callback: Optional callback(completed, total)

        Returns:
            AggregatedReport with one ScanReport per scanner, in configured order
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        total = len(self.scanners)
        completed = 0

        async def run(scanner: BaseScanner) -> ScanReport:
            nonlocal completed
            async with semaphore:
                report = await self._scan_one(scanner, digest)
            completed += 1
            if progress_callback:
                progress_callback(completed, total)
            return report

        logger.info(f"Scanning {digest} with {total} scanner(s), concurrency={self.concurrency}")
        reports = await asyncio.gather(*[run(s) for s in self.scanners])

        findings = merge_findings(f for report in reports for f in report.findings)
        aggregated = AggregatedReport(digest=digest, reports=list(reports), findings=findings)

        degraded = aggregated.degraded_reports
        logger.info(
            f"Scan complete: {len(findings)} unique finding(s), "
            f"{total - len(degraded)}/{total} scanner(s) succeeded"
        )
        return aggregated
