"""Vulnerability scanner adapters and the multi-scanner connector."""

from imagegate.scanner.anchore_scanner import AnchoreScanner
from imagegate.scanner.base import BaseScanner, merge_findings
from imagegate.scanner.grype_scanner import GrypeScanner
from imagegate.scanner.registry import SCANNERS, available_scanners, create_scanners
from imagegate.scanner.scan_cache import ScanCache
from imagegate.scanner.scan_connector import ScanConnector
from imagegate.scanner.trivy_scanner import TrivyScanner

__all__ = [
    "SCANNERS",
    "AnchoreScanner",
    "BaseScanner",
    "GrypeScanner",
    "ScanCache",
    "ScanConnector",
    "TrivyScanner",
    "available_scanners",
    "create_scanners",
    "merge_findings",
]
