"""Scanner lookup by name."""

from imagegate.backoff import Backoff
from imagegate.consts import SCAN_DEFAULT_TIMEOUT, SCAN_MAX_RETRIES
from imagegate.scanner.anchore_scanner import AnchoreScanner
from imagegate.scanner.base import BaseScanner
from imagegate.scanner.grype_scanner import GrypeScanner
from imagegate.scanner.trivy_scanner import TrivyScanner

SCANNERS: dict[str, type[BaseScanner]] = {
    TrivyScanner.name: TrivyScanner,
    GrypeScanner.name: GrypeScanner,
    AnchoreScanner.name: AnchoreScanner,
}


def available_scanners() -> list[str]:
    return list(SCANNERS)


def create_scanners(
    names: list[str],
    timeout: int = SCAN_DEFAULT_TIMEOUT,
    max_retries: int = SCAN_MAX_RETRIES,
    backoff: Backoff | None = None,
) -> list[BaseScanner]:
    """Instantiate scanners in the given order.

    Raises:
        ValueError: If a name is not a known scanner
    """
    scanners = []
    for name in names:
        scanner_cls = SCANNERS.get(name.strip().lower())
        if scanner_cls is None:
            msg = f"Unknown scanner '{name}'. Available: {', '.join(SCANNERS)}"
            raise ValueError(msg)
        scanners.append(scanner_cls(timeout=timeout, max_retries=max_retries, backoff=backoff))
    return scanners
