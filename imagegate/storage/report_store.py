"""Persistent storage for gate run reports.

Directory structure:
    {data_dir}/
    └── runs/
        ├── {digest}/
        │   └── {YYYYmmdd_HHMMSS_ffffff}/
        │       ├── run.json      # RunReport
        │       └── scan.json     # AggregatedReport (when scanning happened)
        └── unbuilt/              # Runs that failed before a digest existed
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from imagegate.consts import DEFAULT_DATA_DIR
from imagegate.models.model_pipeline import RunReport
from imagegate.models.model_scan import AggregatedReport

logger = logging.getLogger(__name__)

UNBUILT_DIR = "unbuilt"


def _digest_dirname(digest: str | None) -> str:
    if not digest:
        return UNBUILT_DIR
    # "sha256:abc" is not a portable directory name
    return digest.replace(":", "_")


class ReportStore:
    """Saves and loads run reports under ``{data_dir}/runs``."""

    def __init__(self, data_dir: Path | str = DEFAULT_DATA_DIR):
        self.data_dir = Path(data_dir)
        self._runs_dir = self.data_dir / "runs"

    def save(self, report: RunReport) -> Path:
        """Save a run report. Returns the run directory."""
        digest = report.build.digest if report.build else None
        now = datetime.now(UTC)
        run_dir = self._runs_dir / _digest_dirname(digest) / now.strftime("%Y%m%d_%H%M%S_%f")
        run_dir.mkdir(parents=True, exist_ok=True)

        (run_dir / "run.json").write_text(report.model_dump_json(indent=2), encoding="utf-8")
        if report.scan_report is not None:
            (run_dir / "scan.json").write_text(
                report.scan_report.model_dump_json(indent=2), encoding="utf-8"
            )

        logger.info(f"Saved run report: {run_dir}")
        return run_dir

    def list_runs(self, digest: str | None = None) -> list[Path]:
        """Run directories, newest first. Filtered to one digest when given."""
        if not self._runs_dir.exists():
            return []

        if digest is not None:
            parents = [self._runs_dir / _digest_dirname(digest)]
        else:
            parents = [d for d in self._runs_dir.iterdir() if d.is_dir()]

        runs = [run for parent in parents if parent.exists() for run in parent.iterdir() if run.is_dir()]
        return sorted(runs, key=lambda p: p.name, reverse=True)

    def load_latest(self, digest: str | None = None) -> RunReport | None:
        """Load the newest run report, or None if there is none."""
        runs = self.list_runs(digest)
        if not runs:
            return None
        return self.load(runs[0])

    @staticmethod
    def load(run_dir: Path | str) -> RunReport:
        path = Path(run_dir) / "run.json"
        return RunReport.model_validate(json.loads(path.read_text(encoding="utf-8")))


def load_scan_report(path: Path | str) -> AggregatedReport:
    """Load an aggregated scan report from a JSON file.

    Accepts either a ``scan.json`` or a full ``run.json`` (its
    ``scan_report`` field is used).

    Raises:
        ValueError: If the file holds no scan report
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if "reports" not in data and "final_state" in data:
        data = data.get("scan_report")
        if data is None:
            raise ValueError(f"Run report {path} has no scan report")
    return AggregatedReport.model_validate(data)
