"""Grype CLI wrapper."""

import json
import os

from imagegate.models.model_scan import Finding, Severity
from imagegate.scanner.base import BaseScanner


class GrypeScanner(BaseScanner):
    """Wraps ``grype docker:<digest> -o json``."""

    name = "grype"
    default_executable = "grype"

    # Grype has a "Negligible" level below Low
    SEVERITY_MAP = {
        "critical": Severity.CRITICAL,
        "high": Severity.HIGH,
        "medium": Severity.MEDIUM,
        "low": Severity.LOW,
        "negligible": Severity.LOW,
        "unknown": Severity.UNKNOWN,
    }

    def build_command(self, digest: str) -> list[str]:
        return [self.executable, f"docker:{digest}", "-o", "json", "-q"]

    def environment(self) -> dict[str, str] | None:
        env = os.environ.copy()
        env["GRYPE_CHECK_FOR_APP_UPDATE"] = "false"
        return env

    def parse_output(self, output: str) -> list[Finding]:
        """Parse Grype JSON: {"matches": [{"vulnerability": {...}, "artifact": {...}}]}."""
        data = json.loads(output)
        findings = []

        for match in data.get("matches") or []:
            vuln = match["vulnerability"]
            artifact = match["artifact"]
            fix = vuln.get("fix") or {}
            fix_versions = fix.get("versions") or []
            findings.append(
                Finding(
                    package=artifact["name"],
                    installed_version=artifact.get("version") or "",
                    vulnerability_id=vuln["id"],
                    severity=self.normalize_severity(vuln.get("severity")),
                    fixed_version=fix_versions[0] if fix_versions else None,
                    title=vuln.get("description") or None,
                )
            )

        return findings
