"""Anchore (anchorectl) wrapper."""

import json

from imagegate.models.model_scan import Finding, Severity
from imagegate.scanner.base import BaseScanner

# Anchore reports "None" when no fix is available
_NO_FIX = {"", "none", "n/a"}


class AnchoreScanner(BaseScanner):
    """Wraps ``anchorectl image vulnerabilities <digest> -o json``.

    Only the Anchore service is queried, never the local daemon: the image
    must already be analyzed there under the local image id this scanner
    is given, otherwise anchorectl fails and the report is a tool error.
    """

    name = "anchore"
    default_executable = "anchorectl"

    SEVERITY_MAP = {
        "critical": Severity.CRITICAL,
        "high": Severity.HIGH,
        "medium": Severity.MEDIUM,
        "low": Severity.LOW,
        "negligible": Severity.LOW,
        "unknown": Severity.UNKNOWN,
    }

    def build_command(self, digest: str) -> list[str]:
        return [self.executable, "image", "vulnerabilities", digest, "-o", "json"]

    def parse_output(self, output: str) -> list[Finding]:
        """Parse Anchore JSON: {"vulnerabilities": [{"vuln", "package_name", ...}]}."""
        data = json.loads(output)
        findings = []

        for vuln in data.get("vulnerabilities") or []:
            fix = vuln.get("fix") or ""
            findings.append(
                Finding(
                    package=vuln["package_name"],
                    installed_version=vuln.get("package_version") or "",
                    vulnerability_id=vuln["vuln"],
                    severity=self.normalize_severity(vuln.get("severity")),
                    fixed_version=None if fix.strip().lower() in _NO_FIX else fix,
                )
            )

        return findings
