"""Policy evaluation: aggregated scan report + policy -> verdict.

``evaluate`` is a pure function. It reads no clock, no files and no
environment, so the same inputs always give an identical Verdict.
"""

import fnmatch
import logging
from datetime import UTC, datetime

from imagegate.consts import REASON_SCANNER_ERROR, REASON_SCANNER_TIMEOUT
from imagegate.models.model_policy import Policy, PolicyRule, RuleAction, Verdict, VerdictReason
from imagegate.models.model_scan import AggregatedReport, Finding, ScanReport, ScanStatus

logger = logging.getLogger(__name__)

FAIL_CLOSED_RULE = "fail-closed"
MAX_IDS_IN_MESSAGE = 5


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def rule_matches_finding(rule: PolicyRule, finding: Finding, now: datetime) -> bool:
    """Check whether every condition configured on ``rule`` holds for ``finding``."""
    if rule.min_severity is not None and not finding.severity.at_least(rule.min_severity):
        return False

    if rule.vulnerability_ids and finding.vulnerability_id.upper() not in {
        v.upper() for v in rule.vulnerability_ids
    }:
        return False

    if rule.packages and not any(fnmatch.fnmatchcase(finding.package, p) for p in rule.packages):
        return False

    if rule.fixable_only and not finding.is_fixable:
        return False

    if rule.max_age_days is not None:
        # Undated advisories cannot satisfy an age condition
        if finding.published_at is None:
            return False
        age = _as_utc(now) - _as_utc(finding.published_at)
        if age.days <= rule.max_age_days:
            return False

    return True


def _finding_message(rule: PolicyRule, findings: list[Finding]) -> str:
    shown = []
    for f in findings[:MAX_IDS_IN_MESSAGE]:
        package = f"{f.package} {f.installed_version}" if f.installed_version else f.package
        shown.append(f"{f.vulnerability_id} ({package}, {f.severity.value})")
    message = f"{len(findings)} finding(s) matched rule '{rule.name}': {'; '.join(shown)}"
    if len(findings) > MAX_IDS_IN_MESSAGE:
        message += f"; and {len(findings) - MAX_IDS_IN_MESSAGE} more"
    return message


def _fail_closed_reason(report: ScanReport) -> str:
    if report.status == ScanStatus.TIMED_OUT:
        return REASON_SCANNER_TIMEOUT
    return REASON_SCANNER_ERROR


def evaluate(report: AggregatedReport, policy: Policy | None = None) -> Verdict:
    """Evaluate ``report`` against ``policy`` (default: empty, fail-closed).

    Rules run in declaration order and every match is collected, so a
    failing verdict lists all reasons, not just the first.

    - Allow-listed vulnerability ids are removed before any rule runs.
    - Findings matched by an ``ignore`` rule are hidden from later rules.
    - ``warn`` matches are recorded as warnings and never fail the verdict.
    - Degraded scanners not covered by a ``scanner_status`` rule fail the
      verdict (or warn, when ``fail_closed`` is off).

    Age conditions are measured against ``report.scanned_at``.
    """
    policy = policy or Policy()
    now = report.scanned_at

    allowed = {v.upper() for v in policy.allow_list}
    remaining = [f for f in report.findings if f.vulnerability_id.upper() not in allowed]
    if len(remaining) != len(report.findings):
        logger.debug(f"Allow-list removed {len(report.findings) - len(remaining)} finding(s)")

    degraded = report.degraded_reports
    covered: set[str] = set()
    reasons: list[VerdictReason] = []
    warnings: list[VerdictReason] = []

    for rule in policy.rules:
        if rule.is_scanner_rule:
            matched_reports = [
                r for r in degraded if r.status in rule.scanner_status and r.scanner not in covered
            ]
            if not matched_reports:
                continue
            covered.update(r.scanner for r in matched_reports)
            if rule.action == RuleAction.IGNORE:
                continue
            names = [r.scanner for r in matched_reports]
            reason = VerdictReason(
                rule=rule.name,
                action=rule.action,
                message=f"rule '{rule.name}' matched degraded scanner(s): {', '.join(names)}",
                scanners=names,
            )
        else:
            matched = [f for f in remaining if rule_matches_finding(rule, f, now)]
            if not matched:
                continue
            if rule.action == RuleAction.IGNORE:
                ignored = {f.key for f in matched}
                remaining = [f for f in remaining if f.key not in ignored]
                continue
            reason = VerdictReason(
                rule=rule.name,
                action=rule.action,
                message=_finding_message(rule, matched),
                findings=matched,
            )

        if rule.action == RuleAction.FAIL:
            reasons.append(reason)
        else:
            warnings.append(reason)

    for scanner_report in degraded:
        if scanner_report.scanner in covered:
            continue
        reason = VerdictReason(
            rule=FAIL_CLOSED_RULE,
            action=RuleAction.FAIL if policy.fail_closed else RuleAction.WARN,
            message=_fail_closed_reason(scanner_report),
            scanners=[scanner_report.scanner],
        )
        (reasons if policy.fail_closed else warnings).append(reason)

    verdict = Verdict(
        digest=report.digest,
        passed=not reasons,
        policy_name=policy.name,
        reasons=reasons,
        warnings=warnings,
        evaluated_at=report.scanned_at,
    )

    if verdict.passed:
        logger.info(f"Verdict for {report.digest}: PASS ({len(warnings)} warning(s))")
    else:
        logger.info(f"Verdict for {report.digest}: FAIL ({len(reasons)} reason(s))")
    return verdict
