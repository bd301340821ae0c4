"""Policy rule and verdict models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from imagegate.models.common import _utc_now
from imagegate.models.model_scan import Finding, ScanStatus, Severity


class RuleAction(str, Enum):
    """What a matching rule does to the verdict."""

    FAIL = "fail"
    WARN = "warn"
    IGNORE = "ignore"


class PolicyRule(BaseModel):
    """A single policy rule.

    Finding rules match findings when every configured condition holds.
    Scanner rules (``scanner_status``) match degraded scanners instead and
    override the fail-closed default for them.
    """

    name: str = Field(default="", description="Rule name used in verdict reasons")
    action: RuleAction = Field(default=RuleAction.FAIL)
    min_severity: Severity | None = Field(
        default=None, description="Match findings at or above this severity"
    )
    vulnerability_ids: list[str] = Field(
        default_factory=list, description="Block-list of vulnerability identifiers"
    )
    packages: list[str] = Field(
        default_factory=list, description="fnmatch patterns on package name"
    )
    fixable_only: bool = Field(default=False, description="Only match findings with a fix")
    max_age_days: int | None = Field(
        default=None, ge=0, description="Match findings disclosed more than N days ago"
    )
    scanner_status: list[ScanStatus] = Field(
        default_factory=list, description="Match scanners in these degraded states"
    )

    @field_validator("min_severity", mode="before")
    @classmethod
    def normalize_severity(cls, value: object) -> object:
        """Accept severities in any case (HIGH, High, high)."""
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def check_conditions(self) -> "PolicyRule":
        """Validate that the rule has a usable condition set."""
        finding_conditions = (
            self.min_severity is not None
            or bool(self.vulnerability_ids)
            or bool(self.packages)
            or self.fixable_only
            or self.max_age_days is not None
        )
        if self.scanner_status:
            if ScanStatus.SUCCEEDED in self.scanner_status:
                msg = "scanner_status rules only match degraded states (timed-out, tool-error)"
                raise ValueError(msg)
            if finding_conditions:
                msg = "scanner_status cannot be combined with finding conditions"
                raise ValueError(msg)
        elif not finding_conditions:
            msg = f"rule '{self.name or '<unnamed>'}' has no condition"
            raise ValueError(msg)
        return self

    @property
    def is_scanner_rule(self) -> bool:
        """True for rules that match scanner state instead of findings."""
        return bool(self.scanner_status)


class Policy(BaseModel):
    """Ordered rule set plus fail-closed and allow-list settings."""

    name: str = Field(default="default")
    fail_closed: bool = Field(
        default=True, description="Degraded scanners fail the verdict unless overridden"
    )
    allow_list: list[str] = Field(
        default_factory=list, description="Vulnerability ids removed before rules run"
    )
    rules: list[PolicyRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def name_rules(self) -> "Policy":
        """Give unnamed rules a positional name and reject duplicate names.

        Naming works on copies so caller-owned rule objects stay untouched.
        """
        named: list[PolicyRule] = []
        seen: set[str] = set()
        for index, rule in enumerate(self.rules, 1):
            if not rule.name:
                rule = rule.model_copy(update={"name": f"rule-{index}"})
            if rule.name in seen:
                msg = f"Duplicate rule name: {rule.name}"
                raise ValueError(msg)
            seen.add(rule.name)
            named.append(rule)
        self.rules = named
        return self


class VerdictReason(BaseModel):
    """Explains one contribution to a verdict."""

    rule: str
    action: RuleAction
    message: str
    findings: list[Finding] = Field(default_factory=list)
    scanners: list[str] = Field(default_factory=list)

    @property
    def is_scanner_state(self) -> bool:
        """True when the reason comes from scanner state, not findings."""
        return bool(self.scanners) and not self.findings


class Verdict(BaseModel):
    """Pass/fail decision for one digest."""

    digest: str
    passed: bool
    policy_name: str = Field(default="default")
    reasons: list[VerdictReason] = Field(
        default_factory=list, description="Fail reasons in rule order"
    )
    warnings: list[VerdictReason] = Field(default_factory=list)
    evaluated_at: datetime = Field(default_factory=_utc_now)

    @property
    def failed_only_on_scanner_state(self) -> bool:
        """True when every fail reason is a degraded-scanner reason."""
        return bool(self.reasons) and all(r.is_scanner_state for r in self.reasons)
