"""Pydantic models for imagegate."""

from imagegate.models.model_build import BuildResult, PublishResult
from imagegate.models.model_config import GateConfig
from imagegate.models.model_pipeline import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    GateState,
    PipelineContext,
    RunReport,
    StateTransition,
)
from imagegate.models.model_policy import (
    Policy,
    PolicyRule,
    RuleAction,
    Verdict,
    VerdictReason,
)
from imagegate.models.model_scan import (
    TRANSIENT_ERRORS,
    AggregatedReport,
    Finding,
    ScanErrorType,
    ScanReport,
    ScanStatus,
    Severity,
)

__all__ = [
    # Build/publish models
    "BuildResult",
    "PublishResult",
    # Configuration
    "GateConfig",
    # Pipeline models
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATES",
    "GateState",
    "PipelineContext",
    "RunReport",
    "StateTransition",
    # Policy models
    "Policy",
    "PolicyRule",
    "RuleAction",
    "Verdict",
    "VerdictReason",
    # Scan models
    "TRANSIENT_ERRORS",
    "AggregatedReport",
    "Finding",
    "ScanErrorType",
    "ScanReport",
    "ScanStatus",
    "Severity",
]
