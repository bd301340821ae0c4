"""Gate state machine and the pipeline context passed through each stage."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from imagegate.errors import GateError, InvalidTransition
from imagegate.models.common import _utc_now
from imagegate.models.model_build import BuildResult, PublishResult
from imagegate.models.model_policy import Policy, Verdict
from imagegate.models.model_scan import AggregatedReport


class GateState(str, Enum):
    """Pipeline states."""

    BUILDING = "building"
    SCANNING = "scanning"
    EVALUATING = "evaluating"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({GateState.DONE, GateState.FAILED})

# Forward edges; FAILED is reachable from every non-terminal state.
ALLOWED_TRANSITIONS: dict[GateState, frozenset[GateState]] = {
    GateState.BUILDING: frozenset({GateState.SCANNING}),
    GateState.SCANNING: frozenset({GateState.EVALUATING}),
    # EVALUATING -> DONE is the dry-run path
    GateState.EVALUATING: frozenset({GateState.PUBLISHING, GateState.DONE}),
    GateState.PUBLISHING: frozenset({GateState.DONE}),
    GateState.DONE: frozenset(),
    GateState.FAILED: frozenset(),
}


class StateTransition(BaseModel):
    """One entry in the state history."""

    state: GateState
    at: datetime = Field(default_factory=_utc_now)
    note: str | None = None


class RunReport(BaseModel):
    """Persisted record of one pipeline run."""

    context_path: str
    tag: str
    destination: str
    final_state: GateState
    failed_stage: GateState | None = None
    failure_reasons: list[str] = Field(default_factory=list)
    history: list[StateTransition] = Field(default_factory=list)
    build: BuildResult | None = None
    scan_report: AggregatedReport | None = None
    policy: Policy | None = None
    verdict: Verdict | None = None
    publish: PublishResult | None = None
    error_context: dict[str, str] = Field(default_factory=dict)


@dataclass
class PipelineContext:
    """Explicit pipeline state, passed through every stage."""

    context_path: str
    tag: str
    destination: str
    policy: Policy
    state: GateState = GateState.BUILDING
    history: list[StateTransition] = field(default_factory=list)
    build: BuildResult | None = None
    scan_report: AggregatedReport | None = None
    verdict: Verdict | None = None
    publish: PublishResult | None = None
    failed_stage: GateState | None = None
    failure_reasons: list[str] = field(default_factory=list)
    error: GateError | None = None

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(StateTransition(state=self.state))

    @property
    def is_terminal(self) -> bool:
        """Whether the pipeline reached DONE or FAILED."""
        return self.state in TERMINAL_STATES

    @property
    def succeeded(self) -> bool:
        """Whether the pipeline reached DONE."""
        return self.state == GateState.DONE

    def transition(self, to: GateState, note: str | None = None) -> None:
        """Move to the next state.

        Raises:
            InvalidTransition: If the edge is not allowed.
        """
        if to == GateState.FAILED:
            if self.is_terminal:
                raise InvalidTransition(
                    f"Cannot fail from terminal state {self.state.value}",
                    stage=self.state.value,
                )
        elif to not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Illegal transition {self.state.value} -> {to.value}",
                stage=self.state.value,
            )
        self.state = to
        self.history.append(StateTransition(state=to, note=note))

    def fail(self, reasons: list[str] | str, error: GateError | None = None) -> None:
        """Record failure reasons and move to FAILED."""
        if isinstance(reasons, str):
            reasons = [reasons]
        stage = self.state
        self.transition(GateState.FAILED, note="; ".join(reasons))
        self.failed_stage = stage
        self.failure_reasons.extend(reasons)
        self.error = error

    def to_run_report(self) -> RunReport:
        """Snapshot the context for persistence."""
        error_context = (
            {k: str(v) for k, v in self.error.context.items()} if self.error else {}
        )
        return RunReport(
            context_path=self.context_path,
            tag=self.tag,
            destination=self.destination,
            final_state=self.state,
            failed_stage=self.failed_stage,
            failure_reasons=list(self.failure_reasons),
            history=list(self.history),
            build=self.build,
            scan_report=self.scan_report,
            policy=self.policy,
            verdict=self.verdict,
            publish=self.publish,
            error_context=error_context,
        )
