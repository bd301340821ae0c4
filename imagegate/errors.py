"""Exception taxonomy for the gate pipeline.

Policy violations are not exceptions: a failing policy is a normal
``Verdict`` with ``passed=False``.
"""

from typing import Any


class GateError(Exception):
    """Base class for all pipeline errors.

    Carries a ``context`` dict (digest, scanner, rule, stage) so a failure can
    be reproduced from the run report alone.
    """

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class BuildError(GateError):
    """Image build failed (missing context, non-zero exit, bad digest)."""


class ScannerUnavailable(GateError):
    """A scanner could not produce a report after its retries."""


class PublishError(GateError):
    """Push or signing failed. Never retried automatically.

    ``pushed`` is True when the image reached the registry before the
    failure, and None when that is unknown (interrupted publish).
    """

    def __init__(self, message: str, pushed: bool | None = False, **context: Any):
        super().__init__(message, **context)
        self.pushed = pushed
        self.context["pushed"] = "unknown" if pushed is None else pushed


class DigestMismatchError(PublishError):
    """The digest to push differs from the digest that was scanned."""


class PolicyError(GateError):
    """Policy file is missing or invalid."""


class InvalidTransition(GateError):
    """Illegal gate state machine transition."""


class PipelineCancelled(GateError):
    """Pipeline was cancelled before reaching a terminal state."""
