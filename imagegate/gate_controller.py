"""Drives one image through build -> scan -> evaluate -> publish.

Stage order is enforced by the PipelineContext state machine:

    BUILDING -> SCANNING -> EVALUATING -> PUBLISHING -> DONE
                                       \\-> DONE (dry run)
    any non-terminal state -> FAILED
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

from imagegate.builder.docker_builder import DockerBuilder
from imagegate.consts import REASON_CANCELLED, REASON_PUBLISH_INTERRUPTED
from imagegate.errors import BuildError, GateError, PipelineCancelled, PublishError
from imagegate.models.model_pipeline import GateState, PipelineContext
from imagegate.models.model_policy import Policy, Verdict
from imagegate.policy.evaluator import evaluate
from imagegate.publisher.registry_publisher import RegistryPublisher
from imagegate.scanner.scan_connector import ScanConnector

logger = logging.getLogger(__name__)

T = TypeVar("T")


def verdict_failure_reasons(verdict: Verdict) -> list[str]:
    """Flatten verdict fail reasons into report lines."""
    lines = []
    for reason in verdict.reasons:
        if reason.is_scanner_state:
            lines.append(f"{', '.join(reason.scanners)}: {reason.message}")
        else:
            lines.append(f"{reason.rule}: {reason.message}")
    return lines


class GateController:
    """Runs the gate pipeline and owns its state transitions.

    ``cancel()`` aborts the stage in flight (killing scanner subprocesses)
    and ends the run in FAILED with reason "cancelled". Cancelling the task
    that awaits ``run`` has the same effect on ``self.context`` and then
    propagates the cancellation.
    """

    def __init__(
        self,
        builder: DockerBuilder,
        connector: ScanConnector,
        publisher: RegistryPublisher,
        dry_run: bool = False,
        dockerfile: str | None = None,
        build_args: dict[str, str] | None = None,
        progress_callback: Callable[[GateState], None] | None = None,
    ):
        """Initialize GateController.

        Args:
            builder: Build driver
            connector: Multi-scanner connector
            publisher: Registry publisher
            dry_run: Stop at DONE after a passing verdict without publishing
            dockerfile: Dockerfile path passed to the builder
            build_args: Build arguments passed to the builder
            progress_callback: Called with each new state
        """
        self.builder = builder
        self.connector = connector
        self.publisher = publisher
        self.dry_run = dry_run
        self.dockerfile = dockerfile
        self.build_args = build_args or {}
        self.progress_callback = progress_callback
        self.context: PipelineContext | None = None
        self._cancel_event = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation of the running pipeline."""
        logger.warning("Cancellation requested")
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def _advance(self, ctx: PipelineContext, to: GateState, note: str | None = None) -> None:
        previous = ctx.state
        ctx.transition(to, note=note)
        logger.info(f"[{ctx.tag}] {previous.value} -> {to.value}" + (f" ({note})" if note else ""))
        if self.progress_callback:
            self.progress_callback(to)

    def _fail(
        self, ctx: PipelineContext, reasons: list[str] | str, error: GateError | None = None
    ) -> None:
        stage = ctx.state
        ctx.fail(reasons, error)
        logger.warning(f"[{ctx.tag}] failed at {stage.value}: {'; '.join(ctx.failure_reasons)}")
        if self.progress_callback:
            self.progress_callback(GateState.FAILED)

    async def _stage(self, ctx: PipelineContext, operation: Awaitable[T]) -> T:
        """Await a stage, aborting it if cancel() is called meanwhile."""
        task = asyncio.ensure_future(operation)
        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if task in done and not task.cancelled():
            return task.result()
        raise PipelineCancelled("Pipeline cancelled", stage=ctx.state.value, tag=ctx.tag)

    def _check_cancelled(self, ctx: PipelineContext) -> None:
        if self._cancel_event.is_set():
            raise PipelineCancelled("Pipeline cancelled", stage=ctx.state.value, tag=ctx.tag)

    async def run(
        self,
        context_path: Path | str,
        tag: str,
        policy: Policy | None = None,
        destination: str | None = None,
    ) -> PipelineContext:
        """Run the full gate for one build context.

        Args:
            context_path: Build context directory
            tag: Local tag to build
            policy: Policy to evaluate (default: empty rule set, fail-closed)
            destination: Registry reference to publish to (default: ``tag``)

        Returns:
            The terminal PipelineContext (DONE or FAILED)
        """
        ctx = PipelineContext(
            context_path=str(context_path),
            tag=tag,
            destination=destination or tag,
            policy=policy or Policy(),
        )
        self.context = ctx
        logger.info(f"[{tag}] gate started (policy '{ctx.policy.name}')")

        try:
            await self._run_stages(ctx)
        except PipelineCancelled as e:
            self._fail(ctx, REASON_CANCELLED, e)
        except asyncio.CancelledError:
            if ctx.state == GateState.PUBLISHING:
                # push or signing was interrupted; registry state is unknown
                self._fail(
                    ctx,
                    [REASON_CANCELLED, REASON_PUBLISH_INTERRUPTED],
                    PublishError(
                        "Publish interrupted by cancellation",
                        pushed=None,
                        destination=ctx.destination,
                        digest=ctx.build.digest if ctx.build else None,
                    ),
                )
            elif not ctx.is_terminal:
                self._fail(
                    ctx,
                    REASON_CANCELLED,
                    PipelineCancelled("Pipeline cancelled", stage=ctx.state.value, tag=tag),
                )
            raise
        except Exception as e:
            if not ctx.is_terminal:
                error = e if isinstance(e, GateError) else GateError(str(e), stage=ctx.state.value)
                self._fail(ctx, f"internal error: {e}", error)
            raise

        return ctx

    async def _run_stages(self, ctx: PipelineContext) -> None:
        # Build
        self._check_cancelled(ctx)
        try:
            ctx.build = await self._stage(
                ctx,
                self.builder.build(
                    ctx.context_path,
                    ctx.tag,
                    dockerfile=self.dockerfile,
                    build_args=self.build_args,
                ),
            )
        except BuildError as e:
            self._fail(ctx, str(e), e)
            return
        digest = ctx.build.digest
        self._advance(ctx, GateState.SCANNING, note=digest)

        # Scan: every scanner returns or times out before evaluation
        ctx.scan_report = await self._stage(ctx, self.connector.scan(digest))
        self._check_cancelled(ctx)
        self._advance(ctx, GateState.EVALUATING)

        # Evaluate
        ctx.verdict = evaluate(ctx.scan_report, ctx.policy)
        if not ctx.verdict.passed:
            self._fail(ctx, verdict_failure_reasons(ctx.verdict))
            return

        if self.dry_run:
            self._advance(ctx, GateState.DONE, note="dry run, not published")
            return

        # Publish, never retried. Once started it runs to completion: cancel()
        # is only honoured up to this point.
        self._check_cancelled(ctx)
        self._advance(ctx, GateState.PUBLISHING, note=ctx.destination)
        try:
            ctx.publish = await self.publisher.publish(ctx.build, ctx.verdict, ctx.destination)
        except PublishError as e:
            self._fail(ctx, str(e), e)
            return

        if self.cancel_requested:
            logger.warning(f"[{ctx.tag}] cancel arrived during publish; publish completed")
        self._advance(ctx, GateState.DONE, note=ctx.publish.repo_digest)
