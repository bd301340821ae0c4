"""Pipeline wiring for a complete gate run.

This module coordinates:
1. Resolve configuration (options > env > defaults)
2. Construct builder, scanners, connector and publisher
3. Run the gate controller
4. Persist the run report
"""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from imagegate.backoff import Backoff
from imagegate.builder.docker_builder import DockerBuilder
from imagegate.consts import EXIT_INFRA_ERROR, EXIT_OK, EXIT_POLICY_FAIL
from imagegate.gate_controller import GateController
from imagegate.models.model_config import GateConfig
from imagegate.models.model_pipeline import GateState, PipelineContext
from imagegate.models.model_policy import Policy
from imagegate.publisher.registry_publisher import RegistryPublisher
from imagegate.scanner.registry import create_scanners
from imagegate.scanner.scan_cache import ScanCache
from imagegate.scanner.scan_connector import ScanConnector
from imagegate.storage.cache.file_caching import FileCache
from imagegate.storage.report_store import ReportStore

logger = logging.getLogger(__name__)


def build_controller(
    config: GateConfig,
    progress_callback: Callable[[GateState], None] | None = None,
) -> GateController:
    """Construct a GateController and its collaborators from ``config``."""
    backoff = Backoff()
    scanners = create_scanners(
        config.scanners,
        timeout=config.scan_timeout,
        max_retries=config.scan_retries,
        backoff=backoff,
    )

    scan_cache = None
    if config.scan_cache_ttl > 0:
        scan_cache = ScanCache(FileCache(config.data_dir / "cache"), ttl=config.scan_cache_ttl)

    return GateController(
        builder=DockerBuilder(
            timeout=config.build_timeout, max_retries=config.build_retries, backoff=backoff
        ),
        connector=ScanConnector(scanners, concurrency=config.concurrency, scan_cache=scan_cache),
        publisher=RegistryPublisher(sign=config.sign, sign_key=config.sign_key),
        dry_run=config.dry_run,
        dockerfile=config.dockerfile,
        build_args=config.build_args,
        progress_callback=progress_callback,
    )


def exit_code_for(ctx: PipelineContext) -> int:
    """Map a terminal context to a CLI exit code.

    0 when DONE. 1 when the verdict failed on at least one finding-based
    reason. 2 for everything else (build, publish, cancellation, or a
    verdict that failed only because scanners were degraded).
    """
    if ctx.succeeded:
        return EXIT_OK
    if (
        ctx.failed_stage == GateState.EVALUATING
        and ctx.verdict is not None
        and not ctx.verdict.passed
        and not ctx.verdict.failed_only_on_scanner_state
    ):
        return EXIT_POLICY_FAIL
    return EXIT_INFRA_ERROR


def run_gate_pipeline(
    context_path: Path | str,
    tag: str,
    policy: Policy | None = None,
    destination: str | None = None,
    config: GateConfig | None = None,
    report_dir: Path | str | None = None,
    progress_callback: Callable[[GateState], None] | None = None,
) -> tuple[PipelineContext, Path]:
    """Run build -> scan -> evaluate -> publish and store the run report.

    Args:
        context_path: Build context directory
        tag: Local image tag
        policy: Policy to evaluate (default: empty rule set, fail-closed)
        destination: Registry reference (default: ``tag``)
        config: Resolved configuration (default: GateConfig.resolve())
        report_dir: Where run reports go (default: config.data_dir)
        progress_callback: Called with each new state

    Returns:
        Tuple of (terminal context, directory of the stored run report)
    """
    config = config or GateConfig.resolve()
    store = ReportStore(Path(report_dir) if report_dir else config.data_dir)
    controller = build_controller(config, progress_callback=progress_callback)

    logger.info(
        f"Starting gate for {tag}: scanners={','.join(config.scanners)} "
        f"concurrency={config.concurrency} dry_run={config.dry_run}"
    )

    try:
        ctx = asyncio.run(controller.run(context_path, tag, policy=policy, destination=destination))
    except KeyboardInterrupt:
        # asyncio.run cancels the main task; the controller recorded FAILED
        ctx = controller.context
        if ctx is None:
            raise
        logger.warning("Interrupted")
    except Exception:
        # the controller already recorded FAILED with "internal error: ..."
        ctx = controller.context
        if ctx is None:
            raise
        logger.exception(f"Gate for {tag} aborted by an unexpected error")

    run_dir = store.save(ctx.to_run_report())
    logger.info(f"Gate finished in state {ctx.state.value}; report at {run_dir}")
    return ctx, run_dir
