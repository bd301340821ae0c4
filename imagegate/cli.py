"""CLI interface for imagegate."""

import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from imagegate import __version__
from imagegate.consts import EXIT_INFRA_ERROR, EXIT_OK, EXIT_POLICY_FAIL, SCAN_CACHE_CATEGORY
from imagegate.errors import GateError, PolicyError
from imagegate.models.model_config import GateConfig
from imagegate.models.model_pipeline import GateState, PipelineContext
from imagegate.models.model_policy import Policy, Verdict
from imagegate.models.model_scan import AggregatedReport, Severity
from imagegate.pipeline import exit_code_for, run_gate_pipeline
from imagegate.policy.evaluator import evaluate as evaluate_policy
from imagegate.policy.loader import load_policy
from imagegate.scanner.registry import SCANNERS, available_scanners
from imagegate.scanner.scan_cache import ScanCache
from imagegate.storage.cache.file_caching import FileCache
from imagegate.storage.report_store import ReportStore, load_scan_report

app = typer.Typer(
    name="gate",
    help="imagegate - Build, scan, policy-check and publish container images",
)

console = Console()

SEVERITY_COLORS = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
    Severity.UNKNOWN: "dim",
}

MAX_FINDING_ROWS = 25


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _truncate(text: str, max_len: int = 60) -> str:
    """Truncate text with ellipsis."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _parse_build_args(values: list[str] | None) -> dict[str, str]:
    args: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got '{item}'", param_hint="--build-arg")
        args[key] = value
    return args


def _load_policy_or_default(policy_path: Path | None) -> Policy:
    if policy_path is None:
        console.print("[dim]No --policy given; using default (no rules, fail-closed)[/dim]")
        return Policy()
    return load_policy(policy_path)


def _print_scan_summary(report: AggregatedReport) -> None:
    scanner_table = Table(title=f"Scanners ({report.digest[:19]})")
    scanner_table.add_column("Scanner", style="cyan")
    scanner_table.add_column("Status")
    scanner_table.add_column("Findings", justify="right", style="magenta")
    scanner_table.add_column("Attempts", justify="right")
    scanner_table.add_column("Error", style="dim")

    for scan in report.reports:
        status_style = "green" if not scan.is_degraded else "red"
        scanner_table.add_row(
            scan.scanner,
            f"[{status_style}]{scan.status.value}[/{status_style}]",
            str(len(scan.findings)),
            str(scan.attempts),
            _truncate(scan.error or "", 50),
        )
    console.print(scanner_table)

    counts = report.count_by_severity()
    console.print(
        "Findings: "
        + "  ".join(
            f"[{SEVERITY_COLORS[s]}]{s.value}={counts[s]}[/{SEVERITY_COLORS[s]}]"
            for s in sorted(counts, key=lambda s: s.rank, reverse=True)
        )
    )

    if not report.findings:
        return

    findings = sorted(report.findings, key=lambda f: f.severity.rank, reverse=True)
    table = Table(title=f"Findings ({len(findings)})")
    table.add_column("Severity")
    table.add_column("Vulnerability", style="cyan")
    table.add_column("Package")
    table.add_column("Installed", style="dim")
    table.add_column("Fixed in", style="green")
    table.add_column("Scanners", style="dim")

    for finding in findings[:MAX_FINDING_ROWS]:
        color = SEVERITY_COLORS[finding.severity]
        table.add_row(
            f"[{color}]{finding.severity.value}[/{color}]",
            finding.vulnerability_id,
            finding.package,
            finding.installed_version,
            finding.fixed_version or "-",
            ",".join(finding.scanners),
        )
    console.print(table)
    if len(findings) > MAX_FINDING_ROWS:
        console.print(f"[dim]... and {len(findings) - MAX_FINDING_ROWS} more[/dim]")


def _print_verdict(verdict: Verdict) -> None:
    if verdict.passed:
        console.print(f"\n[bold green]PASS[/bold green] policy '{verdict.policy_name}'")
    else:
        console.print(f"\n[bold red]FAIL[/bold red] policy '{verdict.policy_name}'")

    for reason in verdict.reasons:
        subject = ", ".join(reason.scanners) if reason.is_scanner_state else reason.rule
        console.print(f"  [red]✗[/red] [bold]{subject}[/bold]: {reason.message}")
    for reason in verdict.warnings:
        subject = ", ".join(reason.scanners) if reason.is_scanner_state else reason.rule
        console.print(f"  [yellow]![/yellow] [bold]{subject}[/bold]: {reason.message}")


def _print_outcome(ctx: PipelineContext, run_dir: Path) -> None:
    if ctx.build:
        console.print(f"Built [cyan]{ctx.build.image_ref}[/cyan] as {ctx.build.digest}")
    if ctx.scan_report:
        _print_scan_summary(ctx.scan_report)
    if ctx.verdict:
        _print_verdict(ctx.verdict)

    if ctx.succeeded:
        if ctx.publish:
            signed = " (signed)" if ctx.publish.signed else ""
            console.print(
                f"\n[bold green]Published[/bold green] {ctx.publish.destination}"
                f"@{ctx.publish.repo_digest or ctx.publish.digest}{signed}"
            )
        else:
            console.print("\n[bold green]Done[/bold green] (dry run, nothing published)")
    else:
        stage = ctx.failed_stage.value if ctx.failed_stage else "unknown"
        console.print(f"\n[bold red]Failed[/bold red] during {stage}:")
        for reason in ctx.failure_reasons:
            console.print(f"  [red]-[/red] {reason}")

    console.print(f"\n[dim]Run report: {run_dir}[/dim]")


@app.command()
def run(
    context: Path = typer.Option(..., "--context", "-c", help="Build context directory"),
    tag: str = typer.Option(..., "--tag", "-t", help="Image tag to build"),
    policy: Path = typer.Option(None, "--policy", "-p", help="Policy file (YAML or JSON)"),
    destination: str = typer.Option(None, "--destination", "-d", help="Registry reference (default: --tag)"),
    scanner: list[str] = typer.Option(
        None,
        "--scanner",
        "-s",
        help=f"Scanner to run, repeatable ({', '.join(available_scanners())}). "
        "anchore requires the image to be already analyzed by the Anchore service under its local image id",
    ),
    dockerfile: str = typer.Option(None, "--dockerfile", "-f", help="Dockerfile, relative to context"),
    build_arg: list[str] = typer.Option(None, "--build-arg", help="Build argument KEY=VALUE, repeatable"),
    concurrency: int = typer.Option(None, "--concurrency", help="Max concurrent scanners"),
    scan_timeout: int = typer.Option(None, "--scan-timeout", help="Per-scanner timeout (seconds)"),
    build_timeout: int = typer.Option(None, "--build-timeout", help="Build timeout (seconds)"),
    retries: int = typer.Option(None, "--retries", help="Retries for transient build/scan errors"),
    warn_only: bool = typer.Option(False, "--warn-only", help="Degraded scanners warn instead of failing"),
    sign: bool = typer.Option(False, "--sign/--no-sign", help="Sign the pushed image with cosign"),
    sign_key: str = typer.Option(None, "--sign-key", help="cosign key (keyless when unset)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build, scan and evaluate, but do not publish"),
    report_dir: Path = typer.Option(None, "--report-dir", help="Directory for run reports"),
    scan_cache_ttl: int = typer.Option(None, "--scan-cache-ttl", help="Reuse scan reports for N seconds"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="-v for info, -vv for debug"),
) -> None:
    """Build an image, scan it, evaluate the policy and publish on pass.

    Exit codes: 0 published (or dry run passed), 1 policy failure,
    2 build/scan/publish or infrastructure error.

    Scanners receive the local image id (sha256:...). trivy and grype read
    it from the docker daemon. anchore only queries its service, so the
    image must already be analyzed there under that id, or the anchore
    scan reports a tool error.
    """
    _configure_logging(verbose)

    try:
        gate_policy = _load_policy_or_default(policy)
        if warn_only:
            gate_policy = gate_policy.model_copy(update={"fail_closed": False})

        config = GateConfig.resolve(
            scanners=scanner or None,
            concurrency=concurrency,
            scan_timeout=scan_timeout,
            scan_retries=retries,
            build_timeout=build_timeout,
            build_retries=retries,
            dockerfile=dockerfile,
            build_args=_parse_build_args(build_arg),
            sign=sign,
            sign_key=sign_key,
            dry_run=dry_run,
            scan_cache_ttl=scan_cache_ttl,
        )
    except PolicyError as e:
        console.print(f"[red]Policy error:[/red] {e}")
        raise typer.Exit(EXIT_INFRA_ERROR)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(EXIT_INFRA_ERROR)

    console.print(
        f"\n[bold]Gating {tag}[/bold] with {', '.join(config.scanners)} "
        f"(policy '{gate_policy.name}')\n"
    )

    try:
        with console.status("Building...") as status:

            def on_state(state: GateState) -> None:
                status.update(f"{state.value.capitalize()}...")

            ctx, run_dir = run_gate_pipeline(
                context_path=context,
                tag=tag,
                policy=gate_policy,
                destination=destination,
                config=config,
                report_dir=report_dir,
                progress_callback=on_state,
            )
    except (GateError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(EXIT_INFRA_ERROR)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e!r}")
        raise typer.Exit(EXIT_INFRA_ERROR)

    _print_outcome(ctx, run_dir)
    raise typer.Exit(exit_code_for(ctx))


@app.command()
def evaluate(
    report: Path = typer.Option(..., "--report", "-r", help="Stored scan.json or run.json"),
    policy: Path = typer.Option(None, "--policy", "-p", help="Policy file (YAML or JSON)"),
    warn_only: bool = typer.Option(False, "--warn-only", help="Degraded scanners warn instead of failing"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True),
) -> None:
    """Re-evaluate a stored scan report against a policy, offline."""
    _configure_logging(verbose)

    try:
        gate_policy = _load_policy_or_default(policy)
        scan_report = load_scan_report(report)
    except PolicyError as e:
        console.print(f"[red]Policy error:[/red] {e}")
        raise typer.Exit(EXIT_INFRA_ERROR)
    except (OSError, ValueError) as e:
        console.print(f"[red]Cannot read report:[/red] {e}")
        raise typer.Exit(EXIT_INFRA_ERROR)

    if warn_only:
        gate_policy = gate_policy.model_copy(update={"fail_closed": False})

    verdict = evaluate_policy(scan_report, gate_policy)
    _print_scan_summary(scan_report)
    _print_verdict(verdict)
    raise typer.Exit(EXIT_OK if verdict.passed else EXIT_POLICY_FAIL)


@app.command("check-policy")
def check_policy(
    policy: Path = typer.Argument(..., help="Policy file (YAML or JSON)"),
) -> None:
    """Validate a policy file and list its rules."""
    try:
        gate_policy = load_policy(policy)
    except PolicyError as e:
        console.print(f"[red]Invalid policy:[/red] {e}")
        raise typer.Exit(EXIT_POLICY_FAIL)

    console.print(
        f"[green]✓[/green] Policy [bold]{gate_policy.name}[/bold] is valid "
        f"(fail_closed={gate_policy.fail_closed}, {len(gate_policy.allow_list)} allow-listed id(s))"
    )

    if not gate_policy.rules:
        console.print("[yellow]No rules: only degraded scanners can fail a verdict.[/yellow]")
        return

    table = Table(title="Rules (evaluation order)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Action")
    table.add_column("Conditions")

    for index, rule in enumerate(gate_policy.rules, 1):
        conditions = []
        if rule.min_severity:
            conditions.append(f"severity >= {rule.min_severity.value}")
        if rule.vulnerability_ids:
            conditions.append(f"ids: {', '.join(rule.vulnerability_ids)}")
        if rule.packages:
            conditions.append(f"packages: {', '.join(rule.packages)}")
        if rule.fixable_only:
            conditions.append("fixable")
        if rule.max_age_days is not None:
            conditions.append(f"older than {rule.max_age_days}d")
        if rule.scanner_status:
            conditions.append(f"scanner {'/'.join(s.value for s in rule.scanner_status)}")
        table.add_row(str(index), rule.name, rule.action.value, "; ".join(conditions))

    console.print(table)


@app.command()
def scanners() -> None:
    """List supported scanners and whether they are installed."""
    table = Table(title="Scanners")
    table.add_column("Name", style="cyan")
    table.add_column("Executable")
    table.add_column("Installed")

    for name in available_scanners():
        scanner_cls = SCANNERS[name]
        instance = scanner_cls()
        installed = "[green]yes[/green]" if instance.is_installed() else "[red]no[/red]"
        table.add_row(name, instance.executable, installed)

    console.print(table)


@app.command()
def history(
    digest: str = typer.Option(None, "--digest", help="Only runs for this image digest"),
    report_dir: Path = typer.Option(None, "--report-dir", help="Directory for run reports"),
    limit: int = typer.Option(10, "--limit", "-l", help="Number of runs to list"),
    latest: bool = typer.Option(False, "--latest", help="Show the newest run in detail"),
) -> None:
    """List stored gate runs, newest first."""
    store = ReportStore(report_dir or GateConfig.resolve().data_dir)

    if latest:
        report = store.load_latest(digest)
        if report is None:
            console.print("[yellow]No runs found.[/yellow]")
            return
        console.print(f"[bold]{report.tag}[/bold] -> {report.destination}: {report.final_state.value}")
        for entry in report.history:
            note = f" ({entry.note})" if entry.note else ""
            console.print(f"  {entry.at:%Y-%m-%d %H:%M:%S} {entry.state.value}{note}")
        if report.scan_report:
            _print_scan_summary(report.scan_report)
        if report.verdict:
            _print_verdict(report.verdict)
        return

    runs = store.list_runs(digest)
    if not runs:
        console.print("[yellow]No runs found.[/yellow]")
        return

    table = Table(title=f"Gate runs ({len(runs)})")
    table.add_column("Run", style="dim")
    table.add_column("Tag", style="cyan")
    table.add_column("State")
    table.add_column("Failed at")
    table.add_column("Reason", style="dim")

    for run_dir in runs[:limit]:
        try:
            report = store.load(run_dir)
        except (OSError, ValueError) as e:
            table.add_row(run_dir.name, "-", "[red]unreadable[/red]", "-", _truncate(str(e), 50))
            continue
        state_style = "green" if report.final_state == GateState.DONE else "red"
        table.add_row(
            run_dir.name,
            report.tag,
            f"[{state_style}]{report.final_state.value}[/{state_style}]",
            report.failed_stage.value if report.failed_stage else "-",
            _truncate(report.failure_reasons[0], 50) if report.failure_reasons else "",
        )

    console.print(table)


@app.command("clear-cache")
def clear_cache(
    scanner: str = typer.Option(None, "--scanner", "-s", help="Scanner whose report to drop"),
    digest: str = typer.Option(None, "--digest", help="Image digest whose report to drop"),
) -> None:
    """Remove cached scan reports: all of them, or one scanner's report for a digest."""
    config = GateConfig.resolve()
    file_cache = FileCache(config.data_dir / "cache")

    if scanner is None and digest is None:
        removed = file_cache.clear(SCAN_CACHE_CATEGORY)
        console.print(f"Removed {removed} cached scan report(s)")
        return

    if scanner is None or digest is None:
        raise typer.BadParameter("--scanner and --digest must be given together")

    scan_cache = ScanCache(file_cache, ttl=config.scan_cache_ttl)
    if scan_cache.invalidate(scanner.lower(), digest):
        console.print(f"Removed cached {scanner.lower()} report for {digest}")
    else:
        console.print(f"[yellow]No cached {scanner.lower()} report for {digest}[/yellow]")


@app.command()
def version() -> None:
    """Show the imagegate version."""
    console.print(f"imagegate {__version__}")


if __name__ == "__main__":
    app()
