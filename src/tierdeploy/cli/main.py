"""Main CLI entry point."""

import sys
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tierdeploy.compliance.rules import RuleResult, Severity
from tierdeploy.config.models import DeploymentConfig
from tierdeploy.config.parser import Config, ConfigValidationError
from tierdeploy.orchestrator.cleanup import CleanupAction, CleanupMode, CleanupReport
from tierdeploy.orchestrator.orchestrator import PhaseOrchestrator, RunMode, RunResult
from tierdeploy.orchestrator.phases import PHASES
from tierdeploy.provisioners.base import ReconcileStatus
from tierdeploy.state.manager import StateStore
from tierdeploy.state.models import RECORD_TYPES
from tierdeploy.utils.errors import DeploymentError
from tierdeploy.utils.gcloud import GCloudClient, GCloudCommandError
from tierdeploy.utils.logging import get_logger, setup_logging

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)


@click.group()
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('-v', '--verbose', is_flag=True, help='Shortcut for --log-level debug')
@click.option('--log-dir', default='logs', help='Directory for per-invocation log files')
@click.option('--config-dir', default='config', help='Directory holding <environment>.yaml files')
@click.pass_context
def cli(ctx, log_level, verbose, log_dir, config_dir):
    """Provision a free-tier proxy service on Google Cloud in resumable phases."""
    ctx.ensure_object(dict)
    ctx.obj['config_dir'] = config_dir
    ctx.obj['log_file'] = setup_logging('debug' if verbose else log_level, log_dir)


def parse_phases(ctx, param, value: Optional[str]) -> Optional[List[int]]:
    """Parse ``-p 1,2,3`` into phase numbers."""
    if value is None:
        return None
    try:
        return [int(part) for part in value.split(',') if part.strip()]
    except ValueError:
        raise click.BadParameter(f"expected comma-separated phase numbers, got '{value}'")


def fail(ctx, error: DeploymentError) -> None:
    """Print an error with the log location and exit 1."""
    err_console.print(error.to_user_message(), markup=False, highlight=False)
    log_file = ctx.obj.get('log_file') if ctx.obj else None
    if log_file:
        err_console.print(f"\nFull log: {log_file}", markup=False, highlight=False)
    sys.exit(1)


def resolve_project() -> Optional[str]:
    """Project from the local gcloud configuration, if it can be read."""
    try:
        return GCloudClient(None).configured_project()
    except (GCloudCommandError, FileNotFoundError) as e:
        logger.debug(f"Could not read gcloud project: {e}")
        return None


def load_config(ctx, environment: str, force: bool = False) -> DeploymentConfig:
    """Load and validate configuration for an environment."""
    try:
        config = Config(environment, ctx.obj['config_dir']).load(project_fallback=resolve_project)
    except ConfigValidationError as e:
        err_console.print("[red]Configuration validation failed:[/red]\n")
        err_console.print(str(e), markup=False)
        sys.exit(1)
    return config.with_override(True) if force else config


def create_orchestrator(config: DeploymentConfig) -> PhaseOrchestrator:
    """Create the orchestrator with all dependencies."""
    return PhaseOrchestrator(config=config, client=GCloudClient(config.project_id))


def print_compliance(results: List[RuleResult]) -> None:
    if not results:
        return
    table = Table(title="Free-tier compliance")
    table.add_column("Rule", style="cyan")
    table.add_column("Result")
    table.add_column("Detail")
    for result in results:
        if result.passed:
            status = "[green]PASS[/green]"
        elif result.severity == Severity.HARD:
            status = "[red]FAIL[/red]"
        else:
            status = "[yellow]WARN[/yellow]"
        table.add_row(result.rule_id, status, result.message)
    console.print(table)


def print_run(result: RunResult) -> None:
    print_compliance(result.compliance)
    if result.phase_results:
        table = Table(title="Phases")
        table.add_column("#", justify="right")
        table.add_column("Phase", style="cyan")
        table.add_column("Status")
        table.add_column("Created", justify="right")
        table.add_column("Existing", justify="right")
        table.add_column("Duration", justify="right")
        for phase in result.phase_results:
            created = sum(1 for o in phase.outcomes if o.status == ReconcileStatus.CREATED)
            existing = sum(1 for o in phase.outcomes if o.status == ReconcileStatus.ALREADY_EXISTS)
            status = "[green]✓[/green]" if phase.is_success() else "[red]✗[/red]"
            table.add_row(str(phase.ordinal), phase.label, status, str(created),
                          str(existing), f"{phase.duration:.1f}s")
        console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]⚠[/yellow] {warning.message}", highlight=False)


def print_cleanup(report: CleanupReport) -> None:
    table = Table(title=f"Cleanup ({report.mode.value})")
    table.add_column("Resource", style="cyan")
    table.add_column("Action")
    colors = {
        CleanupAction.DELETED: "green",
        CleanupAction.WOULD_DELETE: "yellow",
        CleanupAction.ABSENT: "dim",
        CleanupAction.FAILED: "red",
    }
    for item in report.items:
        color = colors[item.action]
        table.add_row(item.identifier, f"[{color}]{item.action.value}[/{color}]")
    console.print(table)
    for warning in report.warnings:
        console.print(f"[yellow]⚠[/yellow] {warning.message}", highlight=False)
    if report.remaining:
        console.print(f"[red]Still present:[/red] {', '.join(report.remaining)}")


@cli.command()
@click.option('-e', '--env', 'environment', required=True, help='Environment name')
@click.option('-p', '--phases', callback=parse_phases, help='Comma-separated phases to run, e.g. 1,2,3')
@click.option('--force', is_flag=True, help='Downgrade overridable compliance failures to warnings')
@click.pass_context
def deploy(ctx, environment, phases, force):
    """Run deployment phases (all six by default)."""
    config = load_config(ctx, environment, force)
    console.print(Panel(
        f"Environment: [cyan]{environment}[/cyan]\n"
        f"Project: [cyan]{config.project_id}[/cyan]\n"
        f"Zone: [cyan]{config.zone}[/cyan]",
        title="Deploy",
    ))

    result = create_orchestrator(config).run(phases, RunMode.DEPLOY)
    print_run(result)
    if not result.is_success():
        fail(ctx, result.error)

    address = result.final_address or "unavailable; check the instance in the Cloud Console"
    console.print(Panel(
        f"[green]Deployment completed[/green] in {result.duration:.1f}s\n"
        f"Address: {address}",
        title="Done",
    ))


@cli.command()
@click.option('-e', '--env', 'environment', required=True, help='Environment name')
@click.option('--force', is_flag=True, help='Downgrade overridable compliance failures to warnings')
@click.pass_context
def validate(ctx, environment, force):
    """Check prerequisites and free-tier compliance without changing anything."""
    config = load_config(ctx, environment, force)
    result = create_orchestrator(config).run(mode=RunMode.VALIDATE_ONLY)
    print_run(result)
    if not result.is_success():
        fail(ctx, result.error)
    console.print("[green]✓ Validation passed[/green]")


@cli.command()
@click.option('-e', '--env', 'environment', required=True, help='Environment name')
@click.option('--dry-run', is_flag=True, help='List what would be deleted')
@click.option('-y', '--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def cleanup(ctx, environment, dry_run, yes):
    """Delete every resource of an environment."""
    config = load_config(ctx, environment)
    if not dry_run and not yes:
        click.confirm(
            f"Delete all {config.application.service_name} resources in {config.project_id}?",
            abort=True,
        )

    mode = CleanupMode.DRY_RUN if dry_run else CleanupMode.EXECUTE
    result = create_orchestrator(config).run(mode=RunMode.CLEANUP, cleanup_mode=mode)
    if not result.is_success():
        fail(ctx, result.error)
    print_cleanup(result.cleanup_report)


@cli.command()
@click.option('-e', '--env', 'environment', required=True, help='Environment name')
@click.pass_context
def status(ctx, environment):
    """Show the persisted deployment state."""
    config = load_config(ctx, environment)
    store = StateStore(config.state_dir, environment)
    try:
        state = store.load()
    except DeploymentError as e:
        fail(ctx, e)

    producers = {key: phase for phase in PHASES for key in phase.produces}
    table = Table(title=f"State for {environment}")
    table.add_column("Record", style="cyan")
    table.add_column("Phase")
    table.add_column("Values")
    for key in RECORD_TYPES:
        record = getattr(state, key)
        phase = producers.get(key)
        phase_label = f"{phase.ordinal} {phase.name}" if phase else "-"
        if record is None:
            table.add_row(key, phase_label, "[dim]not written[/dim]")
            continue
        values = record.to_env()
        table.add_row(key, phase_label, "\n".join(f"{k}={v}" for k, v in values.items()))
    console.print(table)
    if store.report_path.exists():
        console.print(f"Health report: {store.report_path}")


def main():
    """Console script entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
