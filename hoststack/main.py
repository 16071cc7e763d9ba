"""
hoststack — CLI entrypoint.

Usage:
    hoststack --help
    hoststack install [--yes]
    hoststack uninstall [--yes] [--keep-firewall] [--keep-certs] [--backup]
    hoststack status
    hoststack config check
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from hoststack import __version__
from hoststack.core.observability.logging_config import (
    resolve_level,
    resolve_log_file,
    setup_logging,
)


@click.group()
@click.version_option(version=__version__, prog_name="hoststack")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to install.yml (default: auto-detect).",
)
@click.option(
    "--log-file",
    default=None,
    help="Run log for install and uninstall (default: $HOSTSTACK_LOG_FILE or /var/log/hoststack-installer.log; '' disables).",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, config_path: str | None, log_file: str | None) -> None:
    """Transactional installer for a single-host panel, DNS filter and tunnel stack."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["log_file"] = log_file

    # ── Logging setup (console only; install and uninstall add the run log) ──
    setup_logging(level=resolve_level(debug), quiet_third_party=not debug)


@cli.command()
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Skip confirmation prompts.")
@click.pass_context
def install(ctx: click.Context, assume_yes: bool) -> None:
    """Install the stack, rolling back everything this run did on failure.

    Re-running after a failure or an interruption resumes: steps whose
    work is already in place are skipped.
    """
    from hoststack.core.engine.step import ClickPrompter
    from hoststack.core.models.state import RunStatus, StepStatus
    from hoststack.core.use_cases.install import run_install

    debug = ctx.obj.get("debug", False)
    active_log = setup_logging(
        level=resolve_level(debug),
        log_file=resolve_log_file(ctx.obj.get("log_file")) or None,
        quiet_third_party=not debug,
    )

    result = run_install(
        ClickPrompter(),
        config_path=ctx.obj.get("config_path"),
        assume_yes=assume_yes,
    )

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    report = result.report
    assert report is not None  # set whenever config loaded

    click.echo()
    if report.status == RunStatus.COMPLETED:
        click.secho("✅ Installation completed", fg="green", bold=True)
        if report.outputs.get("panel_url"):
            click.echo(f"   Panel:   {report.outputs['panel_url']}")
        if report.summary_path:
            click.echo(f"   Summary: {report.summary_path}")
        degraded = [name for name, s in report.steps.items() if s == StepStatus.DEGRADED]
        if degraded:
            click.secho(f"⚠️  Continued with degraded steps: {', '.join(degraded)}", fg="yellow")
    elif report.status == RunStatus.ABORTED:
        color = "yellow" if report.exit_code == 0 else "red"
        click.secho(f"⊘ Installation not started: {report.error}", fg=color)
    else:
        click.secho("❌ Installation failed", fg="red", bold=True)
        click.echo(f"   Step:  {report.failed_step}")
        click.echo(f"   Error: {report.error}")
        if report.rollback is not None:
            click.echo(f"   Rolled back {len(report.rollback.executed)} action(s)")
            if report.rollback.failed:
                click.secho("   Some undo actions failed; check these by hand:", fg="yellow")
                for line in report.rollback.failed:
                    click.echo(f"     • {line}")
        click.echo("   Fix the cause and re-run 'hoststack install' to resume.")
    if active_log:
        click.echo(f"   Log:     {active_log}")
    click.echo()

    sys.exit(report.exit_code)


@cli.command()
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Skip the confirmation prompt.")
@click.option("--keep-firewall", is_flag=True, help="Leave the stack's ufw rules in place.")
@click.option("--keep-certs", is_flag=True, help="Leave acme.sh and the certificates it issued.")
@click.option("--backup", is_flag=True, help="Copy the data directory aside before removing it.")
@click.pass_context
def uninstall(
    ctx: click.Context, assume_yes: bool, keep_firewall: bool, keep_certs: bool, backup: bool,
) -> None:
    """Remove the stack from this host. The access port stays allowed."""
    from hoststack.core.engine.step import ClickPrompter
    from hoststack.core.models.state import RunStatus
    from hoststack.core.use_cases.uninstall import run_uninstall

    debug = ctx.obj.get("debug", False)
    active_log = setup_logging(
        level=resolve_level(debug),
        log_file=resolve_log_file(ctx.obj.get("log_file")) or None,
        quiet_third_party=not debug,
    )

    result = run_uninstall(
        ClickPrompter(),
        config_path=ctx.obj.get("config_path"),
        assume_yes=assume_yes,
        keep_firewall=keep_firewall,
        keep_certs=keep_certs,
        backup=backup,
    )

    click.echo()
    if result.status == RunStatus.NOT_STARTED or (result.error and not result.removed):
        click.secho(f"❌ {result.error}", fg="red")
    elif result.status == RunStatus.ABORTED:
        click.secho("⊘ Uninstall cancelled", fg="yellow")
    else:
        color = "yellow" if result.failed else "green"
        click.secho(f"✅ Uninstalled ({len(result.removed)} item(s) removed)", fg=color, bold=True)
        click.echo(f"   Access port {result.access_port} left allowed")
        if result.backup_path:
            click.echo(f"   Backup: {result.backup_path}")
        if result.failed:
            click.secho("   Not removed; check these by hand:", fg="yellow")
            for line in result.failed:
                click.echo(f"     • {line}")
    if active_log:
        click.echo(f"   Log:    {active_log}")
    click.echo()

    sys.exit(result.exit_code)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show installation milestones and recent runs."""
    from hoststack.core.use_cases.status import get_status

    result = get_status(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    state = result.state
    assert state is not None  # guaranteed after error check above

    click.secho("\n📋 Installation status", fg="cyan", bold=True)
    click.echo(f"   State: {result.state_path}")
    click.echo()
    for flag, done in state.flags().items():
        marker = click.style("✓", fg="green") if done else click.style("·", fg="white")
        click.echo(f"   {marker} {flag.removesuffix('_ready')}")

    if result.runs:
        click.echo()
        click.secho("   Recent runs:", fg="white", bold=True)
        status_color = {"completed": "green", "aborted": "yellow", "rolled_back": "red", "uninstalled": "cyan"}
        for run in result.runs:
            click.echo(f"     {run.started_at}  {run.run_id}  ", nl=False)
            click.secho(run.status, fg=status_color.get(run.status, "white"), nl=False)
            click.echo(f"  ({run.failed_step})" if run.failed_step else "")

    click.echo()


@cli.group()
def config() -> None:
    """Installer configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate install.yml configuration."""
    from hoststack.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.config is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Panel:    https://{result.config.panel_domain}:{result.config.panel.port}")
        click.echo(f"   Profiles: {len(result.config.profiles)}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(1)


if __name__ == "__main__":
    cli()
