"""
Data Protect Toolkit — CLI entrypoint.

Usage:
    dptk --help
    dptk plan --project my-project
    dptk apply --project my-project
    dptk history
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from dptk import __version__
from dptk.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="dptk")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to dptk.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Data Protect Toolkit — deploy secure, audited GCP projects."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("DPTK_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("DPTK_LOG_FILE"),
        log_file_level=os.environ.get("DPTK_LOG_FILE_LEVEL"),
    )


def _load(ctx: click.Context, project_id: str | None, templates_dir: str | None):
    """Config, selected project, config path and templates dir. Exits on error."""
    from dptk.core.config.loader import (
        find_config_file,
        load_config,
        resolve_templates_dir,
        select_project,
    )
    from dptk.core.errors import ConfigError

    config_path: Path | None = ctx.obj.get("config_path") or find_config_file()
    try:
        config = load_config(config_path)
        project = select_project(config, project_id)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)
    return config, project, config_path, resolve_templates_dir(templates_dir, config_path)


def _state_root(config_path: Path | None) -> Path:
    return config_path.parent.resolve() if config_path else Path.cwd()


_project_option = click.option("--project", "-p", "project_id", default=None,
                               help="Project ID (default: the only project in the config).")
_templates_option = click.option("--templates-dir", default=None,
                                 help="Deployment Manager templates root (default: ./deploy).")


# ── plan ────────────────────────────────────────────────────────


@cli.command()
@_project_option
@_templates_option
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(
    ctx: click.Context,
    project_id: str | None,
    templates_dir: str | None,
    as_json: bool,
) -> None:
    """Show the deployment graphs for a project without applying them.

    The audit graph needs the live log sink identity and is only built
    during apply.
    """
    from dptk.core.errors import DeployError
    from dptk.core.services.deployment_plan import build_plan, deployment_names

    config, project, _, tdir = _load(ctx, project_id, templates_dir)
    try:
        graphs = build_plan(
            project, tdir, audit_project_id=config.audit_project_id(project),
        ).items()
    except DeployError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    names = deployment_names(project)
    if as_json:
        click.echo(json.dumps({names[key]: g.to_dict() for key, g in graphs}, indent=2))
        return

    for key, graph in graphs:
        click.secho(f"# {names[key]}", fg="cyan", bold=True)
        click.echo(graph.to_yaml())


# ── apply ───────────────────────────────────────────────────────


@cli.command()
@_project_option
@_templates_option
@click.option("--no-terraform", is_flag=True, help="Skip the Terraform state bucket.")
@click.option("--terraform-workdir", default=None, help="Persistent Terraform working directory.")
@click.option("--keep-owner", is_flag=True, help="Do not remove the deploying user's owner role.")
@click.option("--dry-run", is_flag=True, help="Plan but don't execute.")
@click.option("--mock", is_flag=True, help="Use mock backends (no real execution).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def apply(
    ctx: click.Context,
    project_id: str | None,
    templates_dir: str | None,
    no_terraform: bool,
    terraform_workdir: str | None,
    keep_owner: bool,
    dry_run: bool,
    mock: bool,
    as_json: bool,
) -> None:
    """Apply a project: deployments, Terraform, GKE workloads, binauthz.

    Examples:

        dptk apply --project my-project

        dptk apply --project my-project --no-terraform

        dptk apply --dry-run
    """
    from dptk.adapters.registry import default_backends, mock_backends
    from dptk.core.engine.apply import ApplyOptions, execute, write_audit_entry
    from dptk.core.persistence.audit import AuditWriter

    config, project, config_path, tdir = _load(ctx, project_id, templates_dir)
    options = ApplyOptions(
        templates_dir=tdir,
        enable_terraform=not no_terraform,
        terraform_workdir=Path(terraform_workdir) if terraform_workdir else None,
        remove_owner_user=not keep_owner,
        dry_run=dry_run,
    )
    backends = mock_backends() if mock else default_backends()

    report = execute(config, project, options, backends)
    write_audit_entry(report, AuditWriter(root=_state_root(config_path)))

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        if report.error:
            sys.exit(1)
        return

    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    click.secho(f"\n⚡ {mode_label}apply — {project.id}", fg="cyan", bold=True)
    click.echo()

    for step in report.steps:
        timing = f" ({step.duration_ms}ms)" if step.duration_ms else ""
        if step.status == "ok":
            click.secho(f"   ✓ {step.name}", fg="green", nl=False)
            click.echo(f"{timing}  {step.detail}")
        elif step.status == "failed":
            click.secho(f"   ✗ {step.name}", fg="red", nl=False)
            click.echo(timing)
            for line in (step.error or "").split("\n")[:5]:
                click.echo(f"     │ {line}")
        else:
            click.secho(f"   ⊘ {step.name} ", fg="yellow", nl=False)
            click.echo(f"({step.detail or 'nothing to do'})")

    click.echo()
    if report.error:
        click.secho(f"❌ {report.error}", fg="red", bold=True)
        sys.exit(1)

    click.secho(
        f"   Result: {report.succeeded}/{len(report.steps)} steps applied",
        fg="green",
        bold=True,
    )
    click.echo()


# ── history ─────────────────────────────────────────────────────


@cli.command()
@_project_option
@click.option("-n", "count", default=20, show_default=True, help="Number of entries.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, project_id: str | None, count: int, as_json: bool) -> None:
    """Show recent apply runs from the ledger."""
    from dptk.core.config.loader import find_config_file
    from dptk.core.persistence.audit import AuditWriter

    config_path = ctx.obj.get("config_path") or find_config_file()
    entries = AuditWriter(root=_state_root(config_path)).read_recent(count, project_id)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No apply runs recorded.")
        return

    for entry in entries:
        color = {"ok": "green", "failed": "red"}.get(entry.status, "yellow")
        click.echo(f"   {entry.timestamp[:19]}  {entry.project_id:<30} ", nl=False)
        click.secho(f"{entry.status:<8}", fg=color, nl=False)
        failed = f"  failed at {entry.failed_step}" if entry.failed_step else ""
        click.echo(f" {entry.steps_succeeded}/{entry.steps_total} steps{failed}")


# ── backends ────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def backends(as_json: bool) -> None:
    """Check that gcloud, terraform and kubectl are installed."""
    from dptk.adapters.registry import default_backends

    status = default_backends().status()

    if as_json:
        click.echo(json.dumps(status, indent=2))
        return

    for role, info in status.items():
        if info["available"]:
            click.secho(f"   ✓ {role}", fg="green", nl=False)
        else:
            click.secho(f"   ✗ {role}", fg="red", nl=False)
        click.echo(f"  ({info['name']})")

    if not all(info["available"] for info in status.values()):
        sys.exit(1)


if __name__ == "__main__":
    cli()
