"""Typer commands: plan, apply, destroy, refresh, drift, validate and graph."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

import typer

from cloud_provisioner.cli import app
from cloud_provisioner.cli.errors import handle_error

if TYPE_CHECKING:
    from cloud_provisioner.config.schema import Config
    from cloud_provisioner.engine.types import ApplyResult, Plan, ResourceChange

DEFAULT_CONFIG = Path("provisioner.yaml")

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Topology file to read."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Plain output without ANSI colors."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Apply without asking for confirmation."),
]

NoRefresh = Annotated[
    bool,
    typer.Option("--no-refresh", help="Trust recorded state instead of reading remote objects."),
]

Parallelism = Annotated[
    int | None,
    typer.Option("--parallelism", "-p", min=1, help="Maximum concurrent operations."),
]


def _use_color(no_color: bool) -> bool:
    return not no_color and not os.environ.get("NO_COLOR")


def _approve(question: str, *, declined: str) -> None:
    """Ask *question*; anything but yes exits with status 1."""
    try:
        approved = typer.confirm(question)
    except typer.Abort:
        approved = False
    if not approved:
        typer.echo(declined, err=True)
        raise typer.Exit(1)


def _show_plan(plan_obj: Plan, *, color: bool) -> None:
    from cloud_provisioner.cli.formatting import format_plan, format_plan_summary

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))
    typer.echo()


def _run_with_progress(
    plan_obj: Plan, cfg: Config, *, color: bool, parallelism: int | None
) -> ApplyResult:
    """Apply *plan_obj* under a progress bar, one line per finished instance."""
    from rich.console import Console
    from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

    from cloud_provisioner.cli.formatting import _ACTION_STYLES
    from cloud_provisioner.config import apply

    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=Console(no_color=not color),
    ) as bar:
        task = bar.add_task("Applying", total=len(plan_obj.actionable()))

        def on_progress(change: ResourceChange, event: Literal["start", "done"]) -> None:
            verbs = _ACTION_STYLES[change.action.value]
            if event == "start":
                bar.update(task, description=f"{change.address}: {verbs.progress_verb}...")
                return
            bar.console.print(f"  {change.address}: {verbs.done_verb}")
            bar.advance(task)

        return apply(plan_obj, cfg, progress=on_progress, parallelism=parallelism)


def _print_result(result: ApplyResult, *, color: bool) -> None:
    from cloud_provisioner.cli.formatting import format_apply_result, format_outputs
    from cloud_provisioner.engine.types import RunOutcome

    typer.echo()
    typer.echo(format_apply_result(result, color=color))
    outputs = format_outputs(result.outputs)
    if outputs:
        typer.echo()
        typer.echo(outputs)
    if result.outcome != RunOutcome.SUCCESS:
        raise typer.Exit(1)


def _execute(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    parallelism: int | None,
    question: str,
    nothing_to_do: str,
) -> None:
    """Run an apply or destroy plan end to end.

    Exit status is 0 when the plan is empty or every instance succeeded and
    1 when the user declines or any instance did not succeed.
    """
    from cloud_provisioner.cli.formatting import has_actionable_changes

    if not has_actionable_changes(plan_obj):
        typer.echo(nothing_to_do)
        raise typer.Exit(0)

    _show_plan(plan_obj, color=color)
    if not auto_approve:
        _approve(question, declined="Apply canceled.")

    try:
        result = _run_with_progress(plan_obj, cfg, color=color, parallelism=parallelism)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    _print_result(result, color=color)


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    destroy: Annotated[
        bool,
        typer.Option("--destroy", help="Plan the destruction of all managed resources."),
    ] = False,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Show changes required by the current configuration.

    Exits with 0 when there is nothing to do and 2 when the plan has changes.
    """
    from cloud_provisioner.cli.formatting import (
        format_batches,
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )
    from cloud_provisioner.config import load
    from cloud_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(cfg, destroy=destroy, refresh=not no_refresh)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    if has_actionable_changes(plan_obj):
        typer.echo(format_batches(plan_obj, color=color))
        typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))

    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")

    if has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    parallelism: Parallelism = None,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Apply the changes required by the current configuration."""
    from cloud_provisioner.config import load
    from cloud_provisioner.config import plan as plan_fn
    from cloud_provisioner.engine.types import Plan

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = (
            Plan.load(plan_file) if plan_file is not None else plan_fn(cfg, refresh=not no_refresh)
        )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _execute(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        parallelism=parallelism,
        question="Do you want to apply these changes?",
        nothing_to_do="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    parallelism: Parallelism = None,
    no_color: NoColor = False,
) -> None:
    """Destroy all managed resources."""
    from cloud_provisioner.config import load
    from cloud_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(cfg, destroy=True)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _execute(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        parallelism=parallelism,
        question="Do you really want to destroy all resources?",
        nothing_to_do="No resources to destroy.",
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Refresh state from the remote API."""
    from cloud_provisioner.cli.formatting import changes_summary, format_changes, format_plan_summary
    from cloud_provisioner.config import load, save_state
    from cloud_provisioner.config import refresh as refresh_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        changes, state = refresh_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not changes:
        typer.echo("No changes. State is up-to-date with the remote API.")
        raise typer.Exit(0)

    typer.echo(format_changes(changes, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(changes), color=color, header="Refresh"))
    typer.echo()

    if not auto_approve:
        _approve("Do you want to update the state file?", declined="Refresh canceled.")

    try:
        save_state(cfg, state)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    count = len(state.resources)
    typer.echo(f"State refreshed. {count} resource{'s' if count != 1 else ''} tracked.")


@app.command()
def drift(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Show drift between state and the remote API."""
    from cloud_provisioner.cli.formatting import format_changes
    from cloud_provisioner.config import drift as drift_fn
    from cloud_provisioner.config import load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        changes = drift_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not changes:
        typer.echo("No drift detected. State is up-to-date with the remote API.")
        raise typer.Exit(0)

    typer.echo("Drift detected:\n")
    typer.echo(format_changes(changes, color=color))


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Validate the configuration file."""
    from cloud_provisioner.cli.formatting import styler
    from cloud_provisioner.config import load
    from cloud_provisioner.config import validate as validate_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        batches = validate_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    count = sum(len(b) for b in batches)
    typer.echo(
        styler(color)(
            f"Configuration is valid. {count} instance{'s' if count != 1 else ''}.", fg="green"
        )
    )


@app.command()
def graph(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Print the instance dependency graph as execution batches."""
    from cloud_provisioner.cli.formatting import format_graph
    from cloud_provisioner.config import graph as graph_fn
    from cloud_provisioner.config import load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        batches = graph_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_graph(batches))
