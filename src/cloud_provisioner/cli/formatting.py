"""Plan and apply output rendering (Terraform-style)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from cloud_provisioner.engine.references import is_encoded_unknown
from cloud_provisioner.engine.types import Action, InstanceStatus, RunOutcome

if TYPE_CHECKING:
    from collections.abc import Callable

    from cloud_provisioner.engine.types import ApplyResult, Plan, PlanStep, ResourceChange

UNKNOWN_TEXT = "(known after apply)"


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    progress_verb: str
    done_verb: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+", "Creating", "Creation complete"),
    "update": _ActionStyle("yellow", "~", "Updating", "Update complete"),
    "replace": _ActionStyle("magenta", "-/+", "Replacing", "Replacement complete"),
    "destroy": _ActionStyle("red", "-", "Destroying", "Destroy complete"),
    "no-op": _ActionStyle("bright_black", " ", "Cleaning up", "Cleanup complete"),
}

_ACTION_DESC: dict[str, str] = {
    "create": "will be created",
    "update": "will be updated in-place",
    "replace": "must be replaced",
    "destroy": "will be destroyed",
    "no-op": "is up-to-date",
}


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def has_actionable_changes(plan: Plan) -> bool:
    """Return True if the plan has anything to do."""
    return plan.has_changes()


def _align_values(items: dict[str, str]) -> list[tuple[str, str]]:
    """Right-pad keys so ``=`` signs align."""
    if not items:
        return []
    max_key = max(len(k) for k in items)
    return [(k.ljust(max_key), v) for k, v in items.items()]


def _plain(value: Any) -> Any:
    if is_encoded_unknown(value):
        return UNKNOWN_TEXT
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def format_value(value: Any) -> str:
    """Format a value for display in a plan diff block."""
    if is_encoded_unknown(value):
        return UNKNOWN_TEXT
    if isinstance(value, str):
        return f'"{value}"'
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(_plain(value), sort_keys=True)
    return str(value)


# ---------------------------------------------------------------------------
# Plan rendering
# ---------------------------------------------------------------------------


def _change_attrs(change: ResourceChange) -> dict[str, str]:
    """Extract displayable ``key → formatted value`` pairs from a change."""
    if change.action == Action.CREATE and change.planned:
        return {k: format_value(v) for k, v in change.planned.items()}
    if change.action in (Action.UPDATE, Action.REPLACE) and change.diff:
        attrs: dict[str, str] = {}
        for k, d in change.diff.items():
            text = f"{format_value(d['from'])} -> {format_value(d['to'])}"
            if d.get("forces_replacement"):
                text += " # forces replacement"
            attrs[k] = text
        return attrs
    if change.action == Action.DESTROY and change.remote_id:
        return {"id": format_value(change.remote_id)}
    if change.deposed:
        return {"deposed": format_value(change.deposed)}
    return {}


def _description(change: ResourceChange) -> str:
    desc = _ACTION_DESC[change.action.value]
    if change.action == Action.NOOP and change.deposed:
        desc = f"has {len(change.deposed)} deposed object(s) to destroy"
    if change.action == Action.REPLACE and change.replacement:
        desc += f" ({change.replacement.replace('_', '-')})"
    if change.provisional:
        desc += ", pending values known after apply"
    return desc


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a Terraform-style block."""
    style = styler(color)
    action_style = _ACTION_STYLES[change.action.value]
    sc = {"fg": action_style.color}
    symbol = action_style.symbol
    if change.action == Action.REPLACE and change.replacement == "create_before_destroy":
        symbol = "+/-"

    lines = [
        style(f"  # {change.address} {_description(change)}", bold=True, **sc),
        style(f'  {symbol} resource "{change.resource_type}" "{change.name}" {{', **sc),
        *[
            style(f"      {k} = {v}", **sc)
            for k, v in _align_values(_change_attrs(change))
        ],
        style("    }", **sc),
    ]
    return "\n".join(lines)


def format_changes(changes: list[ResourceChange], *, color: bool = True) -> str:
    """Render a list of changes as Terraform-style diff blocks."""
    blocks = [format_change(c, color=color) for c in changes if c.actionable]
    if not blocks:
        return "No changes. Resources are up-to-date."
    return "\n\n".join(blocks)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the full plan output with per-change diff blocks."""
    return format_changes(plan.changes, color=color)


def _step_symbol(step: PlanStep) -> str:
    if step.destroy:
        return "-"
    if step.change.action == Action.REPLACE:
        return "+"
    return _ACTION_STYLES[step.change.action.value].symbol.strip() or "~"


def format_batches(plan: Plan, *, color: bool = True) -> str:
    """Render the execution batches: ``Batch 1: +vpc.main``.

    A replacement shows up twice: ``+`` where the new object is created and
    ``-`` where the old one is destroyed.
    """
    style = styler(color)
    if not plan.batches:
        return "No batches."
    lines = [style("Execution order:", bold=True)]
    for i, batch in enumerate(plan.batch_steps(), start=1):
        entries = ", ".join(f"{_step_symbol(s)}{s.change.address}" for s in batch)
        lines.append(f"  Batch {i}: {entries}")
    return "\n".join(lines)


def format_graph(batches: list[list[str]]) -> str:
    """Render instance batches of the dependency graph."""
    if not batches:
        return "No resources."
    return "\n".join(f"Batch {i}: {', '.join(b)}" for i, b in enumerate(batches, start=1))


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

_PLAN_VERBS = ("to add", "to change", "to destroy")
_APPLY_VERBS = ("added", "changed", "destroyed")
_SUMMARY_COLORS = ("green", "yellow", "red")


def _format_summary(summary: dict[str, int], verbs: tuple[str, ...], *, color: bool) -> str:
    """Build the ``N verb, N verb, N verb`` part of a summary line.

    A replacement counts as one add and one destroy.
    """
    style = styler(color)
    replaced = summary.get("replace", 0)
    counts = (
        summary.get("create", 0) + replaced,
        summary.get("update", 0),
        summary.get("destroy", 0) + replaced,
    )
    parts = [
        style(f"{n} {verb}", fg=fg) if n and color else f"{n} {verb}"
        for n, verb, fg in zip(counts, verbs, _SUMMARY_COLORS, strict=True)
    ]
    return ", ".join(parts)


def changes_summary(changes: list[ResourceChange]) -> dict[str, int]:
    """Count changes by action type."""
    summary: dict[str, int] = {"create": 0, "update": 0, "replace": 0, "destroy": 0}
    for c in changes:
        if c.action != Action.NOOP:
            summary[c.action.value] += 1
    return summary


def format_plan_summary(
    summary: dict[str, int], *, color: bool = True, header: str = "Plan"
) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to destroy.``"""
    return f"{header}: {_format_summary(summary, _PLAN_VERBS, color=color)}."


def format_apply_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Apply complete! Resources: 2 added, 0 changed, 0 destroyed.``"""
    style = styler(color)
    header = style("Apply complete!", fg="green", bold=True)
    return f"{header} Resources: {_format_summary(summary, _APPLY_VERBS, color=color)}."


def format_apply_result(result: ApplyResult, *, color: bool = True) -> str:
    """Render the run outcome: the summary line plus failed/blocked/pending instances."""
    style = styler(color)
    if result.outcome == RunOutcome.SUCCESS and not result.canceled:
        return format_apply_summary(result.summary(), color=color)

    if result.outcome == RunOutcome.ABORTED:
        lines = [style("Apply aborted.", fg="red", bold=True) + " Nothing was changed."]
    else:
        title = "Apply canceled." if result.canceled else "Apply finished with errors."
        lines = [
            style(title, fg="red", bold=True)
            + f" Resources: {_format_summary(result.summary(), _APPLY_VERBS, color=color)}."
        ]
    for status in (InstanceStatus.FAILED, InstanceStatus.BLOCKED, InstanceStatus.PENDING):
        for address in result.with_status(status):
            error = result.outcomes[address].error
            suffix = f": {error}" if error else ""
            lines.append(style(f"  {status.value:<8} {address}{suffix}", fg="red"))
    return "\n".join(lines)


def format_outputs(outputs: dict[str, Any]) -> str:
    if not outputs:
        return ""
    aligned = _align_values({name: format_value(v) for name, v in sorted(outputs.items())})
    return "\n".join(["Outputs:", "", *(f"{k} = {v}" for k, v in aligned)])
