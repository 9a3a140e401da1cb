"""Rich rendering for GovJourney CLI output.

Each helper prints one kind of result (an artefact summary, a policy
evaluation, a journey graph, the resolved settings) to the shared console.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from govjourney.artefacts.schema import (
    PolicyRuleset,
    StateInstructions,
    StateModelDefinition,
)

console = Console(highlight=False)

_MAX_WIDTH = 80


def _width() -> int:
    return min(console.width, _MAX_WIDTH)


def _panel(title: str, items: Dict[str, str], border_style: str = "dim") -> None:
    body = "\n".join(f"[bold]{k}:[/] {v}" for k, v in items.items())
    console.print()
    console.print(
        Panel(body, title=title, title_align="left", border_style=border_style,
              width=_width(), padding=(0, 1))
    )


def _table(title: str, columns: list[str], rows: list[list[str]]) -> None:
    table = Table(
        title=title,
        title_style="bold",
        header_style="bold dim",
        border_style="dim",
        width=_width(),
        padding=(0, 1),
    )
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*row)
    console.print()
    console.print(table)


def error(msg: str, hint: Optional[str] = None) -> None:
    console.print(f"  [red]✗[/] {msg}", style="bold red")
    if hint:
        console.print(f"    [dim]{hint}[/]")


def warning(msg: str) -> None:
    console.print(f"  [yellow]![/] {msg}")


def artefact_summary(kind: str, artefact: Any) -> Dict[str, str]:
    """Headline facts about a loaded artefact, keyed by display label."""
    if kind == "manifest":
        return {
            "Id": artefact.id,
            "Name": artefact.name,
            "Department": artefact.department,
            "Version": artefact.version,
            "Required fields": str(
                len(artefact.input_schema.required) if artefact.input_schema else 0
            ),
        }
    if kind == "policy":
        return {
            "Id": artefact.id or "-",
            "Version": artefact.version,
            "Rules": str(len(artefact.rules)),
            "Edge cases": str(len(artefact.edge_cases)),
        }
    if kind == "state-model":
        return {
            "Id": artefact.id or "-",
            "Version": artefact.version,
            "Initial state": artefact.initial_state.id,
            "States": str(len(artefact.states)),
            "Transitions": str(len(artefact.transitions)),
        }
    if kind == "consent":
        return {
            "Id": artefact.id or "-",
            "Version": artefact.version,
            "Grants": str(len(artefact.grants)),
            "Required": str(sum(1 for g in artefact.grants if g.required)),
        }
    return {
        "Version": artefact.version,
        "States with instructions": str(len(artefact.instructions)),
        "Forced transitions": str(len(artefact.forced_transitions)),
        "Auto transitions": str(len(artefact.auto_transitions)),
    }


def artefact_panel(kind: str, artefact: Any) -> None:
    """Green-ticked summary of an artefact that passed validation."""
    _panel(f"✓ Valid {kind}", artefact_summary(kind, artefact))
    if isinstance(artefact, PolicyRuleset):
        operator_warnings(artefact)


def operator_warnings(ruleset: PolicyRuleset) -> None:
    """Flag rules whose operator the evaluator will always fail."""
    for rule_id, operator in ruleset.unknown_operators():
        warning(f"Rule {rule_id} uses unknown operator '{operator}' and can never pass")


def policy_result(result: Any) -> None:
    """
    Rules table, any edge cases, then the verdict.

    ``result`` is a ``PolicyResult``; the border is green when eligible.
    """
    rows = [[r.id, "[green]pass[/]", ""] for r in result.passed]
    rows += [[r.id, "[red]fail[/]", r.reason_if_failed] for r in result.failed]
    if rows:
        _table("Rules", ["Rule", "Result", "Reason"], rows)
    else:
        console.print("  [dim]Ruleset has no rules[/]")

    for edge_case in result.edge_cases:
        warning(f"Edge case {edge_case.id}: {edge_case.description or edge_case.detection}")

    _panel(
        "Eligible" if result.eligible else "Not eligible",
        {
            "Passed": str(len(result.passed)),
            "Failed": str(len(result.failed)),
            "Edge cases": str(len(result.edge_cases)),
            "Explanation": result.explanation,
        },
        border_style="green" if result.eligible else "red",
    )


def policy_result_json(result: Any) -> None:
    payload = json.dumps(result.to_dict(), indent=2, default=str)
    console.print()
    console.print(
        Panel(Syntax(payload, "json", theme="ansi_dark"), title="Evaluation",
              title_align="left", border_style="dim", width=_width(), padding=(0, 1))
    )


def journey_graph(
    model: StateModelDefinition,
    instructions: Optional[StateInstructions] = None,
    name: str = "",
) -> None:
    """States and transitions, plus forced/auto transitions when instructions are given."""
    console.print()
    console.print(Text.assemble((model.id or name, "bold"), (f"  v{model.version}", "dim")))

    state_rows: list[list[str]] = []
    for state in model.states:
        flags = []
        if state.is_initial:
            flags.append("[green]initial[/]")
        if state.is_terminal:
            flags.append("[blue]terminal[/]")
        if state.receipt:
            flags.append("[cyan]receipt[/]")
        state_rows.append([state.id, ", ".join(flags) if flags else "-"])
    _table("States", ["State", "Type"], state_rows)

    if model.transitions:
        _table(
            "Transitions",
            ["From", "Trigger", "To"],
            [[t.from_state, t.trigger or "-", f"→ {t.to_state}"] for t in model.transitions],
        )

    if instructions is None:
        return

    if instructions.forced_transitions:
        _table(
            "Forced transitions",
            ["State", "Trigger"],
            [[s, t] for s, t in instructions.forced_transitions.items()],
        )
    if instructions.auto_transitions:
        _table(
            "Auto transitions",
            ["From", "Trigger", "Pattern"],
            [[a.from_state, a.trigger, a.pattern] for a in instructions.auto_transitions],
        )

    for state_id in instructions.instructions:
        if model.get_state(state_id) is None:
            warning(f"Instructions given for undeclared state: {state_id}")


def settings_panel(settings: Any) -> None:
    """Resolved ``JourneySettings`` followed by a confirmation line."""
    _panel(
        "GovJourney Configuration",
        {
            "Model": settings.llm.model,
            "Max iterations": str(settings.orchestrator.max_iterations),
            "Next fields shown": str(settings.orchestrator.next_fields_limit),
            "Default state": settings.orchestrator.default_state,
            "Failure threshold": str(settings.handoff.failure_threshold),
            "Reconnect attempts": str(settings.tools.reconnect_attempts),
            "Tracing": settings.otel.exporter_type if settings.otel.enabled else "disabled",
            "Debug": "on" if settings.debug else "off",
        },
    )
    console.print("  [green]✓[/] Configuration loaded")


def version_line(version: str) -> None:
    console.print(Text.assemble(("GovJourney", "bold"), (f" v{version}", "dim")))
