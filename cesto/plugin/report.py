"""
Report rendering.

Formats a run's outcomes for the terminal: successes (with changelogs)
first, failures after, then a one-line summary.
"""

from cesto.plugin.manager import Action, Outcome, OutcomeStatus, Report

_DONE = {
    Action.INSTALL: "installed",
    Action.UPDATE: "updated",
    Action.REMOVE: "removed",
}

_VERB = {
    Action.INSTALL: "install",
    Action.UPDATE: "update",
    Action.REMOVE: "remove",
    Action.ACTIVATE: "activate",
    Action.CHECK: "locate",
}


def render_report(report: Report) -> str:
    """
    Render a report as plain text.

    Args:
        report: Report returned by WorkerManager.run

    Returns:
        Multi-line text, always ending with a newline
    """
    successes = [
        outcome for outcome in report.outcomes if outcome.status == OutcomeStatus.SUCCESS
    ]
    unchanged = [
        outcome for outcome in report.outcomes if outcome.status == OutcomeStatus.NO_CHANGE
    ]
    failures = [outcome for outcome in report.outcomes if outcome.failed]

    if not successes and not failures:
        return "Everything up to date.\n"

    lines: list[str] = []
    for outcome in successes:
        lines.extend(_success_lines(outcome))

    if failures:
        if lines:
            lines.append("")
        lines.append("Some plugins could not be updated:")
        for outcome in failures:
            lines.append(
                f"  {outcome.name}: could not {_VERB[outcome.action]}: {outcome.failure.message}"
            )

    lines.append("")
    lines.append(
        f"{len(successes)} changed, {len(unchanged)} unchanged, {len(failures)} failed"
    )
    return "\n".join(lines) + "\n"


def _success_lines(outcome: Outcome) -> list[str]:
    lines = [f"{outcome.name:>20} {_DONE[outcome.action]}"]
    lines.extend(f"{'':>20}   {entry}" for entry in outcome.changelog)
    return lines
