"""
Version-Change Log

Summaries and the per-transition policy deciding which new versions get an
audit entry. Entries are appended with the version row in one commit.
"""

from typing import Dict, List, Optional

from app.config import get_settings
from app.models import Formula, FormulaVersionChange

# Transition kinds that log by default.
LOGGED_TRANSITIONS = {"revert"}


def should_log(transition: str, explicit_rationale: Optional[str] = None) -> bool:
    """
    Decide whether a version-producing transition writes a change record.

    An explicit rationale from the caller always logs. Otherwise only the
    default transitions log, unless uniform logging is switched on.
    """
    if explicit_rationale:
        return True
    if get_settings().log_all_version_changes:
        return True
    return transition in LOGGED_TRANSITIONS


def _signed(mg: int) -> str:
    return f"+{mg}mg" if mg >= 0 else f"{mg}mg"


def summarize(
    previous: Optional[Formula],
    bases: List[Dict],
    additions: List[Dict],
    total_mg: int
) -> str:
    """Short machine summary: ingredient counts and deltas against the previous version."""
    summary = f"{len(bases)} bases, {len(additions)} additions, {total_mg}mg"
    if previous is None:
        return f"Initial formula: {summary}"

    base_delta = len(bases) - len(previous.bases or [])
    addition_delta = len(additions) - len(previous.additions or [])
    mg_delta = total_mg - previous.total_mg
    return (
        f"{summary} (bases {base_delta:+d}, additions {addition_delta:+d}, "
        f"{_signed(mg_delta)} vs v{previous.version})"
    )


def summarize_revert(target: Formula, previous: Optional[Formula]) -> str:
    summary = f"Reverted to version {target.version}"
    if previous is not None:
        summary += f" ({_signed(target.total_mg - previous.total_mg)})"
    return summary


def entry(summary: str, rationale: str) -> FormulaVersionChange:
    return FormulaVersionChange(summary=summary, rationale=rationale)
