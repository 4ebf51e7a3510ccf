"""CSV exports and run summary logging."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterable

from .models import MailboxState, ReconciliationOutcome, ResultKind, RunSummary

logger = logging.getLogger(__name__)

OUTCOME_COLUMNS = [
    "Row",
    "Identity",
    "RequestedMode",
    "Result",
    "Reason",
    "Before",
    "After",
    "Timestamp",
    "Simulation",
]
STATE_COLUMNS = [
    "Identity",
    "DisplayName",
    "PrimarySmtpAddress",
    "UserPrincipalName",
    "IsDirSynced",
    "IsExchangeCloudManaged",
    "Error",
]


def _write_csv(path: Path, columns: list[str], rows: Iterable[dict[str, str]]) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=columns)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
            written += 1
    return written


def write_outcomes_csv(path: Path, outcomes: Iterable[ReconciliationOutcome]) -> int:
    """Export outcomes in input row order; returns the number of data rows."""
    ordered = sorted(outcomes, key=lambda outcome: outcome.row_number)
    count = _write_csv(path, OUTCOME_COLUMNS, (outcome.as_row() for outcome in ordered))
    logger.info("Wrote %s outcome(s) to %s", count, path)
    return count


def failed_state_row(identity: str, reason: str) -> dict[str, str]:
    """Status row for a mailbox whose flags could not be read."""
    row = dict.fromkeys(STATE_COLUMNS, "")
    row.update(
        Identity=identity,
        IsDirSynced="unknown",
        IsExchangeCloudManaged="unknown",
        Error=reason,
    )
    return row


def write_states_csv(path: Path, states: Iterable[MailboxState | dict[str, str]]) -> int:
    """Export mailbox states; prebuilt rows (see failed_state_row) pass through as-is."""
    rows = (state if isinstance(state, dict) else state.as_row() for state in states)
    count = _write_csv(path, STATE_COLUMNS, rows)
    logger.info("Wrote %s mailbox state(s) to %s", count, path)
    return count


def format_summary(summary: RunSummary) -> str:
    parts = [f"{kind.value}={summary.count(kind)}" for kind in ResultKind]
    return f"total={summary.total} " + " ".join(parts)


def log_summary(summary: RunSummary, simulate: bool = False) -> None:
    prefix = "[SIMULATE] " if simulate else ""
    logger.info("%sRun complete: %s", prefix, format_summary(summary))
    if summary.failed:
        logger.warning("%s mailbox(es) ended in Error; see the export for reasons", summary.failed)
