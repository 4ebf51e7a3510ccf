"""SQLite-backed history of reconciliation outcomes."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

import sqlite_utils

from .models import ReconciliationOutcome
from .utils import isoformat_utc


class OutcomeStore:
    """Persist every outcome per run so earlier runs can be audited."""

    TABLE = "reconciliation_outcomes"

    def __init__(self, db_path: Path, run_id: str) -> None:
        self.db_path = db_path
        self.run_id = run_id
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db = sqlite_utils.Database(str(db_path))
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.db[self.TABLE].create(
            {
                "run_id": str,
                "row_number": int,
                "identity": str,
                "requested_mode": str,
                "result_kind": str,
                "reason_text": str,
                "before": str,
                "after": str,
                "simulation": int,
                "recorded_at": str,
            },
            pk=("run_id", "row_number"),
            if_not_exists=True,
        )

    def record(self, outcome: ReconciliationOutcome) -> None:
        """Upsert one outcome; usable directly as a recorder listener."""
        self.db[self.TABLE].upsert(
            {
                "run_id": self.run_id,
                "row_number": outcome.row_number,
                "identity": outcome.identity,
                "requested_mode": outcome.requested_mode.value if outcome.requested_mode else None,
                "result_kind": outcome.result_kind.value,
                "reason_text": outcome.reason_text,
                "before": None if outcome.before is None else str(outcome.before),
                "after": None if outcome.after is None else str(outcome.after),
                "simulation": int(outcome.simulation),
                "recorded_at": isoformat_utc(outcome.timestamp),
            },
            pk=("run_id", "row_number"),
        )

    def record_run(self, outcomes: Iterable[ReconciliationOutcome]) -> None:
        for outcome in outcomes:
            self.record(outcome)

    def last_outcome(self, identity: str) -> Optional[dict]:
        """Most recent stored outcome for an identity, case-insensitive."""
        rows = list(
            self.db[self.TABLE].rows_where(
                "lower(identity) = lower(?)",
                [identity],
                order_by="recorded_at desc",
                limit=1,
            )
        )
        return rows[0] if rows else None
