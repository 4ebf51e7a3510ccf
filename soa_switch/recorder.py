"""Run-scoped, append-only collection of reconciliation outcomes."""

from __future__ import annotations

import threading
from typing import Callable, Iterable

from .models import ReconciliationOutcome, RunSummary

OutcomeListener = Callable[[ReconciliationOutcome], None]


class OutcomeRecorder:
    """Keep every outcome in the order it was recorded.

    Safe to share between worker threads. Listeners are called after each
    append, outside the lock; formatting and persistence live there, not here.
    """

    def __init__(self, listeners: Iterable[OutcomeListener] = ()) -> None:
        self._outcomes: list[ReconciliationOutcome] = []
        self._lock = threading.Lock()
        self._listeners = list(listeners)

    def add_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    def record(self, outcome: ReconciliationOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)
        for listener in self._listeners:
            listener(outcome)

    @property
    def outcomes(self) -> tuple[ReconciliationOutcome, ...]:
        with self._lock:
            return tuple(self._outcomes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)

    def summarize(self) -> RunSummary:
        return RunSummary.from_outcomes(self.outcomes)
