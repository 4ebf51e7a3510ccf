"""Drive a reconciliation run: validate, fetch, decide, apply, record."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Protocol, Sequence

from .config import Settings
from .errors import InvalidInput, RetryExhausted, RunCancelled
from .models import (
    InputRow,
    MailboxRef,
    MailboxState,
    Mode,
    ReconciliationOutcome,
    ResultKind,
    RunSummary,
)
from .reconcile import Apply, EligibilityRule, Ineligible, decide, require_directory_synced
from .recorder import OutcomeRecorder
from .retry import RetryPolicy, call_with_retry
from .utils import utc_now

logger = logging.getLogger(__name__)


class MailboxService(Protocol):
    def fetch_state(self, identity: str) -> MailboxState: ...

    def apply_cloud_managed(self, identity: str, value: bool) -> None: ...


@dataclass(frozen=True)
class RunOptions:
    simulate_only: bool = False
    default_mode: Mode = Mode.ENABLE
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    eligibility: EligibilityRule = require_directory_synced
    max_workers: int = 1

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "RunOptions":
        values = {
            "simulate_only": settings.simulate_only,
            "default_mode": settings.default_mode,
            "retry_policy": settings.retry_policy,
            "eligibility": settings.eligibility,
            "max_workers": settings.max_workers,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


def validate_row(row: InputRow, row_number: int, default_mode: Mode) -> MailboxRef:
    """Turn a raw row into a MailboxRef or raise InvalidInput."""
    identity = (row.identity or "").strip()
    if not identity:
        raise InvalidInput("Identity is empty")
    try:
        mode = Mode.parse(row.mode)
    except ValueError as exc:
        raise InvalidInput(str(exc)) from exc
    return MailboxRef(identity=identity, desired_mode=mode or default_mode, row_number=row_number)


class Reconciler:
    """Process input rows against a mailbox service, one outcome per row."""

    def __init__(
        self,
        service: MailboxService,
        options: RunOptions,
        recorder: OutcomeRecorder | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.service = service
        self.options = options
        self.recorder = recorder if recorder is not None else OutcomeRecorder()
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()

    def run(self, rows: Sequence[InputRow]) -> RunSummary:
        """Process every row (unless cancelled) and return the summary."""
        numbered = list(enumerate(rows, start=1))
        mode = "simulation" if self.options.simulate_only else "live"
        logger.info("Starting %s run over %s row(s)", mode, len(numbered))

        if self.options.max_workers <= 1:
            for row_number, row in numbered:
                if self.cancel_event.is_set():
                    break
                self.recorder.record(self.process(row, row_number))
        else:
            self._run_parallel(numbered)

        if self.cancel_event.is_set():
            logger.warning(
                "Run cancelled after %s of %s row(s)", len(self.recorder), len(numbered)
            )
        return self.recorder.summarize()

    def _run_parallel(self, numbered: Iterable[tuple[int, InputRow]]) -> None:
        def work(row_number: int, row: InputRow) -> None:
            if self.cancel_event.is_set():
                return
            self.recorder.record(self.process(row, row_number))

        with ThreadPoolExecutor(max_workers=self.options.max_workers) as pool:
            futures = [pool.submit(work, row_number, row) for row_number, row in numbered]
            for future in futures:
                future.result()

    def process(self, row: InputRow, row_number: int = 0) -> ReconciliationOutcome:
        """Produce exactly one outcome for one row; never raises for per-item failures."""
        try:
            ref = validate_row(row, row_number, self.options.default_mode)
        except InvalidInput as exc:
            logger.warning("Row %s skipped: %s", row_number, exc)
            return self._outcome(
                identity=(row.identity or "").strip(),
                mode=None,
                kind=ResultKind.SKIPPED_INVALID_INPUT,
                reason=str(exc),
                row_number=row_number,
            )

        try:
            state = self._call(
                lambda: self.service.fetch_state(ref.identity), f"Get-Mailbox {ref.identity}"
            )
        except (RetryExhausted, RunCancelled) as exc:
            logger.error("Could not read %s: %s", ref.identity, exc)
            return self._error(ref, exc)

        decision = decide(state, ref.desired_mode, self.options.eligibility)
        before = state.is_cloud_managed

        if isinstance(decision, Ineligible):
            logger.info("%s is not eligible: %s", ref.identity, decision.reason)
            return self._outcome(
                ref.identity,
                ref.desired_mode,
                ResultKind.SKIPPED_NOT_ELIGIBLE,
                decision.reason,
                row_number=ref.row_number,
                before=before,
                after=before,
            )

        if not isinstance(decision, Apply):
            logger.info("%s already has IsExchangeCloudManaged=%s", ref.identity, before)
            return self._outcome(
                ref.identity,
                ref.desired_mode,
                ResultKind.SKIPPED_ALREADY_CORRECT,
                f"IsExchangeCloudManaged is already {before}",
                row_number=ref.row_number,
                before=before,
                after=before,
            )

        target = decision.target_value
        if self.options.simulate_only:
            logger.info(
                "[SIMULATE] Would set IsExchangeCloudManaged=%s on %s", target, ref.identity
            )
            return self._outcome(
                ref.identity,
                ref.desired_mode,
                ResultKind.SIMULATED_CHANGE,
                f"Would set IsExchangeCloudManaged to {target}",
                row_number=ref.row_number,
                before=before,
                after=target,
            )

        try:
            self._call(
                lambda: self.service.apply_cloud_managed(ref.identity, target),
                f"Set-Mailbox {ref.identity}",
            )
        except (RetryExhausted, RunCancelled) as exc:
            logger.error("Could not update %s: %s", ref.identity, exc)
            return self._error(ref, exc, before=before)

        logger.info("Updated %s: IsExchangeCloudManaged %s -> %s", ref.identity, before, target)
        return self._outcome(
            ref.identity,
            ref.desired_mode,
            ResultKind.UPDATED,
            f"IsExchangeCloudManaged set to {target}",
            row_number=ref.row_number,
            before=before,
            after=target,
        )

    def _call(self, operation, name: str):
        return call_with_retry(
            operation,
            name,
            self.options.retry_policy,
            cancel_event=self.cancel_event,
        )

    def _error(
        self, ref: MailboxRef, exc: Exception, before: bool | None = None
    ) -> ReconciliationOutcome:
        return self._outcome(
            ref.identity,
            ref.desired_mode,
            ResultKind.ERROR,
            str(exc),
            row_number=ref.row_number,
            before=before,
            after=before,
        )

    def _outcome(
        self,
        identity: str,
        mode: Mode | None,
        kind: ResultKind,
        reason: str,
        row_number: int = 0,
        before: bool | None = None,
        after: bool | None = None,
    ) -> ReconciliationOutcome:
        return ReconciliationOutcome(
            identity=identity,
            requested_mode=mode,
            result_kind=kind,
            reason_text=reason,
            before=before,
            after=after,
            timestamp=utc_now(),
            simulation=self.options.simulate_only,
            row_number=row_number,
        )
