"""Typed containers shared across the reconciliation run."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from .utils import format_flag, isoformat_utc


class Mode(str, Enum):
    """Requested Source of Authority for a mailbox."""

    ENABLE = "Enable"
    DISABLE = "Disable"

    @property
    def target_value(self) -> bool:
        """Value IsExchangeCloudManaged must end up with."""
        return self is Mode.ENABLE

    @classmethod
    def parse(cls, value: str | None) -> Optional["Mode"]:
        """Case-insensitive lookup; blank yields None, anything else raises ValueError."""
        if value is None or not value.strip():
            return None
        lowered = value.strip().lower()
        for mode in cls:
            if mode.value.lower() == lowered:
                return mode
        raise ValueError(f"Unrecognized mode '{value.strip()}' (expected Enable or Disable)")


class ResultKind(str, Enum):
    UPDATED = "Updated"
    SKIPPED_NOT_ELIGIBLE = "SkippedNotEligible"
    SKIPPED_ALREADY_CORRECT = "SkippedAlreadyCorrect"
    SKIPPED_INVALID_INPUT = "SkippedInvalidInput"
    SIMULATED_CHANGE = "SimulatedChange"
    ERROR = "Error"


@dataclass(frozen=True)
class InputRow:
    """One raw row from the input source, before validation."""

    identity: str | None
    mode: str | None = None


@dataclass(frozen=True)
class MailboxRef:
    """A validated target: which mailbox and which way to flip it."""

    identity: str
    desired_mode: Mode
    row_number: int = 0


@dataclass(frozen=True)
class MailboxState:
    """Snapshot of the flags read from Exchange; None means the field was missing."""

    identity: str
    is_directory_synced: bool | None
    is_cloud_managed: bool | None
    display_name: str | None = None
    primary_smtp_address: str | None = None
    user_principal_name: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def as_row(self) -> dict[str, str]:
        return {
            "Identity": self.identity,
            "DisplayName": self.display_name or "",
            "PrimarySmtpAddress": self.primary_smtp_address or "",
            "UserPrincipalName": self.user_principal_name or "",
            "IsDirSynced": format_flag(self.is_directory_synced),
            "IsExchangeCloudManaged": format_flag(self.is_cloud_managed),
            "Error": "",
        }


@dataclass(frozen=True)
class ReconciliationOutcome:
    """Result of processing one input row."""

    identity: str
    requested_mode: Mode | None
    result_kind: ResultKind
    reason_text: str
    before: bool | None
    after: bool | None
    timestamp: datetime
    simulation: bool
    row_number: int = 0

    def as_row(self) -> dict[str, str]:
        """Flatten for CSV export."""
        return {
            "Row": str(self.row_number),
            "Identity": self.identity,
            "RequestedMode": self.requested_mode.value if self.requested_mode else "",
            "Result": self.result_kind.value,
            "Reason": self.reason_text,
            "Before": format_flag(self.before),
            "After": format_flag(self.after),
            "Timestamp": isoformat_utc(self.timestamp),
            "Simulation": str(self.simulation),
        }


@dataclass(frozen=True)
class RunSummary:
    """Outcome counts per kind for one run."""

    counts: dict[ResultKind, int]
    total: int

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[ReconciliationOutcome]) -> "RunSummary":
        tally = Counter(outcome.result_kind for outcome in outcomes)
        counts = {kind: tally.get(kind, 0) for kind in ResultKind}
        return cls(counts=counts, total=sum(counts.values()))

    def count(self, kind: ResultKind) -> int:
        return self.counts.get(kind, 0)

    @property
    def failed(self) -> int:
        return self.count(ResultKind.ERROR)
