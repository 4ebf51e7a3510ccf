"""Decide what, if anything, has to happen to a mailbox."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

from .models import MailboxState, Mode
from .utils import format_flag

# Returns None when the mailbox may be switched, otherwise the reason it may not.
EligibilityRule = Callable[[MailboxState], Optional[str]]


@dataclass(frozen=True)
class Ineligible:
    reason: str


@dataclass(frozen=True)
class NoOpAlreadyCorrect:
    pass


@dataclass(frozen=True)
class Apply:
    target_value: bool


Decision = Union[Ineligible, NoOpAlreadyCorrect, Apply]


def require_directory_synced(state: MailboxState) -> str | None:
    """Only mailboxes synced from on-premises AD have an SOA to move."""
    if state.is_directory_synced is True:
        return None
    return f"IsDirSynced is {format_flag(state.is_directory_synced)}"


def allow_any(state: MailboxState) -> str | None:
    return None


def decide(
    state: MailboxState,
    desired_mode: Mode,
    eligibility: EligibilityRule = require_directory_synced,
) -> Decision:
    """Compare the current flag with the requested mode.

    An unknown cloud-managed flag on an eligible mailbox is treated as needing
    the change, since Set-Mailbox is safe to issue either way.
    """
    reason = eligibility(state)
    if reason is not None:
        return Ineligible(reason)

    target = desired_mode.target_value
    if state.is_cloud_managed is target:
        return NoOpAlreadyCorrect()
    return Apply(target)
