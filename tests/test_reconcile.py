"""Tests for the reconciliation decision."""

import pytest

from soa_switch.models import MailboxState, Mode
from soa_switch.reconcile import (
    Apply,
    Ineligible,
    NoOpAlreadyCorrect,
    allow_any,
    decide,
    require_directory_synced,
)


def state(synced, managed):
    return MailboxState(identity="user@x.com", is_directory_synced=synced, is_cloud_managed=managed)


class TestDecide:
    @pytest.mark.parametrize("mode", list(Mode))
    @pytest.mark.parametrize("managed", [True, False, None])
    def test_unsynced_mailboxes_are_always_ineligible(self, mode, managed):
        decision = decide(state(False, managed), mode)
        assert isinstance(decision, Ineligible)
        assert decision.reason == "IsDirSynced is False"

    def test_unknown_sync_state_is_ineligible(self):
        decision = decide(state(None, False), Mode.ENABLE)
        assert decision == Ineligible("IsDirSynced is unknown")

    def test_enable_when_already_cloud_managed(self):
        assert decide(state(True, True), Mode.ENABLE) == NoOpAlreadyCorrect()

    def test_disable_when_already_on_premises(self):
        assert decide(state(True, False), Mode.DISABLE) == NoOpAlreadyCorrect()

    def test_enable_needs_apply(self):
        assert decide(state(True, False), Mode.ENABLE) == Apply(True)

    def test_disable_needs_apply(self):
        assert decide(state(True, True), Mode.DISABLE) == Apply(False)

    def test_unknown_cloud_flag_is_applied(self):
        assert decide(state(True, None), Mode.DISABLE) == Apply(False)

    def test_allow_any_skips_dirsync_gate(self):
        assert decide(state(False, False), Mode.ENABLE, eligibility=allow_any) == Apply(True)

    def test_custom_rule_reason_is_kept(self):
        rule = lambda s: "shared mailboxes are excluded"  # noqa: E731
        assert decide(state(True, False), Mode.ENABLE, rule) == Ineligible(
            "shared mailboxes are excluded"
        )

    def test_same_inputs_same_decision(self):
        snapshot = state(True, False)
        assert decide(snapshot, Mode.ENABLE) == decide(snapshot, Mode.ENABLE)


def test_require_directory_synced_passes_synced_mailbox():
    assert require_directory_synced(state(True, False)) is None
