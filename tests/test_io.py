"""Tests for CSV input, CSV export and the SQLite outcome history."""

import csv
from datetime import UTC, datetime

import pytest

from soa_switch.errors import InputSourceError
from soa_switch.inputs import read_rows_csv, rows_from_identities
from soa_switch.models import (
    InputRow,
    MailboxState,
    Mode,
    ReconciliationOutcome,
    ResultKind,
    RunSummary,
)
from soa_switch.outcome_store import OutcomeStore
from soa_switch.reporting import (
    OUTCOME_COLUMNS,
    failed_state_row,
    format_summary,
    write_outcomes_csv,
    write_states_csv,
)


def make_outcome(row, identity, kind, ts):
    return ReconciliationOutcome(
        identity=identity,
        requested_mode=Mode.ENABLE,
        result_kind=kind,
        reason_text="because",
        before=False,
        after=True,
        timestamp=ts,
        simulation=False,
        row_number=row,
    )


class TestReadRows:
    def test_detects_columns_case_insensitively(self, tmp_path):
        path = tmp_path / "input.csv"
        path.write_text("userprincipalname,ACTION\na@x.com,Enable\n,\n b@x.com ,\n", encoding="utf-8")

        rows = read_rows_csv(path)

        assert rows == [
            InputRow("a@x.com", "Enable"),
            InputRow("", ""),
            InputRow("b@x.com", ""),
        ]

    def test_bom_and_missing_mode_column(self, tmp_path):
        path = tmp_path / "input.csv"
        path.write_bytes("\ufeffIdentity\nalias1\n".encode("utf-8"))
        assert read_rows_csv(path) == [InputRow("alias1", None)]

    def test_explicit_columns(self, tmp_path):
        path = tmp_path / "input.csv"
        path.write_text("Mail,Wanted\nc@x.com,Disable\n", encoding="utf-8")
        rows = read_rows_csv(path, identity_column="mail", mode_column="Wanted")
        assert rows == [InputRow("c@x.com", "Disable")]

    def test_extra_identity_columns(self, tmp_path):
        path = tmp_path / "input.csv"
        path.write_text("Mail\nd@x.com\n", encoding="utf-8")
        assert read_rows_csv(path, extra_identity_columns=["Mail"]) == [InputRow("d@x.com", None)]

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputSourceError, match="does not exist"):
            read_rows_csv(tmp_path / "nope.csv")

    def test_missing_identity_column(self, tmp_path):
        path = tmp_path / "input.csv"
        path.write_text("Name\nAlice\n", encoding="utf-8")
        with pytest.raises(InputSourceError, match="no identity column"):
            read_rows_csv(path)

    def test_rows_from_identities(self):
        assert rows_from_identities([" a@x.com", "b"], "Disable") == [
            InputRow("a@x.com", "Disable"),
            InputRow("b", "Disable"),
        ]


class TestExports:
    def test_write_outcomes_csv(self, tmp_path):
        ts = datetime(2026, 5, 1, tzinfo=UTC)
        outcomes = [
            make_outcome(1, "a@x.com", ResultKind.UPDATED, ts),
            make_outcome(2, "b@x.com", ResultKind.ERROR, ts),
        ]
        path = tmp_path / "out" / "outcomes.csv"

        assert write_outcomes_csv(path, outcomes) == 2

        with path.open(newline="", encoding="utf-8") as handle:
            reader = csv.DictReader(handle)
            assert reader.fieldnames == OUTCOME_COLUMNS
            records = list(reader)
        assert [r["Identity"] for r in records] == ["a@x.com", "b@x.com"]
        assert records[1]["Result"] == "Error"

    def test_outcomes_export_follows_input_order(self, tmp_path):
        ts = datetime(2026, 5, 1, tzinfo=UTC)
        completed = [
            make_outcome(3, "c@x.com", ResultKind.UPDATED, ts),
            make_outcome(1, "a@x.com", ResultKind.UPDATED, ts),
            make_outcome(2, "b@x.com", ResultKind.ERROR, ts),
        ]
        path = tmp_path / "outcomes.csv"

        write_outcomes_csv(path, completed)

        with path.open(newline="", encoding="utf-8") as handle:
            assert [r["Row"] for r in csv.DictReader(handle)] == ["1", "2", "3"]

    def test_failed_state_rows_are_exported(self, tmp_path):
        path = tmp_path / "states.csv"
        rows = [MailboxState("a@x.com", True, True), failed_state_row("ghost", "not found")]

        assert write_states_csv(path, rows) == 2

        with path.open(newline="", encoding="utf-8") as handle:
            records = list(csv.DictReader(handle))
        assert records[1]["Identity"] == "ghost"
        assert records[1]["Error"] == "not found"
        assert records[1]["IsExchangeCloudManaged"] == "unknown"

    def test_write_states_csv(self, tmp_path):
        path = tmp_path / "states.csv"
        states = [MailboxState("a@x.com", True, None, display_name="A")]
        assert write_states_csv(path, states) == 1
        text = path.read_text(encoding="utf-8")
        assert "a@x.com,A,,,True,unknown" in text

    def test_format_summary(self):
        summary = RunSummary.from_outcomes(
            [make_outcome(1, "a", ResultKind.UPDATED, datetime.now(tz=UTC))]
        )
        line = format_summary(summary)
        assert line.startswith("total=1 ")
        assert "Updated=1" in line
        assert "Error=0" in line


class TestOutcomeStore:
    def test_records_and_finds_latest(self, tmp_path):
        db_path = tmp_path / "history" / "outcomes.db"
        first = OutcomeStore(db_path, "run-1")
        first.record_run([make_outcome(1, "A@x.com", ResultKind.ERROR, datetime(2026, 1, 1, tzinfo=UTC))])
        second = OutcomeStore(db_path, "run-2")
        second.record_run([make_outcome(1, "a@x.com", ResultKind.UPDATED, datetime(2026, 1, 2, tzinfo=UTC))])

        latest = second.last_outcome("a@X.com")

        assert latest["run_id"] == "run-2"
        assert latest["result_kind"] == "Updated"
        assert second.db[OutcomeStore.TABLE].count == 2

    def test_rerecording_a_row_upserts(self, tmp_path):
        store = OutcomeStore(tmp_path / "o.db", "run")
        ts = datetime(2026, 1, 1, tzinfo=UTC)
        store.record(make_outcome(1, "a@x.com", ResultKind.ERROR, ts))
        store.record(make_outcome(1, "a@x.com", ResultKind.UPDATED, ts))
        assert store.db[OutcomeStore.TABLE].count == 1
        assert store.last_outcome("a@x.com")["result_kind"] == "Updated"

    def test_unknown_identity(self, tmp_path):
        assert OutcomeStore(tmp_path / "o.db", "run").last_outcome("nobody") is None
