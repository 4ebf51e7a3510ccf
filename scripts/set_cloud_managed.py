"""Entry point that switches the Source of Authority of Exchange Online mailboxes."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import UTC, datetime
from pathlib import Path

import requests
from dotenv import load_dotenv
from pydantic import ValidationError

# Ensure project root is on sys.path when running as a script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from soa_switch.config import Settings
from soa_switch.driver import Reconciler, RunOptions
from soa_switch.errors import InputSourceError, RetryExhausted, SetupError
from soa_switch.exchange_client import ExchangeAdminClient
from soa_switch.inputs import read_rows_csv, rows_from_identities
from soa_switch.models import InputRow, Mode
from soa_switch.outcome_store import OutcomeStore
from soa_switch.reconcile import allow_any
from soa_switch.recorder import OutcomeRecorder
from soa_switch.reporting import (
    failed_state_row,
    log_summary,
    write_outcomes_csv,
    write_states_csv,
)
from soa_switch.retry import call_with_retry

load_dotenv()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Enable or disable IsExchangeCloudManaged on directory-synced mailboxes."
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--csv", type=Path, help="CSV file with an Identity column and optional Mode column")
    source.add_argument(
        "--identity",
        action="append",
        help="Mailbox identity (UPN, primary address or alias); repeat for several",
    )
    source.add_argument(
        "--list-synced",
        action="store_true",
        help="Export IsDirSynced/IsExchangeCloudManaged for every directory-synced mailbox",
    )
    parser.add_argument("--mode", type=parse_mode, help="Enable or Disable; overrides SOA_DEFAULT_MODE")
    parser.add_argument("--simulate", action="store_true", help="Report changes without applying them")
    parser.add_argument("--status", action="store_true", help="Only read and export the current flags")
    parser.add_argument("--export", type=Path, help="Write outcomes (or states) to this CSV file")
    parser.add_argument("--max-workers", type=int, help="Process up to N mailboxes concurrently")
    parser.add_argument(
        "--allow-cloud-only",
        action="store_true",
        help="Do not require IsDirSynced=True before switching",
    )
    parser.add_argument("--identity-column", help="CSV column holding the mailbox identity")
    parser.add_argument("--mode-column", help="CSV column holding the per-row mode")
    return parser


def parse_mode(value: str) -> Mode:
    try:
        mode = Mode.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
    if mode is None:
        raise argparse.ArgumentTypeError("Mode must be Enable or Disable")
    return mode


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def load_rows(args: argparse.Namespace, settings: Settings) -> list[InputRow]:
    if args.csv:
        return read_rows_csv(
            args.csv,
            identity_column=args.identity_column,
            mode_column=args.mode_column,
            extra_identity_columns=settings.extra_identity_columns,
        )
    return rows_from_identities(args.identity)


def connect(settings: Settings) -> ExchangeAdminClient:
    try:
        client = ExchangeAdminClient(settings)
    except (ValueError, requests.RequestException) as exc:
        raise SetupError(f"Cannot initialise the Exchange client: {exc}") from exc
    try:
        call_with_retry(client.check_connection, "Connect to Exchange Online", settings.retry_policy)
    except RetryExhausted as exc:
        raise SetupError(f"Cannot reach Exchange Online: {exc}") from exc
    logging.info("Connected to Exchange Online tenant %s", settings.tenant)
    return client


def export_status(client: ExchangeAdminClient, rows: list[InputRow], export: Path | None) -> int:
    """Read-only flag check; returns 1 when any mailbox could not be read."""
    states: list = []
    failed = 0
    for row in rows:
        if not row.identity:
            continue
        try:
            state = call_with_retry(
                lambda: client.fetch_state(row.identity),
                f"Get-Mailbox {row.identity}",
                client.settings.retry_policy,
            )
        except RetryExhausted as exc:
            logging.error("%s", exc)
            states.append(failed_state_row(row.identity, str(exc)))
            failed += 1
            continue
        logging.info(
            "%s IsDirSynced=%s IsExchangeCloudManaged=%s",
            row.identity,
            state.is_directory_synced,
            state.is_cloud_managed,
        )
        states.append(state)
    if export:
        write_states_csv(export, states)
    return 1 if failed else 0


def install_cancel_handler(cancel_event: threading.Event) -> None:
    def _handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logging.warning("Cancellation requested; finishing the current mailbox (Ctrl-C again to abort)")
        cancel_event.set()

    signal.signal(signal.SIGINT, _handler)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings()
    except ValidationError as exc:
        raise SystemExit(f"Invalid configuration:\n{exc}") from exc
    configure_logging(settings.log_level)

    try:
        rows = [] if args.list_synced else load_rows(args, settings)
        client = connect(settings)
    except (InputSourceError, SetupError) as exc:
        logging.error("%s", exc)
        return 2

    if args.list_synced:
        export = args.export or Path("synced_mailboxes.csv")
        try:
            states = list(client.iter_mailboxes(directory_synced_only=True))
        except RetryExhausted as exc:
            logging.error("Mailbox listing failed, nothing written to %s: %s", export, exc)
            return 1
        write_states_csv(export, states)
        return 0

    if args.status:
        return export_status(client, rows, args.export)

    options = RunOptions.from_settings(
        settings,
        simulate_only=True if args.simulate else None,
        default_mode=args.mode,
        max_workers=args.max_workers,
        eligibility=allow_any if args.allow_cloud_only else None,
    )
    cancel_event = threading.Event()
    install_cancel_handler(cancel_event)

    recorder = OutcomeRecorder()
    reconciler = Reconciler(client, options, recorder, cancel_event)
    summary = reconciler.run(rows)

    if settings.outcome_history_db:
        run_id = datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%S%fZ")
        OutcomeStore(settings.outcome_history_db, run_id).record_run(recorder.outcomes)
    if args.export:
        write_outcomes_csv(args.export, recorder.outcomes)

    log_summary(summary, simulate=options.simulate_only)
    if cancel_event.is_set():
        return 130
    return 1 if summary.failed else 0


if __name__ == "__main__":
    sys.exit(main())
