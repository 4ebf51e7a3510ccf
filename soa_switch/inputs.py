"""Input row readers: CSV files and identities given on the command line."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterable, Sequence

from .errors import InputSourceError
from .models import InputRow

logger = logging.getLogger(__name__)

IDENTITY_COLUMNS = ("Identity", "UserPrincipalName", "PrimarySmtpAddress", "Email", "Alias")
MODE_COLUMNS = ("Mode", "Action", "DesiredMode")


def _find_column(fieldnames: Sequence[str], candidates: Iterable[str]) -> str | None:
    lookup = {name.strip().lower(): name for name in fieldnames if name}
    for candidate in candidates:
        match = lookup.get(candidate.strip().lower())
        if match:
            return match
    return None


def read_rows_csv(
    path: Path,
    identity_column: str | None = None,
    mode_column: str | None = None,
    extra_identity_columns: Sequence[str] = (),
) -> list[InputRow]:
    """Load every data row of a CSV file, in file order.

    Rows are not validated here; a blank identity still becomes a row so it can
    be reported as invalid input.
    """
    if not path.is_file():
        raise InputSourceError(f"Input file {path} does not exist")

    try:
        with path.open(newline="", encoding="utf-8-sig") as handle:
            reader = csv.DictReader(handle)
            fieldnames = reader.fieldnames or []
            id_col = _find_column(
                fieldnames,
                [identity_column] if identity_column else [*extra_identity_columns, *IDENTITY_COLUMNS],
            )
            if id_col is None:
                raise InputSourceError(
                    f"{path} has no identity column (looked for {', '.join(IDENTITY_COLUMNS)})"
                )
            md_col = _find_column(fieldnames, [mode_column] if mode_column else MODE_COLUMNS)
            rows = [
                InputRow(
                    identity=(record.get(id_col) or "").strip(),
                    mode=(record.get(md_col) or "").strip() if md_col else None,
                )
                for record in reader
            ]
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise InputSourceError(f"Unable to read {path}: {exc}") from exc

    logger.info("Loaded %s row(s) from %s (identity column '%s')", len(rows), path, id_col)
    return rows


def rows_from_identities(identities: Iterable[str], mode: str | None = None) -> list[InputRow]:
    return [InputRow(identity=identity.strip(), mode=mode) for identity in identities]
