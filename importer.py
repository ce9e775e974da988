"""
Import Reconciler - turns a CSV or spreadsheet roster into new students.

Imports are all-or-nothing: either every row passes validation and the whole
batch comes back, or nothing is imported and every problem is reported
together.

Expected columns (any order, header match is case-insensitive):
    Code Massar | Nom & Prénom | Date de Naissance
"""

import csv
import io
import math
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, BinaryIO, Iterable, List, Optional, Sequence, Union

from dateutil import parser as date_parser
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from logger import get_logger
from repository import make_student
from schemas import Student

logger = get_logger(__name__)

REQUIRED_HEADERS = ("Code Massar", "Nom & Prénom", "Date de Naissance")

# Spreadsheet serial day 0, read as UTC midnight
SPREADSHEET_EPOCH = datetime(1899, 12, 30, tzinfo=timezone.utc)

_DMY_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_SERIAL_DATE = re.compile(r"^\d{5}(\.\d+)?$")

# Two defaults that differ in year, month and day
_PARSE_DEFAULTS = (datetime(1900, 1, 1), datetime(1904, 2, 2))

Cell = Any
Row = Sequence[Cell]


class ImportFailure(Exception):
    """Base class for an import that adds nothing."""

    def __init__(self, message: str, errors: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class ImportFormatError(ImportFailure):
    """The file cannot be processed at all (unreadable, empty, wrong headers)."""


class ImportRejectedError(ImportFailure):
    """One or more rows failed validation; carries every message."""

    def __init__(self, errors: List[str]):
        super().__init__(f"Import rejected with {len(errors)} error(s)", errors)

    def report(self) -> str:
        return "\n".join(f"- {e}" for e in self.errors)


@dataclass
class ImportRow:
    row_number: int
    name: str
    code_massar: str
    dob: str


@dataclass
class ImportBatch:
    students: List[Student] = field(default_factory=list)
    notice: Optional[str] = None


# ----------------------- Dates -----------------------

def _from_serial(serial: float) -> str:
    if not math.isfinite(serial):
        return ""
    try:
        moment = SPREADSHEET_EPOCH + timedelta(milliseconds=round(serial * 86400 * 1000))
    except OverflowError:
        return ""
    return moment.date().isoformat()


def parse_date(value: Cell) -> str:
    """
    Normalize a date cell to YYYY-MM-DD, or "" when it cannot be read.

    Accepts date/datetime values, spreadsheet serial numbers, DD/MM/YYYY or
    DD-MM-YYYY text and anything dateutil understands.
    """
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)):
        return _from_serial(value) if value else ""

    text = str(value).strip()
    if not text:
        return ""
    if _SERIAL_DATE.match(text):
        return _from_serial(float(text))

    match = _DMY_DATE.match(text)
    if match:
        day, month, year = (int(g) for g in match.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            return ""

    # Text missing a year, month or day parses differently under each default
    try:
        first, second = (date_parser.parse(text, default=d) for d in _PARSE_DEFAULTS)
    except (ValueError, OverflowError):
        return ""
    if first.date() != second.date():
        return ""
    return first.date().isoformat()


# ----------------------- Readers -----------------------

def read_csv_rows(text: str) -> List[List[str]]:
    if text.startswith("\ufeff"):
        text = text[1:]
    rows = []
    for row in csv.reader(io.StringIO(text)):
        cells = [cell.strip() for cell in row]
        if any(cells):
            rows.append(cells)
    return rows


def read_xlsx_rows(source: Union[str, Path, BinaryIO]) -> List[List[Cell]]:
    """Grid of the first worksheet; empty cells become "" and blank rows are dropped."""
    workbook = load_workbook(source, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = []
        for row in sheet.iter_rows(values_only=True):
            cells = ["" if v is None else v for v in row]
            if any(str(c).strip() for c in cells):
                rows.append(cells)
        return rows
    finally:
        workbook.close()


def read_rows(path: Union[str, Path]) -> List[List[Cell]]:
    path = Path(path)
    try:
        if path.suffix.lower() == ".csv":
            return read_csv_rows(path.read_text(encoding="utf-8-sig"))
        return read_xlsx_rows(path)
    except (OSError, ValueError, zipfile.BadZipFile, InvalidFileException) as e:
        logger.error(f"Could not read import file {path.name}: {e}")
        raise ImportFormatError(f"Could not read '{path.name}'. Make sure it is a CSV or Excel file.") from e


# ----------------------- Reconciliation -----------------------

def _cell(row: Row, index: int) -> Cell:
    if index >= len(row) or row[index] is None:
        return ""
    return row[index]


def _text(row: Row, index: int) -> str:
    return str(_cell(row, index)).strip()


def extract_rows(rows: Sequence[Row]) -> List[ImportRow]:
    """Resolve the required headers and pull name, code and date from each data row."""
    if not rows:
        raise ImportFormatError("The file is empty.")

    header = [str(h).strip().lower() for h in rows[0]]
    indices = {}
    missing = []
    for name in REQUIRED_HEADERS:
        try:
            indices[name] = header.index(name.lower())
        except ValueError:
            missing.append(name)
    if missing:
        raise ImportFormatError(
            f"Incorrect file format: missing header(s) {', '.join(missing)}. "
            f"Required headers are: {', '.join(REQUIRED_HEADERS)}.",
            missing,
        )

    return [
        ImportRow(
            row_number=number,
            name=_text(row, indices["Nom & Prénom"]),
            code_massar=_text(row, indices["Code Massar"]).upper(),
            dob=parse_date(_cell(row, indices["Date de Naissance"])),
        )
        # Row 1 is the header
        for number, row in enumerate(rows[1:], start=2)
    ]


def validate_rows(import_rows: List[ImportRow], existing_students: Iterable[Student]) -> List[str]:
    errors = []
    existing = {s.code_massar.upper() for s in existing_students if s.code_massar}
    seen = set()

    for row in import_rows:
        if not row.name:
            errors.append(f"row {row.row_number}: missing name")
        if not row.dob:
            errors.append(f"row {row.row_number}: missing/invalid date of birth")
        if row.code_massar:
            if row.code_massar in existing or row.code_massar in seen:
                errors.append(f"row {row.row_number}: duplicate code '{row.code_massar}'")
            else:
                seen.add(row.code_massar)
    return errors


def reconcile(rows: Sequence[Row], existing_students: Iterable[Student]) -> ImportBatch:
    """
    Vet a parsed grid (header row first) against the target roster.

    Raises:
        ImportFormatError: empty grid or missing headers.
        ImportRejectedError: at least one row is invalid; nothing is returned.
    """
    import_rows = extract_rows(rows)
    if not import_rows:
        return ImportBatch(notice="No valid students were found in the file.")

    errors = validate_rows(import_rows, existing_students)
    if errors:
        logger.warning(f"Import rejected: {len(errors)} error(s)")
        raise ImportRejectedError(errors)

    students = [make_student(r.name, r.code_massar, r.dob) for r in import_rows]
    logger.info(f"Import vetted {len(students)} student(s)")
    return ImportBatch(students=students)


def import_file(path: Union[str, Path], existing_students: Iterable[Student]) -> ImportBatch:
    return reconcile(read_rows(path), existing_students)
