"""
Export Serializer - a class roster and its scores as a CSV table.

Column layout: N°, name, code, date of birth, one column per session slot
(raw attendance code), the active rubric's fields, then the final score.
"""

import csv
import io
import re
from datetime import date
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from logger import get_logger
from schemas import SESSION_COUNT, SchoolClass, Student
from scoring import FINAL_SCORE_LABEL, Rubric, final_score, get_rubric

logger = get_logger(__name__)

# Lets spreadsheet tools detect UTF-8
BOM = "\ufeff"

BASE_HEADERS = ["N°", "Noms & Prénoms", "Code Massar", "Date de Naissance"]


def export_headers(rubric: Rubric, session_count: int = SESSION_COUNT) -> List[str]:
    return [
        *BASE_HEADERS,
        *(f"S{i + 1}" for i in range(session_count)),
        *get_rubric(rubric).labels,
        FINAL_SCORE_LABEL,
    ]


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def export_row(position: int, student: Student, rubric: Rubric) -> List[str]:
    spec = get_rubric(rubric)
    values = [
        position,
        student.name,
        student.code_massar,
        student.dob,
        *student.attendance,
        *(getattr(student.evaluation, name) for name in spec.field_names),
        final_score(student.evaluation, rubric),
    ]
    return [_cell(v) for v in values]


def export_class_csv(school_class: SchoolClass, rubric: Rubric) -> str:
    """Render the roster; values are quoted only when they need it."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(export_headers(rubric, len(school_class.session_dates)))
    for position, student in enumerate(school_class.students, start=1):
        writer.writerow(export_row(position, student, rubric))
    return BOM + buffer.getvalue()


def export_filename(section_title: str, class_name: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    section = re.sub(r"\s+", "_", section_title)
    name = re.sub(r"\s+", "_", class_name)
    return f"export_{section}_{name}_{today.isoformat()}.csv"


def save_export(directory: Union[str, Path], section_title: str, school_class: SchoolClass,
                rubric: Rubric, today: Optional[date] = None) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(section_title, school_class.name, today)
    path.write_text(export_class_csv(school_class, rubric), encoding="utf-8")
    logger.info(f"Exported {len(school_class.students)} student(s) to {path}")
    return path
