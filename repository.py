"""
Repository - pure operations over one section's tree of school years.

Every operation returns a new list of years. Years, classes and students the
operation does not touch are shared with the input. An unknown year, class or
student id leaves the tree unchanged (the same list object is returned).
"""

import uuid
from datetime import date
from typing import Callable, List, Optional, Tuple, Union
from urllib.parse import quote

from pydantic import TypeAdapter, ValidationError
from pydantic.alias_generators import to_snake

from logger import get_logger
from schemas import (
    EVALUATION_FIELDS,
    SESSION_COUNT,
    AttendanceStatus,
    SchoolClass,
    SchoolYear,
    SectionData,
    Student,
)
from scoring import InvalidScoreError, to_number

logger = get_logger(__name__)

Tree = List[SchoolYear]

# Student attributes that may be edited through a top-level field path
EDITABLE_STUDENT_FIELDS = ("name", "code_massar", "dob", "photo_url")

_session_date = TypeAdapter(Optional[date])

# Characters encodeURIComponent leaves alone
_URI_SAFE = "-_.!~*'()"


# ----------------------- Seed -----------------------

def build_seed() -> Tree:
    """Canonical dataset a section starts from. Built fresh on every call."""
    return [
        SchoolYear(
            id="year-1",
            name="1ére année",
            classes=[
                SchoolClass(
                    id="class-1a",
                    name="Classe 1A",
                    students=[
                        Student(
                            id="student-1",
                            name="Jean Dupont",
                            code_massar="",
                            dob=date(2010, 5, 15),
                            photo_url="https://picsum.photos/seed/student1/100/100",
                        )
                    ],
                )
            ],
        ),
        SchoolYear(id="year-2", name="2éme année"),
        SchoolYear(id="year-3", name="3éme année"),
    ]


# ----------------------- Lookups -----------------------

def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def placeholder_photo(name: str) -> str:
    encoded = quote(name, safe=_URI_SAFE)
    return f"https://ui-avatars.com/api/?name={encoded}&background=random&color=fff"


def find_year(tree: Tree, year_id: Optional[str]) -> Optional[SchoolYear]:
    return next((y for y in tree if y.id == year_id), None)


def find_class(tree: Tree, year_id: Optional[str], class_id: Optional[str]) -> Optional[SchoolClass]:
    year = find_year(tree, year_id)
    if year is None:
        return None
    return next((c for c in year.classes if c.id == class_id), None)


def find_student(tree: Tree, year_id: str, class_id: str, student_id: str) -> Optional[Student]:
    school_class = find_class(tree, year_id, class_id)
    if school_class is None:
        return None
    return next((s for s in school_class.students if s.id == student_id), None)


def resolve_selection(tree: Tree, year_id: Optional[str], class_id: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Re-derive (year_id, class_id) after the tree changed.

    No year selected means the first year. A class that no longer exists in
    the selected year falls back to the year's first class, or None.
    """
    if year_id is None:
        year = tree[0] if tree else None
    else:
        year = find_year(tree, year_id)
    if year is None:
        return None, None
    if any(c.id == class_id for c in year.classes):
        return year.id, class_id
    return year.id, (year.classes[0].id if year.classes else None)


def filter_students(school_class: Optional[SchoolClass], query: Optional[str]) -> Optional[SchoolClass]:
    """Case-insensitive name search. A blank query returns the class itself."""
    if school_class is None:
        return None
    if not query or not query.strip():
        return school_class
    needle = query.lower()
    students = [s for s in school_class.students if needle in s.name.lower()]
    return school_class.model_copy(update={"students": students})


# ----------------------- Path copying -----------------------

def _replace(items: list, item_id: str, fn: Callable) -> Tuple[list, bool]:
    changed = False
    out = []
    for item in items:
        if item.id == item_id:
            new = fn(item)
            changed = changed or new is not item
            out.append(new)
        else:
            out.append(item)
    return out, changed


def _map_year(tree: Tree, year_id: str, fn: Callable[[SchoolYear], SchoolYear]) -> Tree:
    years, changed = _replace(tree, year_id, fn)
    return years if changed else tree


def _map_class(tree: Tree, year_id: str, class_id: str, fn: Callable[[SchoolClass], SchoolClass]) -> Tree:
    def on_year(year: SchoolYear) -> SchoolYear:
        classes, changed = _replace(year.classes, class_id, fn)
        return year.model_copy(update={"classes": classes}) if changed else year

    return _map_year(tree, year_id, on_year)


def _map_student(tree: Tree, year_id: str, class_id: str, student_id: str,
                 fn: Callable[[Student], Student]) -> Tree:
    def on_class(school_class: SchoolClass) -> SchoolClass:
        students, changed = _replace(school_class.students, student_id, fn)
        return school_class.model_copy(update={"students": students}) if changed else school_class

    return _map_class(tree, year_id, class_id, on_class)


# ----------------------- Classes -----------------------

def add_class(tree: Tree, year_id: str, name: str, class_id: Optional[str] = None) -> Tuple[Tree, Optional[str]]:
    name = name.strip()
    if not name:
        raise ValueError("Class name is required")
    if find_year(tree, year_id) is None:
        return tree, None
    new_class = SchoolClass(id=class_id or new_id("class"), name=name)
    tree = _map_year(tree, year_id, lambda y: y.model_copy(update={"classes": [*y.classes, new_class]}))
    return tree, new_class.id


def delete_class(tree: Tree, year_id: str, class_id: str) -> Tree:
    """Remove a class together with its roster."""
    def on_year(year: SchoolYear) -> SchoolYear:
        if not any(c.id == class_id for c in year.classes):
            return year
        return year.model_copy(update={"classes": [c for c in year.classes if c.id != class_id]})

    return _map_year(tree, year_id, on_year)


def update_session_date(tree: Tree, year_id: str, class_id: str, session_index: int,
                        value: Union[date, str, None]) -> Tree:
    if not 0 <= session_index < SESSION_COUNT:
        logger.warning(f"Ignoring session date for slot {session_index}")
        return tree
    try:
        session_date = _session_date.validate_python(value or None)
    except ValidationError:
        logger.warning(f"Ignoring unparseable session date {value!r}")
        return tree

    def on_class(school_class: SchoolClass) -> SchoolClass:
        dates = list(school_class.session_dates)
        dates[session_index] = session_date
        return school_class.model_copy(update={"session_dates": dates})

    return _map_class(tree, year_id, class_id, on_class)


# ----------------------- Students -----------------------

def make_student(name: str, code_massar: str, dob: Union[date, str], photo_url: Optional[str] = None,
                 student_id: Optional[str] = None) -> Student:
    """Fresh student: empty attendance, every evaluation field unset."""
    name = name.strip()
    if not name:
        raise ValueError("Student name is required")
    if not dob:
        raise ValueError("Date of birth is required")
    return Student(
        id=student_id or new_id("student"),
        name=name,
        code_massar=code_massar or "",
        dob=dob,
        photo_url=photo_url or placeholder_photo(name),
    )


def add_student(tree: Tree, year_id: str, class_id: str, name: str, code_massar: str,
                dob: Union[date, str], photo_url: Optional[str] = None,
                student_id: Optional[str] = None) -> Tuple[Tree, Optional[str]]:
    student = make_student(name, code_massar, dob, photo_url, student_id)
    new_tree = append_students(tree, year_id, class_id, [student])
    if new_tree is tree:
        return tree, None
    return new_tree, student.id


def append_students(tree: Tree, year_id: str, class_id: str, students: List[Student]) -> Tree:
    """Append a vetted batch to a roster in one step."""
    if not students:
        return tree
    return _map_class(
        tree, year_id, class_id,
        lambda c: c.model_copy(update={"students": [*c.students, *students]}),
    )


def delete_student(tree: Tree, year_id: str, class_id: str, student_id: str) -> Tree:
    def on_class(school_class: SchoolClass) -> SchoolClass:
        if not any(s.id == student_id for s in school_class.students):
            return school_class
        return school_class.model_copy(
            update={"students": [s for s in school_class.students if s.id != student_id]}
        )

    return _map_class(tree, year_id, class_id, on_class)


def _set_attendance(student: Student, slot: str, value) -> Student:
    try:
        index = int(slot)
        status = AttendanceStatus(value)
    except ValueError:
        logger.warning(f"Ignoring attendance update {slot!r}={value!r}")
        return student
    if not 0 <= index < SESSION_COUNT:
        logger.warning(f"Ignoring attendance update for slot {index}")
        return student
    attendance = list(student.attendance)
    attendance[index] = status
    return student.model_copy(update={"attendance": attendance})


def _set_evaluation(student: Student, name: str, value) -> Student:
    key = to_snake(name)
    if key not in EVALUATION_FIELDS:
        logger.warning(f"Ignoring unknown evaluation field {name!r}")
        return student
    # Stored raw: range checks belong to the caller
    try:
        number = to_number(value)
    except InvalidScoreError:
        logger.warning(f"Ignoring non-numeric score {value!r} for {key}")
        return student
    evaluation = student.evaluation.model_copy(update={key: number})
    return student.model_copy(update={"evaluation": evaluation})


def _set_attribute(student: Student, name: str, value) -> Student:
    key = to_snake(name)
    if key not in EDITABLE_STUDENT_FIELDS:
        logger.warning(f"Ignoring update of student field {name!r}")
        return student
    try:
        return Student.model_validate({**student.model_dump(), key: value})
    except ValidationError as e:
        logger.warning(f"Ignoring invalid value for {key}: {e.errors()[0]['msg']}")
        return student


def update_student_field(tree: Tree, year_id: str, class_id: str, student_id: str,
                         field_path: str, value) -> Tree:
    """Set one field addressed by a path.

    Paths are ``attendance.<i>``, ``evaluation.<field>`` or a top-level
    attribute (``name``, ``codeMassar``, ``dob``, ``photoUrl``).
    """
    head, _, tail = field_path.partition(".")
    if head == "attendance" and tail:
        fn = lambda s: _set_attendance(s, tail, value)  # noqa: E731
    elif head == "evaluation" and tail:
        fn = lambda s: _set_evaluation(s, tail, value)  # noqa: E731
    elif not tail:
        fn = lambda s: _set_attribute(s, head, value)  # noqa: E731
    else:
        logger.warning(f"Ignoring unknown field path {field_path!r}")
        return tree
    return _map_student(tree, year_id, class_id, student_id, fn)


# ----------------------- Section cache -----------------------

class SectionCache:
    """Section title -> tree. A section is seeded on first access."""

    def __init__(self, sections: Optional[SectionData] = None, seed: Callable[[], Tree] = build_seed):
        self._sections = dict(sections or {})
        self._seed = seed

    def __contains__(self, title: str) -> bool:
        return title in self._sections

    def get_or_init(self, title: str) -> Tree:
        if title not in self._sections:
            logger.info(f"Seeding section '{title}'")
            self._sections[title] = self._seed()
        return self._sections[title]

    def put(self, title: str, tree: Tree) -> None:
        self._sections[title] = tree

    def snapshot(self) -> SectionData:
        return dict(self._sections)
