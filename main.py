import argparse
import os
import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import repository
from database import JsonStore, db
from exporter import export_class_csv, save_export
from importer import ImportBatch, ImportFailure, read_rows, reconcile
from logger import get_logger
from repository import Tree
from schemas import SchoolClass, Student
from scoring import Rubric, clamp, invalid_fields, roster_scores

logger = get_logger(__name__)

# Environment setup
EXPORT_DIR = os.getenv("EXPORT_DIR", ".")

# Section title -> rubric; any other section uses the default rubric
SECTION_RUBRICS = {
    "Marquage Démarquage": "marquage",
    "Athlétisme": "athletisme",
    "Gym": "gym",
}


def rubric_for(section_title: str) -> Rubric:
    return SECTION_RUBRICS.get(section_title, "default")


# ----------------------- Views -----------------------
@dataclass
class SectionView:
    title: str
    rubric: Rubric
    years: Tree
    year_id: Optional[str]
    class_id: Optional[str]
    school_class: Optional[SchoolClass] = None
    scores: List[Tuple[Student, Union[int, float]]] = field(default_factory=list)
    invalid: dict = field(default_factory=dict)


# ----------------------- Gradebook -----------------------
class Gradebook:
    """
    Holds every section's tree for the lifetime of the process.

    Each mutation runs a repository operation on one section tree, replaces
    that tree and saves the whole mapping.
    """

    def __init__(self, store: Optional[JsonStore] = None):
        self.store = store or db
        self.sections = repository.SectionCache(self.store.load())

    def section(self, title: str) -> Tree:
        if title not in self.sections:
            tree = self.sections.get_or_init(title)
            self._persist()
            return tree
        return self.sections.get_or_init(title)

    def _commit(self, title: str, tree: Tree) -> Tree:
        if tree is not self.sections.get_or_init(title):
            self.sections.put(title, tree)
            self._persist()
        return tree

    def _persist(self) -> None:
        self.store.save(self.sections.snapshot())

    def _cohort(self, title: str, year_id: str) -> Optional[str]:
        year = repository.find_year(self.section(title), year_id)
        return year.name if year else None

    # Classes
    def add_class(self, title: str, year_id: str, name: str) -> Optional[str]:
        tree, class_id = repository.add_class(self.section(title), year_id, name)
        self._commit(title, tree)
        return class_id

    def delete_class(self, title: str, year_id: str, class_id: str) -> None:
        self._commit(title, repository.delete_class(self.section(title), year_id, class_id))

    def update_session_date(self, title: str, year_id: str, class_id: str, session_index: int,
                            value: Union[date, str, None]) -> None:
        tree = repository.update_session_date(self.section(title), year_id, class_id, session_index, value)
        self._commit(title, tree)

    # Students
    def add_student(self, title: str, year_id: str, class_id: str, name: str, code_massar: str,
                    dob: Union[date, str], photo_url: Optional[str] = None) -> Optional[str]:
        tree, student_id = repository.add_student(
            self.section(title), year_id, class_id, name, (code_massar or "").strip().upper(), dob, photo_url
        )
        self._commit(title, tree)
        return student_id

    def delete_student(self, title: str, year_id: str, class_id: str, student_id: str) -> None:
        self._commit(title, repository.delete_student(self.section(title), year_id, class_id, student_id))

    def update_student_field(self, title: str, year_id: str, class_id: str, student_id: str,
                             field_path: str, value) -> None:
        tree = repository.update_student_field(self.section(title), year_id, class_id, student_id, field_path, value)
        self._commit(title, tree)

    def set_score(self, title: str, year_id: str, class_id: str, student_id: str, field_name: str, raw) -> None:
        """Store a score after clamping it to the section rubric's range for the year."""
        value = clamp(rubric_for(title), field_name, self._cohort(title, year_id), raw)
        self.update_student_field(title, year_id, class_id, student_id, f"evaluation.{field_name}", value)

    # Import / export
    def import_rows(self, title: str, year_id: str, class_id: str, rows: Sequence[Sequence]) -> ImportBatch:
        """Vet and append a parsed grid. Raises ImportFailure and adds nothing on error."""
        school_class = repository.find_class(self.section(title), year_id, class_id)
        if school_class is None:
            return ImportBatch(notice="No class selected.")
        batch = reconcile(rows, school_class.students)
        if batch.students:
            tree = repository.append_students(self.section(title), year_id, class_id, batch.students)
            self._commit(title, tree)
        return batch

    def import_file(self, title: str, year_id: str, class_id: str, path: Union[str, Path]) -> ImportBatch:
        return self.import_rows(title, year_id, class_id, read_rows(path))

    def export_class(self, title: str, year_id: str, class_id: str) -> Optional[str]:
        school_class = repository.find_class(self.section(title), year_id, class_id)
        if school_class is None:
            return None
        return export_class_csv(school_class, rubric_for(title))

    def save_export(self, title: str, year_id: str, class_id: str,
                    directory: Union[str, Path] = EXPORT_DIR) -> Optional[Path]:
        school_class = repository.find_class(self.section(title), year_id, class_id)
        if school_class is None:
            return None
        return save_export(directory, title, school_class, rubric_for(title))

    def view(self, title: str, year_id: Optional[str] = None, class_id: Optional[str] = None,
             search: str = "") -> SectionView:
        tree = self.section(title)
        rubric = rubric_for(title)
        year_id, class_id = repository.resolve_selection(tree, year_id, class_id)
        school_class = repository.filter_students(repository.find_class(tree, year_id, class_id), search)
        cohort = self._cohort(title, year_id) if year_id else None
        view = SectionView(title=title, rubric=rubric, years=tree, year_id=year_id, class_id=class_id,
                           school_class=school_class, scores=roster_scores(school_class, rubric))
        for student, _ in view.scores:
            bad = invalid_fields(student.evaluation, rubric, cohort)
            if bad:
                view.invalid[student.id] = bad
        return view


# ----------------------- Command line -----------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PE gradebook: classes, attendance and evaluations")
    parser.add_argument("--data", help="Storage directory (defaults to $DATABASE_URL)")
    sub = parser.add_subparsers(dest="command", required=True)

    def target(p, need_class=True):
        p.add_argument("--section", required=True, help="Section title, e.g. Gym")
        p.add_argument("--year", required=need_class, help="School year id")
        p.add_argument("--class", dest="class_id", required=need_class, help="Class id")

    show = sub.add_parser("show", help="Print the selected class with scores")
    target(show, need_class=False)
    show.add_argument("--search", default="")

    add_class = sub.add_parser("add-class", help="Create a class in a school year")
    add_class.add_argument("--section", required=True)
    add_class.add_argument("--year", required=True)
    add_class.add_argument("name")

    add_student = sub.add_parser("add-student", help="Add a student to a class")
    target(add_student)
    add_student.add_argument("--name", required=True)
    add_student.add_argument("--code", default="")
    add_student.add_argument("--dob", required=True, help="YYYY-MM-DD")
    add_student.add_argument("--photo")

    imp = sub.add_parser("import", help="Import students from a CSV or Excel file")
    target(imp)
    imp.add_argument("file")

    exp = sub.add_parser("export", help="Export a class to CSV")
    target(exp)
    exp.add_argument("--out", default=EXPORT_DIR)
    return parser


def print_view(view: SectionView) -> None:
    print(f"{view.title} ({view.rubric})")
    for year in view.years:
        marker = "*" if year.id == view.year_id else " "
        classes = ", ".join(f"{c.name} [{c.id}]" for c in year.classes) or "-"
        print(f" {marker} {year.name} [{year.id}]: {classes}")
    if view.school_class is None:
        print("No class selected.")
        return
    print(f"\n{view.school_class.name}")
    for position, (student, score) in enumerate(view.scores, start=1):
        flag = " !" if student.id in view.invalid else ""
        attendance = "".join(s.value or "-" for s in student.attendance)
        print(f"{position:>3}. {student.name:<30} {student.code_massar:<12} {attendance}  {score}{flag}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    book = Gradebook(JsonStore(args.data) if args.data else None)

    if args.command == "show":
        print_view(book.view(args.section, args.year, args.class_id, args.search))
    elif args.command == "add-class":
        try:
            class_id = book.add_class(args.section, args.year, args.name)
        except ValueError as e:
            print(f"Invalid class: {e}", file=sys.stderr)
            return 1
        if class_id is None:
            print(f"Unknown school year '{args.year}'", file=sys.stderr)
            return 1
        print(class_id)
    elif args.command == "add-student":
        try:
            student_id = book.add_student(args.section, args.year, args.class_id, args.name, args.code,
                                          args.dob, args.photo)
        except ValueError as e:
            print(f"Invalid student: {e}", file=sys.stderr)
            return 1
        if student_id is None:
            print("Unknown school year or class", file=sys.stderr)
            return 1
        print(student_id)
    elif args.command == "import":
        try:
            batch = book.import_file(args.section, args.year, args.class_id, args.file)
        except ImportFailure as e:
            print(f"Import failed: {e}", file=sys.stderr)
            for error in e.errors:
                print(f"- {error}", file=sys.stderr)
            return 1
        print(batch.notice or f"Imported {len(batch.students)} student(s).")
    elif args.command == "export":
        path = book.save_export(args.section, args.year, args.class_id, args.out)
        if path is None:
            print("Unknown school year or class", file=sys.stderr)
            return 1
        print(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
