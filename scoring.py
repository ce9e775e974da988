"""
Scoring Engine - valid ranges and final scores for the four evaluation rubrics.

Bounds follow the PE grading-policy table. For athletisme and gym some bounds
depend on the cohort (the school-year label): habileté motrice is worth more
for younger cohorts, comportement is worth more for older ones.
"""

import math
import re
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Tuple, Union

from pydantic.alias_generators import to_snake

from schemas import Evaluation, SchoolClass, Score, Student

Rubric = Literal["default", "marquage", "athletisme", "gym"]
Cohort = Union[str, int, None]

# A bound is either fixed or a (year 1, year 2, year 3) triple
Bound = Union[int, Tuple[int, int, int]]

FINAL_SCORE_LABEL = "Note Finale"


class InvalidScoreError(ValueError):
    """Raised when a score entry is not an acceptable number for its rubric."""


@dataclass(frozen=True)
class RubricField:
    name: str
    label: str
    bound: Bound

    def max_for(self, cohort: int) -> int:
        if isinstance(self.bound, tuple):
            return self.bound[cohort - 1]
        return self.bound


@dataclass(frozen=True)
class RubricSpec:
    name: str
    fields: Tuple[RubricField, ...]
    max_score: int
    integer_only: bool = False

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def labels(self) -> List[str]:
        return [f.label for f in self.fields]

    def field(self, name: str) -> RubricField:
        key = to_snake(name)
        for f in self.fields:
            if f.name == key:
                return f
        raise KeyError(f"{name!r} is not a {self.name} field")


RUBRICS: Dict[str, RubricSpec] = {
    "default": RubricSpec(
        name="default",
        fields=(
            RubricField("capacite_sportive", "Capacité sportive", 20),
            RubricField("habilite_motrice", "Habilité motrice", 20),
            RubricField("connaissances_conceptuelles", "Connaissances conceptuelles", 20),
            RubricField("connaissances_comportementales", "Connaissances comportementales", 20),
        ),
        max_score=80,
    ),
    "marquage": RubricSpec(
        name="marquage",
        fields=(
            RubricField("capacite_sportive_individuelle", "Capacité Sportive (Individuelle)", 6),
            RubricField("capacite_sportive_collective", "Capacité Sportive (Collective)", 8),
            RubricField("connaissances_conceptuelles_marquage", "Connaissances Conceptuelles", 3),
            RubricField("connaissances_comportementales_marquage", "Connaissances Comportementales", 3),
        ),
        max_score=20,
    ),
    "athletisme": RubricSpec(
        name="athletisme",
        fields=(
            RubricField("capacite_sportive", "Capacité sportive", 6),
            RubricField("habilite_motrice", "Habilité motrice", (8, 7, 6)),
            RubricField("connaissances_conceptuelles", "Connaissances conceptuelles", 3),
            RubricField("connaissances_comportementales", "Connaissances comportementales", (3, 4, 5)),
        ),
        max_score=20,
        integer_only=True,
    ),
    "gym": RubricSpec(
        name="gym",
        fields=(
            RubricField("capacite_habilite_motrice_gym", "Capacité sportive et habileté motrice", (14, 13, 12)),
            RubricField("connaissances_conceptuelles_gym", "Connaissances Conceptuelles", 3),
            RubricField("connaissances_comportementales_gym", "Connaissances Comportementales", (3, 4, 5)),
        ),
        max_score=20,
    ),
}

COHORT_LABELS = {"1ére année": 1, "2éme année": 2, "3éme année": 3}
_COHORT_DIGIT = re.compile(r"(?<!\d)([123])(?!\d)")

# Plain decimal notation: optional sign, digits, optional fraction and exponent
_DECIMAL = re.compile(r"^[+-]?(?:(?P<int_only>\d+)$|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$)", re.ASCII)


def get_rubric(rubric: str) -> RubricSpec:
    try:
        return RUBRICS[rubric]
    except KeyError:
        raise KeyError(f"Unknown rubric {rubric!r}") from None


def cohort_rank(cohort: Cohort) -> int:
    """Map a cohort label ("2éme année", "year 2") or number to 1, 2 or 3.

    Anything unrecognised counts as the first cohort.
    """
    if isinstance(cohort, int) and not isinstance(cohort, bool):
        return cohort if cohort in (1, 2, 3) else 1
    if isinstance(cohort, str):
        label = cohort.strip()
        if label in COHORT_LABELS:
            return COHORT_LABELS[label]
        match = _COHORT_DIGIT.search(label)
        if match:
            return int(match.group(1))
    return 1


def valid_range(rubric: Rubric, field_name: str, cohort: Cohort = None) -> Tuple[int, int]:
    field = get_rubric(rubric).field(field_name)
    return 0, field.max_for(cohort_rank(cohort))


def is_valid(value: Score, low: float, high: float) -> bool:
    try:
        number = to_number(value)
    except InvalidScoreError:
        return False
    return number is None or low <= number <= high


def to_number(raw) -> Score:
    """Parse a raw score entry; blank means unset."""
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise InvalidScoreError(f"{raw!r} is not a number")
    if isinstance(raw, (int, float)):
        value = raw
    else:
        text = str(raw).strip()
        if text == "":
            return None
        match = _DECIMAL.match(text)
        if not match:
            raise InvalidScoreError(f"{raw!r} is not a number")
        value = int(text) if match.group("int_only") else float(text)
    if not math.isfinite(value):
        raise InvalidScoreError(f"{raw!r} is not a finite number")
    return value


def accepts_input(rubric: Rubric, raw) -> bool:
    """Whether a typed entry is acceptable before clamping.

    Athletisme takes whole numbers only; the other rubrics take any number.
    """
    try:
        value = to_number(raw)
    except InvalidScoreError:
        return False
    if value is None:
        return True
    if get_rubric(rubric).integer_only:
        if isinstance(raw, str) and not raw.strip().isdigit():
            return False
        return float(value).is_integer()
    return True


def clamp(rubric: Rubric, field_name: str, cohort: Cohort, raw) -> Score:
    """Clamp a score entry into the field's range. Unset passes through."""
    value = to_number(raw)
    if value is None:
        return None
    if not accepts_input(rubric, raw):
        raise InvalidScoreError(f"{field_name} takes whole numbers only, got {raw!r}")
    low, high = valid_range(rubric, field_name, cohort)
    if get_rubric(rubric).integer_only:
        value = int(value)
    return min(max(value, low), high)


def final_score(evaluation: Evaluation, rubric: Rubric) -> Union[int, float]:
    """Sum of the rubric's fields, unset counting as 0.

    The default rubric also counts out-of-range entries as 0.
    """
    spec = get_rubric(rubric)
    total: Union[int, float] = 0
    for field in spec.fields:
        value = getattr(evaluation, field.name, None)
        if value is None:
            continue
        try:
            number = to_number(value)
        except InvalidScoreError:
            continue
        if number is None:
            continue
        if spec.name == "default" and not is_valid(number, 0, field.max_for(1)):
            continue
        total += number
    return total


def invalid_fields(evaluation: Evaluation, rubric: Rubric, cohort: Cohort = None) -> List[str]:
    """Names of the rubric fields whose stored value is out of range."""
    spec = get_rubric(rubric)
    rank = cohort_rank(cohort)
    return [
        f.name for f in spec.fields
        if not is_valid(getattr(evaluation, f.name, None), 0, f.max_for(rank))
    ]


def roster_scores(school_class: Optional[SchoolClass], rubric: Rubric) -> List[Tuple[Student, Union[int, float]]]:
    if school_class is None:
        return []
    return [(s, final_score(s.evaluation, rubric)) for s in school_class.students]
