"""
Domain schemas for the PE gradebook (pydantic models).
The whole dataset is one tree: section title -> school years -> classes -> students.
Models serialize with camelCase aliases so the stored blob keeps its historical shape.
"""

from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Fixed number of session slots per class
SESSION_COUNT = 10

# A score is a number or None (unset)
Score = Optional[Union[int, float]]


class AttendanceStatus(str, Enum):
    PRESENT = "P"
    ABSENT = "A"
    SICK = "M"
    LATE = "R"
    EMPTY = ""


class GradebookModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Evaluation
class Evaluation(GradebookModel):
    # default / athletisme
    capacite_sportive: Score = None
    habilite_motrice: Score = None
    connaissances_conceptuelles: Score = None
    connaissances_comportementales: Score = None

    # marquage
    capacite_sportive_individuelle: Score = None
    capacite_sportive_collective: Score = None
    connaissances_conceptuelles_marquage: Score = None
    connaissances_comportementales_marquage: Score = None

    # gym
    capacite_habilite_motrice_gym: Score = None
    connaissances_conceptuelles_gym: Score = None
    connaissances_comportementales_gym: Score = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_is_unset(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value


EVALUATION_FIELDS = tuple(Evaluation.model_fields)


def empty_attendance() -> List[AttendanceStatus]:
    return [AttendanceStatus.EMPTY] * SESSION_COUNT


def empty_session_dates() -> List[Optional[date]]:
    return [None] * SESSION_COUNT


# Roster
class Student(GradebookModel):
    id: str
    name: str = Field(..., min_length=1)
    code_massar: str = ""
    dob: date
    photo_url: str = ""
    attendance: List[AttendanceStatus] = Field(
        default_factory=empty_attendance,
        min_length=SESSION_COUNT,
        max_length=SESSION_COUNT,
    )
    evaluation: Evaluation = Field(default_factory=Evaluation)


class SchoolClass(GradebookModel):
    id: str
    name: str
    session_dates: List[Optional[date]] = Field(
        default_factory=empty_session_dates,
        min_length=SESSION_COUNT,
        max_length=SESSION_COUNT,
    )
    students: List[Student] = Field(default_factory=list)

    @field_validator("session_dates", mode="before")
    @classmethod
    def blank_dates_are_unset(cls, value):
        if isinstance(value, list):
            return [None if v == "" else v for v in value]
        return value


class SchoolYear(GradebookModel):
    id: str
    name: str = Field(..., description="Cohort label e.g. 1ére année")
    classes: List[SchoolClass] = Field(default_factory=list)


# Root mapping persisted as a single blob: section title -> years
SectionData = Dict[str, List[SchoolYear]]
