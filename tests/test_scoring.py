"""Tests for the scoring engine.

Covers:
  - Per-rubric, per-cohort valid ranges (verbatim bound table)
  - Cohort label resolution
  - clamp / is_valid / accepts_input, including the whole-number rule for athletisme
  - final_score aggregation and its treatment of unset and out-of-range values
"""

import pytest

from schemas import Evaluation, SchoolClass, Student
from scoring import (
    RUBRICS,
    InvalidScoreError,
    accepts_input,
    clamp,
    cohort_rank,
    final_score,
    invalid_fields,
    is_valid,
    roster_scores,
    valid_range,
)


# ============================================================================
# Ranges
# ============================================================================

class TestValidRange:

    @pytest.mark.parametrize("field", [
        "capaciteSportive", "habiliteMotrice", "connaissancesConceptuelles", "connaissancesComportementales",
    ])
    def test_default_fields_are_out_of_twenty(self, field):
        assert valid_range("default", field, "3éme année") == (0, 20)

    def test_marquage_bounds(self):
        assert valid_range("marquage", "capaciteSportiveIndividuelle", None) == (0, 6)
        assert valid_range("marquage", "capaciteSportiveCollective", None) == (0, 8)
        assert valid_range("marquage", "connaissancesConceptuellesMarquage", None) == (0, 3)
        assert valid_range("marquage", "connaissancesComportementalesMarquage", None) == (0, 3)

    @pytest.mark.parametrize("cohort, motrice, comportement", [
        ("1ére année", 8, 3),
        ("2éme année", 7, 4),
        ("3éme année", 6, 5),
    ])
    def test_athletisme_bounds_follow_cohort(self, cohort, motrice, comportement):
        assert valid_range("athletisme", "capaciteSportive", cohort) == (0, 6)
        assert valid_range("athletisme", "habiliteMotrice", cohort) == (0, motrice)
        assert valid_range("athletisme", "connaissancesConceptuelles", cohort) == (0, 3)
        assert valid_range("athletisme", "connaissancesComportementales", cohort) == (0, comportement)

    @pytest.mark.parametrize("cohort, motrice, comportement", [
        ("year 1", 14, 3),
        ("year 2", 13, 4),
        ("year 3", 12, 5),
    ])
    def test_gym_bounds_follow_cohort(self, cohort, motrice, comportement):
        assert valid_range("gym", "capaciteHabiliteMotriceGym", cohort) == (0, motrice)
        assert valid_range("gym", "connaissancesConceptuellesGym", cohort) == (0, 3)
        assert valid_range("gym", "connaissancesComportementalesGym", cohort) == (0, comportement)

    def test_snake_case_field_names_accepted(self):
        assert valid_range("gym", "capacite_habilite_motrice_gym", 3) == (0, 12)

    def test_unknown_field_raises(self):
        with pytest.raises(KeyError):
            valid_range("gym", "capaciteSportive", None)

    def test_unknown_rubric_raises(self):
        with pytest.raises(KeyError):
            valid_range("natation", "capaciteSportive", None)

    def test_max_scores(self):
        assert {name: spec.max_score for name, spec in RUBRICS.items()} == {
            "default": 80, "marquage": 20, "athletisme": 20, "gym": 20,
        }


class TestCohortRank:

    @pytest.mark.parametrize("cohort, expected", [
        ("1ére année", 1),
        ("2éme année", 2),
        ("3éme année", 3),
        ("year 2", 2),
        (3, 3),
        (None, 1),
        (7, 1),
        ("Terminale", 1),
        ("Promo 2010", 1),
    ])
    def test_rank(self, cohort, expected):
        assert cohort_rank(cohort) == expected


# ============================================================================
# Entry validation
# ============================================================================

class TestClamp:

    def test_unset_passes_through(self):
        assert clamp("default", "capaciteSportive", None, "") is None
        assert clamp("default", "capaciteSportive", None, None) is None

    def test_clamps_to_upper_bound(self):
        assert clamp("gym", "capaciteHabiliteMotriceGym", "3éme année", 20) == 12
        assert clamp("gym", "capaciteHabiliteMotriceGym", "1ére année", 20) == 14

    def test_clamps_negative_to_zero(self):
        assert clamp("marquage", "capaciteSportiveCollective", None, -3) == 0

    def test_text_is_parsed(self):
        assert clamp("default", "habiliteMotrice", None, "15") == 15
        assert clamp("marquage", "capaciteSportiveCollective", None, "7.5") == 7.5

    def test_non_numeric_rejected(self):
        with pytest.raises(InvalidScoreError):
            clamp("default", "habiliteMotrice", None, "abc")

    @pytest.mark.parametrize("raw", ["1_0", "0x10", "١٢", "inf", "1 0"])
    def test_only_plain_decimals_accepted(self, raw):
        with pytest.raises(InvalidScoreError):
            clamp("default", "habiliteMotrice", None, raw)
        assert not is_valid(raw, 0, 20)

    def test_decimal_forms(self):
        assert clamp("default", "habiliteMotrice", None, " .5 ") == 0.5
        assert clamp("default", "habiliteMotrice", None, "1e1") == 10
        assert clamp("default", "habiliteMotrice", None, "+7") == 7

    def test_athletisme_rejects_fractions(self):
        with pytest.raises(InvalidScoreError):
            clamp("athletisme", "habiliteMotrice", "2éme année", "6.5")

    def test_athletisme_whole_numbers_clamped(self):
        assert clamp("athletisme", "habiliteMotrice", "2éme année", "9") == 7

    def test_other_rubrics_accept_fractions(self):
        assert accepts_input("gym", "2.5")
        assert accepts_input("default", 12.25)
        assert not accepts_input("athletisme", "2.5")
        assert not accepts_input("athletisme", "-1")
        assert accepts_input("athletisme", "4")
        assert accepts_input("athletisme", "")


class TestIsValid:

    def test_unset_is_always_valid(self):
        assert is_valid(None, 0, 3)
        assert is_valid("", 0, 3)

    def test_bounds_inclusive(self):
        assert is_valid(0, 0, 20)
        assert is_valid(20, 0, 20)
        assert not is_valid(21, 0, 20)
        assert not is_valid(-1, 0, 20)


# ============================================================================
# Final score
# ============================================================================

class TestFinalScore:

    def test_default_full_marks(self):
        evaluation = Evaluation(
            capacite_sportive=20, habilite_motrice=20,
            connaissances_conceptuelles=20, connaissances_comportementales=20,
        )
        assert final_score(evaluation, "default") == 80

    def test_all_unset_is_zero(self):
        for rubric in RUBRICS:
            assert final_score(Evaluation(), rubric) == 0

    def test_default_ignores_out_of_range(self):
        evaluation = Evaluation(
            capacite_sportive=21, habilite_motrice=20,
            connaissances_conceptuelles=20, connaissances_comportementales=20,
        )
        assert final_score(evaluation, "default") == 60

    def test_marquage_sums_its_own_fields(self):
        evaluation = Evaluation(
            capacite_sportive_individuelle=5, capacite_sportive_collective=7,
            connaissances_conceptuelles_marquage=2,
            capacite_sportive=18,
        )
        assert final_score(evaluation, "marquage") == 14

    def test_gym_sums_three_fields(self):
        evaluation = Evaluation(
            capacite_habilite_motrice_gym=12, connaissances_conceptuelles_gym=3,
            connaissances_comportementales_gym=4,
        )
        assert final_score(evaluation, "gym") == 19

    def test_athletisme_shares_default_fields(self):
        evaluation = Evaluation(capacite_sportive=6, habilite_motrice=8, connaissances_conceptuelles=3)
        assert final_score(evaluation, "athletisme") == 17
        assert final_score(evaluation, "default") == 17

    def test_blank_strings_count_as_unset(self):
        evaluation = Evaluation(capacite_sportive="", habilite_motrice="10")
        assert evaluation.capacite_sportive is None
        assert final_score(evaluation, "default") == 10


class TestDerived:

    def test_invalid_fields_uses_cohort(self):
        evaluation = Evaluation(connaissances_comportementales_gym=5)
        assert invalid_fields(evaluation, "gym", "1ére année") == ["connaissances_comportementales_gym"]
        assert invalid_fields(evaluation, "gym", "3éme année") == []

    def test_roster_scores(self):
        student = Student(id="s1", name="Ali", dob="2010-05-15",
                          evaluation=Evaluation(capacite_sportive=10))
        school_class = SchoolClass(id="c1", name="1A", students=[student])
        assert roster_scores(school_class, "default") == [(student, 10)]
        assert roster_scores(None, "default") == []
