"""Tests for the CSV export serializer."""

import csv
import io
from datetime import date

import pytest

from exporter import BOM, export_class_csv, export_filename, export_headers, save_export
from schemas import AttendanceStatus, Evaluation, SchoolClass, Student


def _parse(text):
    assert text.startswith(BOM)
    return list(csv.reader(io.StringIO(text[len(BOM):])))


@pytest.fixture
def marquage_class():
    attendance = [AttendanceStatus.EMPTY] * 10
    attendance[0] = AttendanceStatus.PRESENT
    attendance[1] = AttendanceStatus.SICK
    return SchoolClass(
        id="c1",
        name="Classe 1A",
        students=[
            Student(
                id="s1", name="Ali", code_massar="A1", dob=date(2010, 5, 15), attendance=attendance,
                evaluation=Evaluation(
                    capacite_sportive_individuelle=5, capacite_sportive_collective=7,
                    connaissances_conceptuelles_marquage=2, connaissances_comportementales_marquage=3,
                ),
            ),
            Student(
                id="s2", name="Sara", dob=date(2011, 1, 2),
                evaluation=Evaluation(capacite_sportive_collective=6.5),
            ),
        ],
    )


class TestExportCsv:

    def test_marquage_layout(self, marquage_class):
        header, *rows = _parse(export_class_csv(marquage_class, "marquage"))
        assert header[:5] == ["N°", "Noms & Prénoms", "Code Massar", "Date de Naissance", "S1"]
        assert header[13] == "S10"
        assert header[-1] == "Note Finale"
        assert header[-5:-1] == [
            "Capacité Sportive (Individuelle)",
            "Capacité Sportive (Collective)",
            "Connaissances Conceptuelles",
            "Connaissances Comportementales",
        ]
        assert len(rows) == 2
        assert rows[0][:6] == ["1", "Ali", "A1", "2010-05-15", "P", "M"]
        assert rows[0][6:14] == [""] * 8
        assert rows[0][-5:] == ["5", "7", "2", "3", "17"]
        # Unset scores count as 0
        assert rows[1][-5:] == ["", "6.5", "", "", "6.5"]

    def test_whole_float_sum_written_without_fraction(self):
        school_class = SchoolClass(id="c1", name="1A", students=[
            Student(
                id="s1", name="Ali", dob=date(2010, 5, 15),
                evaluation=Evaluation(capacite_sportive_individuelle=2.5, capacite_sportive_collective=0.5),
            ),
        ])
        row = _parse(export_class_csv(school_class, "marquage"))[1]
        assert row[-5:] == ["2.5", "0.5", "", "", "3"]

    def test_gym_has_three_scored_columns(self, marquage_class):
        header = export_headers("gym")
        assert len(header) == 4 + 10 + 3 + 1
        header, *rows = _parse(export_class_csv(marquage_class, "gym"))
        assert rows[0][-1] == "0"

    def test_escaping(self):
        school_class = SchoolClass(id="c1", name="1A", students=[
            Student(id="s1", name='Dupont, "Jean"\nfils', dob=date(2010, 5, 15)),
        ])
        text = export_class_csv(school_class, "default")
        assert '"Dupont, ""Jean""\nfils"' in text
        assert _parse(text)[1][1] == 'Dupont, "Jean"\nfils'

    def test_empty_roster_has_header_only(self):
        rows = _parse(export_class_csv(SchoolClass(id="c1", name="1A"), "athletisme"))
        assert len(rows) == 1


class TestFilename:

    def test_whitespace_collapsed(self):
        name = export_filename("Marquage Démarquage", "Classe  1A", date(2026, 10, 19))
        assert name == "export_Marquage_Démarquage_Classe_1A_2026-10-19.csv"

    def test_save_export(self, tmp_path, marquage_class):
        path = save_export(tmp_path / "out", "Gym", marquage_class, "gym", date(2026, 10, 19))
        assert path.name == "export_Gym_Classe_1A_2026-10-19.csv"
        assert path.read_bytes().startswith(b"\xef\xbb\xbf")
