"""Tests for section narrative tables and the patient narrative."""

import pytest

from patient_summary.services.narrative import NarrativeTable, human_name, patient_narrative


class TestNarrativeTable:
    def test_empty_table_renders_empty_text(self):
        table = NarrativeTable(["Condition", "Onset"], "No problems or conditions recorded.")
        assert table.render() == (
            '<div xmlns="http://www.w3.org/1999/xhtml">No problems or conditions recorded.</div>'
        )

    def test_rows_render_in_insertion_order(self):
        table = NarrativeTable(["Vaccine Code", "Occurrence Date"], "none")
        table.add_row(["http://example.org|A", "2024-01-01"])
        table.add_row(["http://example.org|B", "2024-02-01"])
        html = table.render()
        assert html.startswith('<div xmlns="http://www.w3.org/1999/xhtml"><table border="1">')
        assert "<thead><tr><th>Vaccine Code</th><th>Occurrence Date</th></tr></thead>" in html
        assert html.index("|A") < html.index("|B")
        assert html.count("<tr>") == 3
        assert html.endswith("</tbody></table></div>")

    def test_cells_are_escaped(self):
        table = NarrativeTable(["Condition"], "none")
        table.add_row(["<script>alert(1)</script> & co"])
        html = table.render()
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "&amp; co" in html

    def test_none_cells_render_empty(self):
        table = NarrativeTable(["A", "B"], "none")
        table.add_row(["x", None])
        assert "<td>x</td><td></td>" in table.render()

    def test_wrong_cell_count_rejected(self):
        table = NarrativeTable(["A", "B"], "none")
        with pytest.raises(ValueError):
            table.add_row(["only one"])
        assert table.rows == []


class TestPatientNarrative:
    def test_full_patient(self):
        patient = {
            "name": [{"given": ["Jane", "Anne"], "family": "Smith"}],
            "birthDate": "1980-02-15",
            "gender": "female",
        }
        narrative = patient_narrative(patient)
        assert narrative["status"] == "generated"
        assert "<b>Name:</b> Jane Anne Smith" in narrative["div"]
        assert "<b>Date of Birth:</b> 1980-02-15" in narrative["div"]
        assert "<b>Gender:</b> female" in narrative["div"]

    def test_missing_fields_are_unknown(self):
        div = patient_narrative({})["div"]
        assert div.count("Unknown") == 3

    def test_name_text_preferred(self):
        assert human_name({"name": [{"text": "Dr Jane Smith", "family": "Smith"}]}) == "Dr Jane Smith"
