"""XHTML narrative generation for sections and the summary Patient."""

from html import escape

from patient_summary.codes import XHTML_NS
from patient_summary.services.fhir_values import date_text, first


def xhtml_div(inner: str) -> str:
    return f'<div xmlns="{XHTML_NS}">{inner}</div>'


def text_div(text: str) -> str:
    return xhtml_div(escape(text))


class NarrativeTable:
    """Row accumulator for one section's summary table.

    Rows are kept as plain cell values and only rendered to markup in
    :meth:`render`; cell text is escaped.
    """

    def __init__(self, columns: list[str], empty_text: str) -> None:
        self.columns = list(columns)
        self.empty_text = empty_text
        self.rows: list[list[str]] = []

    def add_row(self, cells: list[str | None]) -> None:
        if len(cells) != len(self.columns):
            raise ValueError(f"Expected {len(self.columns)} cells, got {len(cells)}")
        self.rows.append(["" if cell is None else str(cell) for cell in cells])

    def render(self) -> str:
        if not self.rows:
            return text_div(self.empty_text)
        header = "".join(f"<th>{escape(column)}</th>" for column in self.columns)
        body = "".join(
            "<tr>" + "".join(f"<td>{escape(cell)}</td>" for cell in row) + "</tr>"
            for row in self.rows
        )
        return xhtml_div(
            f'<table border="1"><thead><tr>{header}</tr></thead><tbody>{body}</tbody></table>'
        )


def human_name(patient: dict) -> str:
    name = first(patient.get("name"))
    if not name:
        return ""
    if name.get("text"):
        return name["text"]
    parts = [*(name.get("prefix") or []), *(name.get("given") or [])]
    if name.get("family"):
        parts.append(name["family"])
    parts.extend(name.get("suffix") or [])
    return " ".join(p for p in parts if p)


def patient_narrative(patient: dict) -> dict:
    """Generated narrative listing the patient's name, date of birth and gender."""
    name = human_name(patient) or "Unknown"
    birth_date = date_text(patient.get("birthDate")) or "Unknown"
    gender = patient.get("gender") or "Unknown"
    div = xhtml_div(
        f"<b>Name:</b> {escape(name)}"
        f"<br/><b>Date of Birth:</b> {escape(birth_date)}"
        f"<br/><b>Gender:</b> {escape(gender)}"
    )
    return {"status": "generated", "div": div}
