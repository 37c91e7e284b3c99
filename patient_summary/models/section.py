from typing import Any

from pydantic import BaseModel, model_validator

from patient_summary.codes import EMPTY_REASON_CODE, EMPTY_REASON_SYSTEM, EMPTY_REASON_TEXT, LOINC


class EmptyReason(BaseModel):
    code: str = EMPTY_REASON_CODE
    text: str = EMPTY_REASON_TEXT


class SectionDescriptor(BaseModel):
    """One Composition section of the generated summary.

    ``entries`` holds fullUrls of entries in the canonical bundle and
    ``narrative`` the finished XHTML ``div``.
    """

    title: str
    code: str
    code_system: str = LOINC
    entries: list[str] = []
    narrative: str
    narrative_status: str = "generated"
    empty_reason: EmptyReason | None = None

    @model_validator(mode="after")
    def _empty_reason_only_when_empty(self) -> "SectionDescriptor":
        if self.entries and self.empty_reason is not None:
            raise ValueError(f"Section {self.title!r} has entries and an empty reason")
        return self

    def to_fhir(self) -> dict[str, Any]:
        section: dict[str, Any] = {
            "title": self.title,
            "code": {"coding": [{"system": self.code_system, "code": self.code}]},
            "text": {"status": self.narrative_status, "div": self.narrative},
        }
        if self.entries:
            section["entry"] = [{"reference": full_url} for full_url in self.entries]
        if self.empty_reason is not None:
            section["emptyReason"] = {
                "coding": [{"system": EMPTY_REASON_SYSTEM, "code": self.empty_reason.code}],
                "text": self.empty_reason.text,
            }
        return section
