from typing import Any

from pydantic import BaseModel


class OutcomeIssue(BaseModel):
    severity: str  # "fatal", "error", "warning", "information"
    code: str  # FHIR issue-type, e.g. "processing", "not-found", "invalid"
    diagnostics: str = ""


class OperationOutcome(BaseModel):
    """Diagnostic result returned in place of a document."""

    issue: list[OutcomeIssue] = []

    @classmethod
    def single(cls, severity: str, code: str, diagnostics: str) -> "OperationOutcome":
        return cls(issue=[OutcomeIssue(severity=severity, code=code, diagnostics=diagnostics)])

    def to_fhir(self) -> dict[str, Any]:
        return {
            "resourceType": "OperationOutcome",
            "issue": [issue.model_dump(exclude_defaults=False) for issue in self.issue],
        }


def multiple_patients_outcome() -> OperationOutcome:
    return OperationOutcome.single(
        "error", "processing", "Multiple patients found with the given criteria."
    )
