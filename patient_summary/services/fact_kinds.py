"""The closed set of clinical fact kinds a summary section can include.

Each kind knows which resource type it covers, which elements point at the
patient, which date (if any) the lookback filter applies to, how to relink
the actors or medications it references, and how it reads as a narrative
table row.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from patient_summary.models.bundle import CanonicalBundle
from patient_summary.models.document import SourceDocument, reference_keys
from patient_summary.services.fhir_values import (
    choice_date,
    concept_text,
    concept_token,
    date_text,
    first,
    first_code,
    parse_fhir_datetime,
)
from patient_summary.services.provenance import import_resource, resolve_actor

logger = logging.getLogger(__name__)

Linker = Callable[[dict[str, Any], CanonicalBundle, SourceDocument], None]


@dataclass(frozen=True)
class FactKind:
    resource_type: str
    patient_fields: tuple[str, ...] = ("subject",)
    event_date: Callable[[dict[str, Any]], str | None] | None = None
    link: Linker | None = None
    row: Callable[[dict[str, Any]], list[str]] | None = None

    def within_lookback(self, resource: dict[str, Any], cutoff: datetime | None) -> bool:
        """True when the fact is on or after ``cutoff``.

        Facts without the dated element pass; facts whose date cannot be read
        do not.
        """
        if cutoff is None or self.event_date is None:
            return True
        raw = self.event_date(resource)
        if raw is None:
            return True
        when = parse_fhir_datetime(raw)
        if when is None:
            return False
        return when >= cutoff

    def point_at_patient(self, resource: dict[str, Any], patient_url: str) -> None:
        for field in self.patient_fields:
            resource[field] = {"reference": patient_url}


def _status_row(resource: dict[str, Any]) -> list[str]:
    return [
        concept_text(resource.get("code")),
        first_code(resource.get("clinicalStatus")),
        first_code(resource.get("verificationStatus")),
        choice_date(resource, "onset") or "",
    ]


def _medication_display(resource: dict[str, Any]) -> str:
    reference = resource.get("medicationReference") or {}
    if reference.get("display"):
        return reference["display"]
    return concept_text(resource.get("medicationCodeableConcept"))


def _medication_row(
    effective: Callable[[dict[str, Any]], str | None],
    dosage: Callable[[dict[str, Any]], str | None],
) -> Callable[[dict[str, Any]], list[str]]:
    def row(resource: dict[str, Any]) -> list[str]:
        return [
            resource.get("resourceType", ""),
            _medication_display(resource),
            resource.get("status") or "",
            effective(resource) or "",
            dosage(resource) or "",
        ]

    return row


def _find_medication(document: SourceDocument, ref: str) -> dict[str, Any] | None:
    if ref.startswith("#"):
        wanted = ref[1:]
        for _, medication in document.resources("Medication"):
            if medication.get("id") == wanted:
                return medication
        return None
    resource = document.resolve(ref)
    if resource is not None and resource.get("resourceType") == "Medication":
        return resource
    return None


def link_medication(resource: dict[str, Any], bundle: CanonicalBundle, document: SourceDocument) -> None:
    """Import the Medication a medication fact references, once per source document."""
    reference = resource.get("medicationReference")
    if not isinstance(reference, dict) or not reference.get("reference"):
        return
    ref = reference["reference"]
    # Contained medications travel with the copied resource
    if ref.startswith("#") and any(c.get("id") == ref[1:] for c in resource.get("contained") or []):
        return
    medication = _find_medication(document, ref)
    if medication is None:
        logger.warning("Medication %s not found in document %s", ref, document.key)
        return

    # Medication ids are document-local
    entry = next(e for e, r in document.resources("Medication") if r is medication)
    full_url = None
    for key in reference_keys(entry):
        full_url = bundle.resolve_alias(document.key, key)
        if full_url is not None:
            break
    if full_url is None:
        full_url = import_resource(bundle, document, entry)
        logger.debug("Imported Medication %s as %s", medication.get("id"), full_url)
    reference["reference"] = full_url
    if not reference.get("display"):
        display = concept_text(medication.get("code"))
        if display:
            reference["display"] = display


def link_performers(resource: dict[str, Any], bundle: CanonicalBundle, document: SourceDocument) -> None:
    """Point each performer at an equivalent bundle actor, importing it if new."""
    for performer in resource.get("performer") or []:
        for field in ("actor", "onBehalfOf"):
            reference = performer.get(field)
            if isinstance(reference, dict) and reference.get("reference"):
                performer[field] = resolve_actor(bundle, document, reference)


def _performed(resource: dict[str, Any]) -> str | None:
    if resource.get("performedDateTime"):
        return resource["performedDateTime"]
    return (resource.get("performedPeriod") or {}).get("start")


CONDITION = FactKind("Condition", row=_status_row)

ALLERGY_INTOLERANCE = FactKind("AllergyIntolerance", patient_fields=("patient",), row=_status_row)

MEDICATION_STATEMENT = FactKind(
    "MedicationStatement",
    link=link_medication,
    row=_medication_row(
        lambda r: choice_date(r, "effective"),
        lambda r: first(r.get("dosage")).get("text"),
    ),
)

MEDICATION_REQUEST = FactKind(
    "MedicationRequest",
    link=link_medication,
    row=_medication_row(
        lambda r: r.get("authoredOn"),
        lambda r: first(r.get("dosageInstruction")).get("text"),
    ),
)

MEDICATION_DISPENSE = FactKind(
    "MedicationDispense",
    link=link_medication,
    row=_medication_row(
        lambda r: r.get("whenHandedOver"),
        lambda r: first(r.get("dosageInstruction")).get("text"),
    ),
)

MEDICATION_ADMINISTRATION = FactKind(
    "MedicationAdministration",
    link=link_medication,
    row=_medication_row(
        lambda r: choice_date(r, "effective"),
        lambda r: (r.get("dosage") or {}).get("text"),
    ),
)

IMMUNIZATION = FactKind(
    "Immunization",
    patient_fields=("patient",),
    event_date=lambda r: r.get("occurrenceDateTime"),
    row=lambda r: [concept_token(r.get("vaccineCode")), date_text(r.get("occurrenceDateTime"))],
)

PROCEDURE = FactKind(
    "Procedure",
    event_date=_performed,
    link=link_performers,
    row=lambda r: [concept_token(r.get("code")), date_text(_performed(r)), r.get("status") or ""],
)

GOAL = FactKind("Goal", patient_fields=("subject", "expressedBy"))
