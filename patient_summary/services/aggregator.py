"""Patient summary generation: assembles one document Bundle from many.

Given a resolved Patient and the document Bundles stored for them, builds a
new canonical document with its own Composition, authoring Device and
Organization, the three mandatory sections (problems, allergies,
medications) and any optional sections requested.
"""

import copy
import logging
import uuid
from datetime import UTC, datetime
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from patient_summary.codes import (
    IMMUNIZATIONS_CODE,
    LOINC,
    ORG_IDENTIFIER_TYPE_SYSTEM,
    PATIENT_STORY_CODE,
    PATIENT_SUMMARY_CODE,
    PROCEDURES_CODE,
)
from patient_summary.config import SummarySettings, get_settings
from patient_summary.models.bundle import CanonicalBundle
from patient_summary.models.document import SourceDocument
from patient_summary.models.outcome import OperationOutcome, multiple_patients_outcome
from patient_summary.models.requests import PatientIdentityQuery, SectionRequest
from patient_summary.models.section import SectionDescriptor
from patient_summary.services.fhir_values import format_instant, urn_uuid
from patient_summary.services.narrative import patient_narrative
from patient_summary.services.sections import (
    ALLERGIES,
    IMMUNIZATIONS,
    MEDICATIONS,
    PROBLEMS,
    PROCEDURES,
    build_patient_story,
    build_section,
    lookback_cutoff,
)

logger = logging.getLogger(__name__)

PATIENT_ORIGIN = "patient"


class DocumentDirectory(Protocol):
    """The search services the summary depends on."""

    async def resolve_patient(self, query: PatientIdentityQuery) -> list[dict[str, Any]]: ...

    async def find_source_documents(self, patient: dict[str, Any]) -> list[dict[str, Any]] | None: ...


def summary_title(now: datetime, settings: SummarySettings) -> str:
    """Title such as ``MHR Generated Patient Summary - 10-June-2025 08:38 am AEST``."""
    local = now.astimezone(ZoneInfo(settings.title_timezone))
    meridiem = "am" if local.hour < 12 else "pm"
    stamp = f"{local.strftime('%d-%B-%Y %I:%M')} {meridiem} {local.strftime('%Z')}"
    return f"{settings.title_prefix} - {stamp}"


def authoring_device(device_id: str, org_url: str, settings: SummarySettings) -> dict[str, Any]:
    return {
        "resourceType": "Device",
        "id": device_id,
        "identifier": [
            {
                "system": settings.author_device_identifier_system,
                "value": settings.author_device_identifier_value,
            }
        ],
        "deviceName": [{"name": settings.author_device_name, "type": "manufacturer-name"}],
        "owner": {"reference": org_url},
    }


def authoring_organization(org_id: str, settings: SummarySettings) -> dict[str, Any]:
    return {
        "resourceType": "Organization",
        "id": org_id,
        "identifier": [
            {
                "type": {
                    "coding": [{"system": ORG_IDENTIFIER_TYPE_SYSTEM, "code": "XX"}],
                    "text": "Australian Business Number (ABN)",
                },
                "system": settings.author_org_identifier_system,
                "value": settings.author_org_identifier_value,
            }
        ],
        "name": settings.author_org_name,
        "telecom": [
            {"system": "email", "value": settings.author_org_email, "use": "work"},
            {"system": "phone", "value": settings.author_org_phone, "use": "work"},
        ],
        "address": [copy.deepcopy(settings.author_org_address)],
    }


def _optional_section(
    request: SectionRequest,
    documents: list[SourceDocument],
    bundle: CanonicalBundle,
    patient_url: str,
    settings: SummarySettings,
    now: datetime,
) -> SectionDescriptor | None:
    if request.is_loinc(IMMUNIZATIONS_CODE):
        cutoff = request.lookback or lookback_cutoff(now, settings.immunization_lookback_years)
        return build_section(IMMUNIZATIONS, documents, bundle, patient_url, settings, cutoff=cutoff, now=now)
    if request.is_loinc(PROCEDURES_CODE):
        cutoff = request.lookback or lookback_cutoff(now, settings.procedure_lookback_years)
        return build_section(PROCEDURES, documents, bundle, patient_url, settings, cutoff=cutoff, now=now)
    if request.is_loinc(PATIENT_STORY_CODE):
        return build_patient_story(documents, bundle, patient_url, settings, now=now)
    logger.info("Ignoring unsupported section %s|%s", request.code.system, request.code.value)
    return None


def build_patient_summary(
    patient: dict[str, Any],
    section_requests: list[SectionRequest] | None,
    documents: list[dict[str, Any]] | None,
    settings: SummarySettings | None = None,
    now: datetime | None = None,
) -> CanonicalBundle:
    """Assemble the patient summary document for one resolved patient.

    ``documents`` are the stored document Bundles for the patient (``None``
    when they could not be looked up). Problems, allergies and medications
    are always present; ``section_requests`` add immunizations, procedure
    history and patient story in request order.
    """
    settings = settings or get_settings()
    now = now or datetime.now(UTC)

    bundle = CanonicalBundle(
        profile=settings.bundle_profile,
        identifier_system=settings.bundle_identifier_system,
        timestamp=now,
    )

    patient_id = str(uuid.uuid4())
    device_id = str(uuid.uuid4())
    org_id = str(uuid.uuid4())
    composition_id = str(uuid.uuid4())
    patient_url = urn_uuid(patient_id)

    composition: dict[str, Any] = {
        "resourceType": "Composition",
        "id": composition_id,
        "status": "final",
        "type": {"coding": [{"system": LOINC, "code": PATIENT_SUMMARY_CODE}]},
        "subject": {"reference": patient_url},
        "date": format_instant(now),
        "author": [{"reference": urn_uuid(device_id)}],
        "custodian": {"reference": urn_uuid(org_id)},
        "title": summary_title(now, settings),
        "section": [],
    }
    bundle.append(urn_uuid(composition_id), composition)

    summary_patient = copy.deepcopy(patient)
    summary_patient["id"] = patient_id
    summary_patient["meta"] = {"profile": [settings.patient_profile]}
    summary_patient["text"] = patient_narrative(summary_patient)
    bundle.append(patient_url, summary_patient, origin=PATIENT_ORIGIN)

    bundle.append(urn_uuid(device_id), authoring_device(device_id, urn_uuid(org_id), settings))
    bundle.append(urn_uuid(org_id), authoring_organization(org_id, settings))

    source_documents = [SourceDocument(d) for d in documents or []]
    logger.info("Building patient summary from %d source documents", len(source_documents))

    for definition in (PROBLEMS, ALLERGIES, MEDICATIONS):
        section = build_section(definition, source_documents, bundle, patient_url, settings, now=now)
        composition["section"].append(section.to_fhir())

    for request in section_requests or []:
        section = _optional_section(request, source_documents, bundle, patient_url, settings, now)
        if section is not None:
            composition["section"].append(section.to_fhir())

    dropped = bundle.relink_references()
    if dropped:
        logger.warning("Dropped %d references to resources outside the summary", dropped)
    for issue in bundle.integrity_issues():
        logger.warning("Summary bundle integrity: %s", issue)
    return bundle


async def generate_patient_summary(
    query: PatientIdentityQuery,
    section_requests: list[SectionRequest] | None,
    directory: DocumentDirectory,
    settings: SummarySettings | None = None,
    now: datetime | None = None,
) -> CanonicalBundle | OperationOutcome | None:
    """Resolve the patient and build their summary.

    Returns ``None`` when no patient matches, an error OperationOutcome
    when several do, otherwise the summary bundle.
    """
    patients = await directory.resolve_patient(query)
    if not patients:
        logger.info("No patient matches identifier %s", query.identifier.value)
        return None
    if len(patients) > 1:
        logger.warning(
            "%d patients match identifier %s", len(patients), query.identifier.value
        )
        return multiple_patients_outcome()

    patient = patients[0]
    documents = await directory.find_source_documents(patient)
    if documents is None:
        logger.info("Patient %s has no correlation identifier; sections will be empty", patient.get("id"))
    return build_patient_summary(patient, section_requests, documents, settings=settings, now=now)
