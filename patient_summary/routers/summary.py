import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from patient_summary.codes import LOINC, PATIENT_SUMMARY_CODE
from patient_summary.config import SummarySettings, get_settings
from patient_summary.models.outcome import OperationOutcome
from patient_summary.models.requests import PatientIdentityQuery, SectionRequest, Token
from patient_summary.services.aggregator import DocumentDirectory, generate_patient_summary
from patient_summary.services.fhir_client import DirectoryError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fhir", tags=["patient-summary"])

FHIR_JSON = "application/fhir+json"


def get_directory(request: Request) -> DocumentDirectory:
    return request.app.state.directory


def _searchset(entries: list[dict[str, Any]], total: int) -> dict[str, Any]:
    return {"resourceType": "Bundle", "type": "searchset", "total": total, "entry": entries}


def _outcome_response(status_code: int, code: str, diagnostics: str) -> JSONResponse:
    outcome = OperationOutcome.single("error", code, diagnostics)
    return JSONResponse(outcome.to_fhir(), status_code=status_code, media_type=FHIR_JSON)


def _parse_section_lookbacks(values: list[str]) -> list[SectionRequest]:
    """Section requests from repeated and/or comma-separated ``section-lookback`` values."""
    requests = []
    for value in values:
        for part in value.split(","):
            if part.strip():
                requests.append(SectionRequest.parse(part))
    return requests


@router.get("/Bundle")
async def find_content_by_patient(
    query_name: str = Query(..., alias="_query"),
    patient_identifier: str = Query(..., alias="patient.identifier"),
    patient_birthdate: date = Query(..., alias="patient.birthdate"),
    patient_family: str = Query(..., alias="patient.family"),
    patient_gender: str = Query(..., alias="patient.gender"),
    content_code: str = Query(..., alias="content-code"),
    section_lookback: list[str] = Query([], alias="section-lookback"),
    directory: DocumentDirectory = Depends(get_directory),
    settings: SummarySettings = Depends(get_settings),
):
    """Find content for a patient; a Patient Summary content code builds a summary document.

    ``section-lookback`` values are ``system|code$date`` pairs naming optional
    sections (immunizations, procedure history, patient story) and their
    lookback dates.
    """
    if query_name != "findContentByPatient":
        return _outcome_response(400, "not-supported", f"Unknown named query {query_name!r}")
    try:
        identifier = Token.parse(patient_identifier)
        code = Token.parse(content_code)
        section_requests = _parse_section_lookbacks(section_lookback)
    except ValueError as e:
        return _outcome_response(400, "invalid", str(e))

    if not code.matches(LOINC, PATIENT_SUMMARY_CODE):
        logger.info("Unsupported content code %s|%s", code.system, code.value)
        return JSONResponse(_searchset([], 0), media_type=FHIR_JSON)

    query = PatientIdentityQuery(
        identifier=identifier,
        birthdate=patient_birthdate,
        family=patient_family,
        gender=patient_gender,
    )
    try:
        result = await generate_patient_summary(query, section_requests, directory, settings=settings)
    except DirectoryError as e:
        return _outcome_response(502, "exception", str(e))

    if result is None:
        return _outcome_response(404, "not-found", "No patient found with the given criteria.")
    if isinstance(result, OperationOutcome):
        entry = {"resource": result.to_fhir(), "search": {"mode": "outcome"}}
        return JSONResponse(_searchset([entry], 0), media_type=FHIR_JSON)
    entry = {"resource": result.to_fhir(), "search": {"mode": "match"}}
    return JSONResponse(_searchset([entry], 1), media_type=FHIR_JSON)
