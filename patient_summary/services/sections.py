"""Section builders for the generated patient summary.

Five sections are tables over one or more clinical fact kinds and share
:func:`build_section`. The patient story section also carries free-text
narrative copied from matching sections of the source Compositions.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from html import escape

from patient_summary.codes import (
    ALLERGIES_CODE,
    IMMUNIZATIONS_CODE,
    LOINC,
    MEDICATIONS_CODE,
    PATIENT_STORY_CODE,
    PROBLEMS_CODE,
    PROCEDURES_CODE,
)
from patient_summary.config import SummarySettings
from patient_summary.models.bundle import CanonicalBundle
from patient_summary.models.document import SourceDocument
from patient_summary.models.section import EmptyReason, SectionDescriptor
from patient_summary.services import fact_kinds
from patient_summary.services.fact_kinds import FactKind
from patient_summary.services.fhir_values import concept_text
from patient_summary.services.narrative import NarrativeTable, text_div, xhtml_div
from patient_summary.services.provenance import import_resource, synthesize_provenance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectionDefinition:
    title: str
    code: str
    kinds: tuple[FactKind, ...]
    columns: tuple[str, ...]
    empty_text: str


PROBLEMS = SectionDefinition(
    title="Problems List",
    code=PROBLEMS_CODE,
    kinds=(fact_kinds.CONDITION,),
    columns=("Condition", "Clinical Status", "Verification Status", "Onset"),
    empty_text="No problems or conditions recorded.",
)

ALLERGIES = SectionDefinition(
    title="Allergies and Intolerances",
    code=ALLERGIES_CODE,
    kinds=(fact_kinds.ALLERGY_INTOLERANCE,),
    columns=("Allergy", "Clinical Status", "Verification Status", "Onset"),
    empty_text="No allergies or intolerances recorded.",
)

MEDICATIONS = SectionDefinition(
    title="Medication History",
    code=MEDICATIONS_CODE,
    kinds=(
        fact_kinds.MEDICATION_STATEMENT,
        fact_kinds.MEDICATION_REQUEST,
        fact_kinds.MEDICATION_DISPENSE,
        fact_kinds.MEDICATION_ADMINISTRATION,
    ),
    columns=("Type", "Medication", "Status", "Effective/Date", "Dosage"),
    empty_text="No medications recorded.",
)

IMMUNIZATIONS = SectionDefinition(
    title="Immunizations History",
    code=IMMUNIZATIONS_CODE,
    kinds=(fact_kinds.IMMUNIZATION,),
    columns=("Vaccine Code", "Occurrence Date"),
    empty_text="No immunizations recorded.",
)

PROCEDURES = SectionDefinition(
    title="Procedure History",
    code=PROCEDURES_CODE,
    kinds=(fact_kinds.PROCEDURE,),
    columns=("Procedure Code", "Performed Date", "Status"),
    empty_text="No procedures recorded.",
)

PATIENT_STORY_TITLE = "Patient Story"
PATIENT_STORY_EMPTY_TEXT = "No patient story recorded."


def _eligible(documents: list[SourceDocument], settings: SummarySettings) -> list[SourceDocument]:
    eligible = []
    for document in documents:
        if document.is_excluded(settings.excluded_document_system):
            logger.debug("Skipping excluded document %s", document.key)
            continue
        eligible.append(document)
    return eligible


def include_fact(
    kind: FactKind,
    entry: dict,
    document: SourceDocument,
    bundle: CanonicalBundle,
    patient_url: str,
    now: datetime | None = None,
) -> str:
    """Copy one fact into the bundle, relink it and record its provenance."""
    full_url = import_resource(bundle, document, entry)
    resource = bundle.get(full_url)
    kind.point_at_patient(resource, patient_url)
    if kind.link is not None:
        kind.link(resource, bundle, document)
    synthesize_provenance(bundle, document, full_url, now=now)
    return full_url


def build_section(
    definition: SectionDefinition,
    documents: list[SourceDocument],
    bundle: CanonicalBundle,
    patient_url: str,
    settings: SummarySettings,
    cutoff: datetime | None = None,
    now: datetime | None = None,
) -> SectionDescriptor:
    """Collect every qualifying fact of ``definition`` from ``documents``.

    Facts are appended to ``bundle`` with provenance, listed as section
    entries and tabulated in the section narrative. A section with no
    qualifying fact carries the "unavailable" empty reason instead.
    """
    kinds = {kind.resource_type: kind for kind in definition.kinds}
    table = NarrativeTable(list(definition.columns), definition.empty_text)
    entries: list[str] = []

    for document in _eligible(documents, settings):
        for entry, resource in document.resources(*kinds):
            kind = kinds[resource["resourceType"]]
            if not kind.within_lookback(resource, cutoff):
                logger.debug(
                    "%s %s predates lookback %s", kind.resource_type, resource.get("id"), cutoff
                )
                continue
            full_url = include_fact(kind, entry, document, bundle, patient_url, now=now)
            entries.append(full_url)
            if kind.row is not None:
                table.add_row(kind.row(bundle.get(full_url)))

    logger.info("Section %r: %d entries", definition.title, len(entries))
    return SectionDescriptor(
        title=definition.title,
        code=definition.code,
        entries=entries,
        narrative=table.render(),
        empty_reason=None if entries else EmptyReason(),
    )


def _story_fragments(document: SourceDocument) -> list[str]:
    fragments = []
    for _, composition in document.resources("Composition"):
        for section in composition.get("section") or []:
            codings = (section.get("code") or {}).get("coding") or []
            if not any(c.get("system") == LOINC and c.get("code") == PATIENT_STORY_CODE for c in codings):
                continue
            div = (section.get("text") or {}).get("div")
            if div:
                fragments.append(div)
    return fragments


def build_patient_story(
    documents: list[SourceDocument],
    bundle: CanonicalBundle,
    patient_url: str,
    settings: SummarySettings,
    now: datetime | None = None,
) -> SectionDescriptor:
    """Goals as entries plus the patient-story narrative of every source Composition."""
    entries: list[str] = []
    fragments: list[str] = []
    goal_descriptions: list[str] = []

    for document in _eligible(documents, settings):
        for entry, _ in document.resources(fact_kinds.GOAL.resource_type):
            full_url = include_fact(fact_kinds.GOAL, entry, document, bundle, patient_url, now=now)
            entries.append(full_url)
            description = concept_text(bundle.get(full_url).get("description"))
            if description:
                goal_descriptions.append(description)
        fragments.extend(_story_fragments(document))

    logger.info("Section %r: %d goals, %d narratives", PATIENT_STORY_TITLE, len(entries), len(fragments))
    if not entries and not fragments:
        return SectionDescriptor(
            title=PATIENT_STORY_TITLE,
            code=PATIENT_STORY_CODE,
            narrative=text_div(PATIENT_STORY_EMPTY_TEXT),
            narrative_status="additional",
            empty_reason=EmptyReason(),
        )

    inner = "".join(fragments)
    if goal_descriptions:
        items = "".join(f"<li>{escape(d)}</li>" for d in goal_descriptions)
        inner += f"<p><b>Goals</b></p><ul>{items}</ul>"
    elif not inner:
        inner = escape(f"{len(entries)} goal(s) recorded.")
    return SectionDescriptor(
        title=PATIENT_STORY_TITLE,
        code=PATIENT_STORY_CODE,
        entries=entries,
        narrative=xhtml_div(inner),
        narrative_status="additional",
    )


def lookback_cutoff(now: datetime, years: int) -> datetime:
    """``now`` minus ``years`` 365-day years."""
    return now.astimezone(UTC) - timedelta(days=365 * years)
