"""Tests for the summary section builders."""

from datetime import UTC, datetime, timedelta

from factories import (
    make_allergy,
    make_condition,
    make_document,
    make_goal,
    make_immunization,
    make_organization,
    make_practitioner,
    make_procedure,
)
from patient_summary.models.bundle import CanonicalBundle
from patient_summary.models.document import SourceDocument
from patient_summary.services.fact_kinds import IMMUNIZATION, PROCEDURE
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

PATIENT_URL = "urn:uuid:00000000-0000-0000-0000-000000000001"


def _bundle() -> CanonicalBundle:
    bundle = CanonicalBundle(
        profile="http://example.org/profile",
        identifier_system="http://example.org/ids",
        timestamp=datetime(2025, 6, 9, 22, 38, tzinfo=UTC),
    )
    bundle.append(PATIENT_URL, {"resourceType": "Patient", "id": PATIENT_URL.removeprefix("urn:uuid:")})
    return bundle


def _docs(*bundles: dict) -> list[SourceDocument]:
    return [SourceDocument(b) for b in bundles]


def _medication_document(doc_value: str, medication_id: str = "med-1", name: str = "Metformin 500mg") -> dict:
    medication = {
        "resourceType": "Medication",
        "id": medication_id,
        "code": {"coding": [{"system": "http://snomed.info/sct", "code": "123"}], "text": name},
    }
    raw = make_document(doc_value, [medication])
    medication_url = raw["entry"][-1]["fullUrl"]
    statement = {
        "resourceType": "MedicationStatement",
        "id": f"ms-{doc_value}",
        "status": "active",
        "medicationReference": {"reference": medication_url},
        "subject": {"reference": "Patient/source-patient"},
        "effectiveDateTime": "2024-02-01",
        "dosage": [{"text": "1 tablet twice daily"}],
    }
    raw["entry"].append({"fullUrl": f"urn:uuid:{doc_value}-statement", "resource": statement})
    return raw


# --- Mandatory sections ---


class TestProblemsSection:
    def test_condition_copied_with_provenance(self, settings, now):
        bundle = _bundle()
        section = build_section(
            PROBLEMS, _docs(make_document("D1", [make_condition("Diabetes")])), bundle, PATIENT_URL, settings, now=now
        )
        assert len(section.entries) == 1
        condition = bundle.get(section.entries[0])
        assert condition["subject"] == {"reference": PATIENT_URL}
        assert section.empty_reason is None
        assert "<td>Diabetes</td><td>active</td><td>confirmed</td><td>2019-04-01</td>" in section.narrative
        provenances = [p for _, p in bundle.resources("Provenance")]
        assert len(provenances) == 1
        assert provenances[0]["target"] == [{"reference": section.entries[0]}]

    def test_empty_section(self, settings, now):
        section = build_section(PROBLEMS, [], _bundle(), PATIENT_URL, settings, now=now)
        assert section.entries == []
        assert section.empty_reason is not None
        assert "No problems or conditions recorded." in section.narrative
        assert section.to_fhir()["emptyReason"]["coding"][0]["code"] == "unavailable"

    def test_excluded_document_skipped(self, settings, now):
        raw = make_document("D1", [make_condition()], doc_system="http://myportal.org")
        bundle = _bundle()
        section = build_section(PROBLEMS, _docs(raw), bundle, PATIENT_URL, settings, now=now)
        assert section.entries == []
        assert len(bundle.entries) == 1

    def test_facts_from_every_document_in_order(self, settings, now):
        docs = _docs(
            make_document("D1", [make_condition("Asthma")]),
            make_document("D2", [make_condition("Gout"), make_condition("Eczema")]),
        )
        section = build_section(PROBLEMS, docs, _bundle(), PATIENT_URL, settings, now=now)
        assert len(section.entries) == 3
        narrative = section.narrative
        assert narrative.index("Asthma") < narrative.index("Gout") < narrative.index("Eczema")


class TestAllergiesSection:
    def test_patient_element_rewritten(self, settings, now):
        bundle = _bundle()
        section = build_section(
            ALLERGIES, _docs(make_document("D1", [make_allergy()])), bundle, PATIENT_URL, settings, now=now
        )
        allergy = bundle.get(section.entries[0])
        assert allergy["patient"] == {"reference": PATIENT_URL}
        assert "<td>Penicillin</td>" in section.narrative
        assert "<td>childhood</td>" in section.narrative


class TestMedicationsSection:
    def test_medication_imported_and_reference_rewritten(self, settings, now):
        bundle = _bundle()
        section = build_section(
            MEDICATIONS, _docs(_medication_document("D1")), bundle, PATIENT_URL, settings, now=now
        )
        assert len(section.entries) == 1
        statement = bundle.get(section.entries[0])
        medication_url = statement["medicationReference"]["reference"]
        assert bundle.get(medication_url)["resourceType"] == "Medication"
        assert statement["medicationReference"]["display"] == "Metformin 500mg"
        assert (
            "<td>MedicationStatement</td><td>Metformin 500mg</td><td>active</td>"
            "<td>2024-02-01</td><td>1 tablet twice daily</td>"
        ) in section.narrative
        assert bundle.integrity_issues() == []

    def test_same_id_in_two_documents_kept_apart(self, settings, now):
        bundle = _bundle()
        section = build_section(
            MEDICATIONS,
            _docs(
                _medication_document("D1", name="Paracetamol"),
                _medication_document("D2", name="Warfarin"),
            ),
            bundle,
            PATIENT_URL,
            settings,
            now=now,
        )
        medications = [m["code"]["text"] for _, m in bundle.resources("Medication")]
        assert medications == ["Paracetamol", "Warfarin"]
        displays = [bundle.get(url)["medicationReference"]["display"] for url in section.entries]
        assert displays == ["Paracetamol", "Warfarin"]
        for url in section.entries:
            statement = bundle.get(url)
            linked = bundle.get(statement["medicationReference"]["reference"])
            assert linked["code"]["text"] == statement["medicationReference"]["display"]
        assert "<td>Paracetamol</td>" in section.narrative
        assert "<td>Warfarin</td>" in section.narrative

    def test_medication_shared_within_document_imported_once(self, settings, now):
        raw = _medication_document("D1")
        second = dict(raw["entry"][-1]["resource"], id="ms-second")
        second["medicationReference"] = {"reference": "Medication/med-1"}
        raw["entry"].append({"fullUrl": "urn:uuid:D1-second", "resource": second})
        bundle = _bundle()
        section = build_section(MEDICATIONS, _docs(raw), bundle, PATIENT_URL, settings, now=now)
        assert len(section.entries) == 2
        assert len(list(bundle.resources("Medication"))) == 1
        refs = {bundle.get(url)["medicationReference"]["reference"] for url in section.entries}
        assert len(refs) == 1

    def test_hash_reference_resolves_document_medication(self, settings, now):
        raw = _medication_document("D1")
        raw["entry"][-1]["resource"]["medicationReference"] = {"reference": "#med-1"}
        bundle = _bundle()
        section = build_section(MEDICATIONS, _docs(raw), bundle, PATIENT_URL, settings, now=now)
        statement = bundle.get(section.entries[0])
        assert bundle.get(statement["medicationReference"]["reference"])["resourceType"] == "Medication"

    def test_contained_medication_left_in_place(self, settings, now):
        raw = _medication_document("D1", medication_id="other")
        statement = raw["entry"][-1]["resource"]
        statement["contained"] = [{"resourceType": "Medication", "id": "med-1", "code": {"text": "Inline"}}]
        statement["medicationReference"] = {"reference": "#med-1"}
        bundle = _bundle()
        section = build_section(MEDICATIONS, _docs(raw), bundle, PATIENT_URL, settings, now=now)
        assert bundle.get(section.entries[0])["medicationReference"] == {"reference": "#med-1"}
        assert len(list(bundle.resources("Medication"))) == 0

    def test_medication_request_with_codeable_concept(self, settings, now):
        request = {
            "resourceType": "MedicationRequest",
            "id": "mr-1",
            "status": "active",
            "medicationCodeableConcept": {"text": "Amoxicillin"},
            "subject": {"reference": "Patient/source-patient"},
            "authoredOn": "2024-05-05",
            "dosageInstruction": [{"text": "500mg three times daily"}],
        }
        bundle = _bundle()
        section = build_section(
            MEDICATIONS, _docs(make_document("D1", [request])), bundle, PATIENT_URL, settings, now=now
        )
        assert "<td>MedicationRequest</td><td>Amoxicillin</td>" in section.narrative
        assert len(list(bundle.resources("Medication"))) == 0


# --- Optional sections ---


class TestImmunizationsSection:
    def test_lookback_boundary_is_inclusive(self, settings, now):
        cutoff = lookback_cutoff(now, 2)
        on_cutoff = make_immunization(cutoff.isoformat(), code="ON")
        day_before = make_immunization((cutoff - timedelta(days=1)).isoformat(), code="BEFORE")
        bundle = _bundle()
        section = build_section(
            IMMUNIZATIONS,
            _docs(make_document("D1", [on_cutoff, day_before])),
            bundle,
            PATIENT_URL,
            settings,
            cutoff=cutoff,
            now=now,
        )
        assert len(section.entries) == 1
        assert "http://example.org/vaccines|ON" in section.narrative
        assert "BEFORE" not in section.narrative
        assert bundle.get(section.entries[0])["patient"] == {"reference": PATIENT_URL}

    def test_date_only_on_cutoff_day_reads_as_midnight(self, settings, now):
        cutoff = lookback_cutoff(now, 2)
        same_day = make_immunization(cutoff.date().isoformat(), code="SAMEDAY")
        next_day = make_immunization((cutoff + timedelta(days=1)).date().isoformat(), code="NEXTDAY")
        section = build_section(
            IMMUNIZATIONS,
            _docs(make_document("D1", [same_day, next_day])),
            _bundle(),
            PATIENT_URL,
            settings,
            cutoff=cutoff,
            now=now,
        )
        # The default cutoff keeps the time of day, so midnight on its date falls before it
        assert cutoff.time() != datetime.min.time()
        assert len(section.entries) == 1
        assert "NEXTDAY" in section.narrative
        assert "SAMEDAY" not in section.narrative

    def test_undated_immunization_included(self, settings, now):
        section = build_section(
            IMMUNIZATIONS,
            _docs(make_document("D1", [make_immunization(None)])),
            _bundle(),
            PATIENT_URL,
            settings,
            cutoff=lookback_cutoff(now, 2),
            now=now,
        )
        assert len(section.entries) == 1

    def test_all_too_old(self, settings, now):
        section = build_section(
            IMMUNIZATIONS,
            _docs(make_document("D1", [make_immunization("2001-01-01")])),
            _bundle(),
            PATIENT_URL,
            settings,
            cutoff=lookback_cutoff(now, 2),
            now=now,
        )
        assert section.entries == []
        assert section.empty_reason is not None
        assert "No immunizations recorded." in section.narrative


class TestProceduresSection:
    def test_lookback_uses_performed_date(self, settings, now):
        cutoff = lookback_cutoff(now, 5)
        kept = make_procedure(cutoff.isoformat())
        dropped = make_procedure((cutoff - timedelta(days=1)).isoformat())
        section = build_section(
            PROCEDURES,
            _docs(make_document("D1", [kept, dropped])),
            _bundle(),
            PATIENT_URL,
            settings,
            cutoff=cutoff,
            now=now,
        )
        assert len(section.entries) == 1
        assert "http://snomed.info/sct|80146002" in section.narrative

    def test_performed_period_start_used(self, settings, now):
        procedure = make_procedure(None)
        procedure["performedPeriod"] = {"start": "2024-01-10", "end": "2024-01-11"}
        section = build_section(
            PROCEDURES,
            _docs(make_document("D1", [procedure])),
            _bundle(),
            PATIENT_URL,
            settings,
            cutoff=lookback_cutoff(now, 5),
            now=now,
        )
        assert "<td>2024-01-10</td><td>completed</td>" in section.narrative

    def test_performer_resolved_into_bundle(self, settings, now):
        practitioner = make_practitioner("PR7")
        raw = make_document("D1", [practitioner])
        practitioner_url = raw["entry"][-1]["fullUrl"]
        raw["entry"].append({"fullUrl": "urn:uuid:proc-1", "resource": make_procedure("2024-01-01", practitioner_url)})
        bundle = _bundle()

        section = build_section(PROCEDURES, _docs(raw), bundle, PATIENT_URL, settings, now=now)

        procedure = bundle.get(section.entries[0])
        performer_url = procedure["performer"][0]["actor"]["reference"]
        assert bundle.get(performer_url)["identifier"][0]["value"] == "PR7"
        assert bundle.integrity_issues() == []

    def test_performer_shared_with_author(self, settings, now):
        practitioner = make_practitioner("PR7")
        raw = make_document("D1", [], author=practitioner)
        author_url = raw["entry"][1]["fullUrl"]
        raw["entry"].append({"fullUrl": "urn:uuid:proc-1", "resource": make_procedure("2024-01-01", author_url)})
        bundle = _bundle()

        build_section(PROCEDURES, _docs(raw), bundle, PATIENT_URL, settings, now=now)

        assert len(list(bundle.resources("Practitioner"))) == 1


class TestLookback:
    def test_cutoff_uses_365_day_years(self, now):
        assert lookback_cutoff(now, 2) == now - timedelta(days=730)

    def test_undated_fact_passes(self):
        assert IMMUNIZATION.within_lookback({}, datetime(2024, 1, 1, tzinfo=UTC))

    def test_unparseable_date_fails(self):
        resource = {"occurrenceDateTime": "not a date"}
        assert not IMMUNIZATION.within_lookback(resource, datetime(2024, 1, 1, tzinfo=UTC))

    def test_partial_date_reads_as_period_start(self):
        assert PROCEDURE.within_lookback({"performedDateTime": "2024"}, datetime(2024, 1, 1, tzinfo=UTC))
        assert not PROCEDURE.within_lookback({"performedDateTime": "2023"}, datetime(2024, 1, 1, tzinfo=UTC))


# --- Patient story ---


class TestPatientStory:
    def test_goals_and_narrative(self, settings, now):
        raw = make_document(
            "D1",
            [make_goal("Walk 5km daily")],
            story_html='<div xmlns="http://www.w3.org/1999/xhtml"><p>Enjoys gardening.</p></div>',
        )
        bundle = _bundle()
        section = build_patient_story(_docs(raw), bundle, PATIENT_URL, settings, now=now)
        assert len(section.entries) == 1
        goal = bundle.get(section.entries[0])
        assert goal["subject"] == {"reference": PATIENT_URL}
        assert goal["expressedBy"] == {"reference": PATIENT_URL}
        assert section.narrative_status == "additional"
        assert "Enjoys gardening." in section.narrative
        assert "<li>Walk 5km daily</li>" in section.narrative
        assert section.to_fhir()["code"]["coding"][0]["code"] == "81338-6"

    def test_narrative_only(self, settings, now):
        raw = make_document("D1", [], story_html='<div xmlns="http://www.w3.org/1999/xhtml">Story</div>')
        section = build_patient_story(_docs(raw), _bundle(), PATIENT_URL, settings, now=now)
        assert section.entries == []
        assert section.empty_reason is None
        assert "Story" in section.narrative

    def test_goals_only(self, settings, now):
        section = build_patient_story(
            _docs(make_document("D1", [make_goal()])), _bundle(), PATIENT_URL, settings, now=now
        )
        assert section.empty_reason is None
        assert len(section.entries) == 1

    def test_nothing_recorded(self, settings, now):
        section = build_patient_story(
            _docs(make_document("D1", [make_condition()])), _bundle(), PATIENT_URL, settings, now=now
        )
        assert section.entries == []
        assert section.empty_reason is not None
        assert "No patient story recorded." in section.narrative

    def test_excluded_document_skipped(self, settings, now):
        raw = make_document("D1", [make_goal()], doc_system="http://myportal.org", story_html="<div>x</div>")
        section = build_patient_story(_docs(raw), _bundle(), PATIENT_URL, settings, now=now)
        assert section.empty_reason is not None
