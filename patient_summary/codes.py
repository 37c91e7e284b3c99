"""Fixed code systems and codes used in generated patient summaries."""

LOINC = "http://loinc.org"

PATIENT_SUMMARY_CODE = "60591-5"

PROBLEMS_CODE = "11450-4"
ALLERGIES_CODE = "48765-2"
MEDICATIONS_CODE = "10160-0"
IMMUNIZATIONS_CODE = "11369-6"
PROCEDURES_CODE = "47519-4"
PATIENT_STORY_CODE = "81338-6"

EMPTY_REASON_SYSTEM = "http://terminology.hl7.org/CodeSystem/list-empty-reason"
EMPTY_REASON_CODE = "unavailable"
EMPTY_REASON_TEXT = "No information available."

PARTICIPANT_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/provenance-participant-type"

ORG_IDENTIFIER_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/v2-0203"

XHTML_NS = "http://www.w3.org/1999/xhtml"
