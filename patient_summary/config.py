import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

load_dotenv()

# Source documents whose Bundle.identifier.system equals this marker are skipped
EXCLUDED_DOCUMENT_SYSTEM = os.getenv("EXCLUDED_DOCUMENT_SYSTEM", "http://myportal.org")

# National identifier used to correlate source documents with the patient
IHI_SYSTEM = os.getenv("IHI_SYSTEM", "http://ns.electronichealth.net.au/id/hi/ihi/1.0")

BUNDLE_PROFILE = os.getenv(
    "BUNDLE_PROFILE",
    "http://ns.electronichealth.net.au/fhir/mhr/ps/sparked-testing/StructureDefinition/mhr-au-ps-bundle",
)
PATIENT_PROFILE = os.getenv(
    "PATIENT_PROFILE",
    "http://ns.electronichealth.net.au/fhir/mhr/ps/sparked-testing/StructureDefinition/mhr-au-ps-patient",
)
BUNDLE_IDENTIFIER_SYSTEM = os.getenv("BUNDLE_IDENTIFIER_SYSTEM", "http://mhr-operator/fhir/identifier")

SUMMARY_TITLE_PREFIX = os.getenv("SUMMARY_TITLE_PREFIX", "MHR Generated Patient Summary")
SUMMARY_TITLE_TIMEZONE = os.getenv("SUMMARY_TITLE_TIMEZONE", "Australia/Sydney")

IMMUNIZATION_LOOKBACK_YEARS = int(os.getenv("IMMUNIZATION_LOOKBACK_YEARS", "2"))
PROCEDURE_LOOKBACK_YEARS = int(os.getenv("PROCEDURE_LOOKBACK_YEARS", "5"))

# FHIR R4 server holding Patient and document Bundle resources (empty = disabled)
FHIR_SERVER_URL = os.getenv("FHIR_SERVER_URL", "")
FHIR_TIMEOUT = float(os.getenv("FHIR_TIMEOUT", "30"))
FHIR_PAGE_LIMIT = int(os.getenv("FHIR_PAGE_LIMIT", "20"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Fixed authoring identities for generated summaries
AUTHOR_DEVICE_IDENTIFIER_SYSTEM = "http://ns.electronichealth.net.au/id/pcehr/paid/1.0"
AUTHOR_DEVICE_IDENTIFIER_VALUE = "8003640003000026"
AUTHOR_DEVICE_NAME = "My Health Record"

AUTHOR_ORG_IDENTIFIER_SYSTEM = "http://hl7.org.au/id/abn"
AUTHOR_ORG_IDENTIFIER_VALUE = "84425496912"
AUTHOR_ORG_NAME = "My Health Record system operator"
AUTHOR_ORG_EMAIL = "help@digitalhealth.gov.au"
AUTHOR_ORG_PHONE = "1300 901 001"
AUTHOR_ORG_ADDRESS = {
    "line": ["Level 25, 175 Liverpool Street"],
    "city": "Sydney",
    "state": "NSW",
    "postalCode": "2000",
    "country": "Australia",
}


class SummarySettings(BaseModel):
    """Immutable configuration shared by every aggregation request."""

    model_config = ConfigDict(frozen=True)

    excluded_document_system: str = EXCLUDED_DOCUMENT_SYSTEM
    ihi_system: str = IHI_SYSTEM
    bundle_profile: str = BUNDLE_PROFILE
    patient_profile: str = PATIENT_PROFILE
    bundle_identifier_system: str = BUNDLE_IDENTIFIER_SYSTEM
    title_prefix: str = SUMMARY_TITLE_PREFIX
    title_timezone: str = SUMMARY_TITLE_TIMEZONE
    immunization_lookback_years: int = IMMUNIZATION_LOOKBACK_YEARS
    procedure_lookback_years: int = PROCEDURE_LOOKBACK_YEARS

    author_device_identifier_system: str = AUTHOR_DEVICE_IDENTIFIER_SYSTEM
    author_device_identifier_value: str = AUTHOR_DEVICE_IDENTIFIER_VALUE
    author_device_name: str = AUTHOR_DEVICE_NAME

    author_org_identifier_system: str = AUTHOR_ORG_IDENTIFIER_SYSTEM
    author_org_identifier_value: str = AUTHOR_ORG_IDENTIFIER_VALUE
    author_org_name: str = AUTHOR_ORG_NAME
    author_org_email: str = AUTHOR_ORG_EMAIL
    author_org_phone: str = AUTHOR_ORG_PHONE
    author_org_address: dict[str, object] = AUTHOR_ORG_ADDRESS


@lru_cache(maxsize=1)
def get_settings() -> SummarySettings:
    """Return the process-wide settings, built once from the environment."""
    return SummarySettings()
