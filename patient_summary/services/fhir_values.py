"""Tolerant readers over FHIR R4 JSON resources.

Source documents come from many producers, so every helper here accepts
missing or oddly-shaped elements and falls back to an empty value instead
of raising.
"""

import logging
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

URN_UUID_PREFIX = "urn:uuid:"


def urn_uuid(uuid_str: str) -> str:
    return f"{URN_UUID_PREFIX}{uuid_str}"


def first(items: Any) -> dict:
    """Return the first dict of a FHIR list element, or an empty dict."""
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def concept_text(codeable_concept: dict | None) -> str:
    """Human-readable text of a CodeableConcept: ``text``, else first coding display."""
    if not codeable_concept:
        return ""
    if codeable_concept.get("text"):
        return codeable_concept["text"]
    for coding in codeable_concept.get("coding") or []:
        if coding.get("display"):
            return coding["display"]
    return ""


def concept_token(codeable_concept: dict | None) -> str:
    """``system|code`` of the first coding, else the concept text."""
    if not codeable_concept:
        return ""
    coding = first(codeable_concept.get("coding"))
    if coding:
        system = coding.get("system")
        prefix = f"{system}|" if system else ""
        return prefix + (coding.get("code") or "")
    return codeable_concept.get("text") or ""


def first_code(codeable_concept: dict | None) -> str:
    """The code of the first coding (status concepts such as clinicalStatus)."""
    if not codeable_concept:
        return ""
    return first(codeable_concept.get("coding")).get("code") or ""


def parse_fhir_datetime(value: Any) -> datetime | None:
    """Parse a FHIR date/dateTime/instant into an aware datetime.

    Partial dates (``YYYY`` and ``YYYY-MM``) are read as the first instant of
    the period; values without an offset are read as UTC.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if len(text) == 4 and text.isdigit():
        text = f"{text}-01-01"
    elif len(text) == 7 and text[4] == "-":
        text = f"{text}-01"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Unparseable FHIR date %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def date_text(value: Any) -> str:
    """Render a FHIR date/dateTime as ``YYYY-MM-DD`` (empty when absent or invalid)."""
    parsed = parse_fhir_datetime(value)
    return parsed.strftime("%Y-%m-%d") if parsed else ""


def choice_date(resource: dict, prefix: str) -> str | None:
    """Raw date string of a ``[x]`` choice element such as ``onset[x]``.

    Prefers ``<prefix>DateTime``, then ``<prefix>Period.start``, then
    ``<prefix>String``; ages are rendered as ``<value> <unit>``.
    """
    if resource.get(f"{prefix}DateTime"):
        return resource[f"{prefix}DateTime"]
    period = resource.get(f"{prefix}Period") or {}
    if period.get("start"):
        return period["start"]
    if resource.get(f"{prefix}String"):
        return resource[f"{prefix}String"]
    age = resource.get(f"{prefix}Age") or {}
    if age.get("value") is not None:
        return f"{age['value']} {age.get('unit', '')}".strip()
    return None


def format_instant(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="seconds")


def identifiers_of(resource: dict | None) -> list[dict]:
    """Identifiers of a resource as a list, tolerating a single-object identifier."""
    if not resource:
        return []
    identifiers = resource.get("identifier")
    if isinstance(identifiers, dict):
        return [identifiers]
    if isinstance(identifiers, list):
        return [i for i in identifiers if isinstance(i, dict)]
    return []
