"""Cross-document identity matching for actor resources."""

from patient_summary.models.bundle import CanonicalBundle
from patient_summary.services.fhir_values import identifiers_of

ACTOR_TYPES = frozenset({"Organization", "Patient", "RelatedPerson", "Device", "Practitioner"})


def _identifier_keys(resource: dict) -> set[tuple[str, str]]:
    keys = set()
    for identifier in identifiers_of(resource):
        system = identifier.get("system")
        value = identifier.get("value")
        if system and value:
            keys.add((system, value))
    return keys


def find_matching_actor(candidate: dict | None, bundle: CanonicalBundle) -> str | None:
    """Return the fullUrl of an existing bundle entry representing the same actor.

    Two actors match when they have the same resource type and share at least
    one (system, value) identifier. Unsupported types and resources without
    usable identifiers never match.
    """
    if not candidate:
        return None
    resource_type = candidate.get("resourceType")
    if resource_type not in ACTOR_TYPES:
        return None
    wanted = _identifier_keys(candidate)
    if not wanted:
        return None
    for full_url, resource in bundle.resources(resource_type):
        if wanted & _identifier_keys(resource):
            return full_url
    return None
