"""Read-only view over a stored source document Bundle."""

from typing import Any

from patient_summary.services.fhir_values import first


class SourceDocument:
    """A document Bundle whose first entry is its Composition.

    The wrapped dict is never modified; callers copy resources before
    changing them.
    """

    def __init__(self, bundle: dict[str, Any]) -> None:
        self.bundle = bundle
        self.entries: list[dict[str, Any]] = [
            e for e in bundle.get("entry") or [] if isinstance(e, dict) and e.get("resource")
        ]
        ident = bundle.get("identifier")
        self.identifier: dict[str, Any] = ident if isinstance(ident, dict) else first(ident)
        self.timestamp: str | None = bundle.get("timestamp")
        self.key = self._scope_key()

    def _scope_key(self) -> str:
        if self.identifier.get("value"):
            return f"{self.identifier.get('system', '')}|{self.identifier['value']}"
        if self.bundle.get("id"):
            return f"Bundle/{self.bundle['id']}"
        return f"document@{id(self.bundle)}"

    @property
    def composition(self) -> dict[str, Any] | None:
        if not self.entries:
            return None
        resource = self.entries[0]["resource"]
        return resource if resource.get("resourceType") == "Composition" else None

    @property
    def title(self) -> str | None:
        composition = self.composition
        return composition.get("title") if composition else None

    def is_excluded(self, excluded_system: str) -> bool:
        return bool(excluded_system) and self.identifier.get("system") == excluded_system

    def resources(self, *resource_types: str) -> list[tuple[dict[str, Any], dict[str, Any]]]:
        """``(entry, resource)`` pairs of the given types, in document order."""
        return [
            (entry, entry["resource"])
            for entry in self.entries
            if not resource_types or entry["resource"].get("resourceType") in resource_types
        ]

    def resolve(self, reference: str | None) -> dict[str, Any] | None:
        """Find the resource a document-local reference points at.

        Matches the entry fullUrl exactly, then ``Type/id`` against the
        resource itself or the tail of an absolute fullUrl.
        """
        if not reference:
            return None
        for entry in self.entries:
            if entry.get("fullUrl") == reference:
                return entry["resource"]
        resource_type, _, resource_id = reference.rpartition("/")
        resource_type = resource_type.rpartition("/")[2]
        if not resource_type or not resource_id:
            return None
        for entry in self.entries:
            resource = entry["resource"]
            if resource.get("resourceType") == resource_type and resource.get("id") == resource_id:
                return resource
            full_url = entry.get("fullUrl") or ""
            if full_url.endswith(f"/{resource_type}/{resource_id}"):
                return resource
        return None


def reference_keys(entry: dict[str, Any]) -> list[str]:
    """Every local reference string that may point at ``entry`` within its document."""
    keys = []
    if entry.get("fullUrl"):
        keys.append(entry["fullUrl"])
    resource = entry.get("resource") or {}
    if resource.get("resourceType") and resource.get("id"):
        keys.append(f"{resource['resourceType']}/{resource['id']}")
    return keys
