"""The canonical document bundle assembled for one summary request."""

import uuid
from collections import Counter
from collections.abc import Iterator
from datetime import datetime
from typing import Any

from patient_summary.services.fhir_values import URN_UUID_PREFIX, format_instant, urn_uuid


class CanonicalBundle:
    """Single-writer accumulator of ``(fullUrl, resource)`` entries.

    Every entry lives in the ``urn:uuid:`` space and its resource id equals
    the uuid suffix of its fullUrl; a fullUrl is accepted at most once.
    """

    def __init__(
        self,
        profile: str,
        identifier_system: str,
        timestamp: datetime,
        bundle_id: str | None = None,
        identifier_value: str | None = None,
    ) -> None:
        self.id = bundle_id or str(uuid.uuid4())
        self.profile = profile
        self.identifier = {
            "system": identifier_system,
            "value": identifier_value or str(uuid.uuid4()),
        }
        self.timestamp = timestamp
        self.entries: list[dict[str, Any]] = []
        self._by_full_url: dict[str, dict[str, Any]] = {}
        self._aliases: dict[tuple[str, str], str] = {}
        self._origins: dict[str, str] = {}

    def append(self, full_url: str, resource: dict[str, Any], origin: str | None = None) -> str:
        """Append an entry under an already-allocated fullUrl."""
        if not full_url.startswith(URN_UUID_PREFIX):
            raise ValueError(f"fullUrl {full_url!r} is not a urn:uuid")
        if full_url in self._by_full_url:
            raise ValueError(f"Duplicate fullUrl {full_url}")
        resource_id = full_url[len(URN_UUID_PREFIX):]
        if resource.get("id") != resource_id:
            raise ValueError(
                f"Resource id {resource.get('id')!r} does not match fullUrl {full_url}"
            )
        self.entries.append({"fullUrl": full_url, "resource": resource})
        self._by_full_url[full_url] = resource
        if origin is not None:
            self._origins[full_url] = origin
        return full_url

    def add(self, resource: dict[str, Any], origin: str | None = None) -> str:
        """Give ``resource`` a fresh canonical id and append it. Returns its fullUrl.

        ``origin`` names the source document the resource was copied from so
        its remaining document-local references can be relinked later.
        """
        new_id = str(uuid.uuid4())
        resource["id"] = new_id
        return self.append(urn_uuid(new_id), resource, origin=origin)

    def get(self, full_url: str) -> dict[str, Any] | None:
        return self._by_full_url.get(full_url)

    def resources(self, resource_type: str | None = None) -> Iterator[tuple[str, dict[str, Any]]]:
        for entry in self.entries:
            resource = entry["resource"]
            if resource_type is None or resource.get("resourceType") == resource_type:
                yield entry["fullUrl"], resource

    def resolve_alias(self, scope: str, key: str) -> str | None:
        """fullUrl previously imported for ``key`` (a source reference) within ``scope``."""
        return self._aliases.get((scope, key))

    def remember_alias(self, scope: str, key: str, full_url: str) -> None:
        self._aliases[(scope, key)] = full_url

    def relink_references(self) -> int:
        """Rewrite document-local references of copied resources into the bundle.

        References to a source resource that was imported become its canonical
        fullUrl. Relative and ``urn:uuid`` references that still point outside
        the bundle lose their ``reference`` (identifier and display are kept).
        Returns the number of references dropped.
        """
        dropped = 0
        for full_url, origin in self._origins.items():
            for ref_node in _reference_nodes(self._by_full_url[full_url]):
                ref = ref_node["reference"]
                if ref in self._by_full_url or ref.startswith("#"):
                    continue
                aliased = self._aliases.get((origin, ref))
                if aliased is not None:
                    ref_node["reference"] = aliased
                elif ref.startswith(URN_UUID_PREFIX) or "://" not in ref:
                    del ref_node["reference"]
                    if not ref_node.get("identifier") and not ref_node.get("display"):
                        ref_node["display"] = ref
                    dropped += 1
        return dropped

    def to_fhir(self) -> dict[str, Any]:
        return {
            "resourceType": "Bundle",
            "id": self.id,
            "meta": {"profile": [self.profile]},
            "identifier": dict(self.identifier),
            "type": "document",
            "timestamp": format_instant(self.timestamp),
            "entry": [dict(entry) for entry in self.entries],
        }

    def integrity_issues(self) -> list[str]:
        """Describe uniqueness and dangling-reference problems (empty when consistent)."""
        issues = []
        counts = Counter(entry["fullUrl"] for entry in self.entries)
        for full_url, count in counts.items():
            if count > 1:
                issues.append(f"fullUrl {full_url} appears {count} times")
        for index, entry in enumerate(self.entries):
            full_url = entry["fullUrl"]
            resource = entry["resource"]
            if resource.get("id") != full_url[len(URN_UUID_PREFIX):]:
                issues.append(f"Entry {index} id {resource.get('id')!r} does not match {full_url}")
            for ref in _urn_references(resource):
                if ref not in self._by_full_url:
                    issues.append(
                        f"Entry {index} ({resource.get('resourceType')}) references missing {ref}"
                    )
        return issues


def _reference_nodes(node: Any) -> Iterator[dict[str, Any]]:
    """Every dict carrying a string ``reference`` below ``node``."""
    if isinstance(node, dict):
        if isinstance(node.get("reference"), str):
            yield node
        for value in list(node.values()):
            yield from _reference_nodes(value)
    elif isinstance(node, list):
        for item in node:
            yield from _reference_nodes(item)


def _urn_references(node: Any) -> Iterator[str]:
    for ref_node in _reference_nodes(node):
        if ref_node["reference"].startswith(URN_UUID_PREFIX):
            yield ref_node["reference"]
