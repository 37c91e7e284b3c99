"""FHIR R4 client for the patient and document searches a summary depends on.

Resolves a patient by exact demographics and retrieves the document Bundles
stored for them, correlated through the patient's IHI. Both searches run
against a single FHIR R4 server; results are returned complete, following
``next`` paging links.
"""

import logging
from typing import Any

import httpx

from patient_summary.config import FHIR_PAGE_LIMIT, FHIR_SERVER_URL, FHIR_TIMEOUT, get_settings
from patient_summary.models.requests import PatientIdentityQuery

logger = logging.getLogger(__name__)

FHIR_HEADERS = {
    "Accept": "application/fhir+json",
}


class DirectoryError(RuntimeError):
    """The FHIR server could not answer a search."""


def _extract_entries(bundle: dict) -> list[dict]:
    """Extract resource entries from a FHIR Bundle."""
    if not bundle or bundle.get("resourceType") != "Bundle":
        return []
    return [e["resource"] for e in bundle.get("entry", []) if "resource" in e]


def _next_link(bundle: dict) -> str | None:
    for link in bundle.get("link") or []:
        if link.get("relation") == "next" and link.get("url"):
            return link["url"]
    return None


def find_identifier_value(patient: dict, system: str) -> str | None:
    """Value of the patient's first identifier in ``system``."""
    for identifier in patient.get("identifier") or []:
        if identifier.get("system") == system and identifier.get("value"):
            return identifier["value"]
    return None


class FhirDirectory:
    """Patient and document search against a FHIR R4 server.

    An empty ``base_url`` disables the server: no patient resolves and no
    documents are found.
    """

    def __init__(
        self,
        base_url: str = FHIR_SERVER_URL,
        client: httpx.AsyncClient | None = None,
        ihi_system: str | None = None,
        page_limit: int = FHIR_PAGE_LIMIT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=FHIR_TIMEOUT)
        self.ihi_system = ihi_system or get_settings().ihi_system
        self.page_limit = page_limit

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _search(self, resource_type: str, params: dict[str, str]) -> list[dict]:
        """Run a search and collect every page of results."""
        url: str | None = f"{self.base_url}/{resource_type}"
        query: dict[str, str] | None = params
        results: list[dict] = []
        pages = 0
        try:
            while url and pages < self.page_limit:
                resp = await self.client.get(url, params=query, headers=FHIR_HEADERS)
                resp.raise_for_status()
                page = resp.json()
                results.extend(_extract_entries(page))
                pages += 1
                url, query = _next_link(page), None
        except httpx.HTTPStatusError as e:
            logger.warning("FHIR server %s returned HTTP %s: %s", self.base_url, e.response.status_code, e)
            raise DirectoryError(f"{resource_type} search failed with HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            logger.warning("FHIR server %s timed out", self.base_url)
            raise DirectoryError(f"{resource_type} search timed out") from e
        except httpx.RequestError as e:
            logger.warning("FHIR query to %s failed: %s", self.base_url, e)
            raise DirectoryError(f"{resource_type} search failed: {e}") from e
        if url:
            logger.warning("Stopped %s search after %d pages", resource_type, pages)
        return results

    async def resolve_patient(self, query: PatientIdentityQuery) -> list[dict[str, Any]]:
        """Exact-match Patient search on identifier, birthdate, family name and gender."""
        if not self.base_url:
            logger.warning("No FHIR server configured; patient search skipped")
            return []
        identifier = query.identifier.value
        if query.identifier.system:
            identifier = f"{query.identifier.system}|{identifier}"
        patients = await self._search("Patient", {
            "identifier": identifier,
            "birthdate": query.birthdate.isoformat(),
            "family": query.family,
            "gender": query.gender.lower(),
        })
        patients = [p for p in patients if p.get("resourceType") == "Patient"]
        logger.info("Patient search on %s returned %d matches", self.base_url, len(patients))
        return patients

    async def find_source_documents(self, patient: dict[str, Any]) -> list[dict[str, Any]] | None:
        """Document Bundles whose Composition subject carries the patient's IHI.

        Returns ``None`` when the patient has no IHI to correlate on.
        """
        ihi = find_identifier_value(patient, self.ihi_system)
        if ihi is None:
            logger.info("Patient %s has no IHI; no documents retrieved", patient.get("id"))
            return None
        if not self.base_url:
            return []
        documents = await self._search("Bundle", {
            "type": "document",
            "composition.patient.identifier": f"{self.ihi_system}|{ihi}",
        })
        documents = [d for d in documents if d.get("resourceType") == "Bundle"]
        logger.info("Found %d source documents for patient %s", len(documents), patient.get("id"))
        return documents
