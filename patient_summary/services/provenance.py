"""Provenance synthesis and actor import for facts copied into a summary.

Every clinical fact taken from a source document gets a Provenance entry
naming the document's author and custodian. Those actors are shared across
documents, so they are matched by identifier against the canonical bundle
and only imported when no equivalent entry exists yet.
"""

import copy
import logging
from datetime import UTC, datetime
from typing import Any

from patient_summary.codes import PARTICIPANT_TYPE_SYSTEM
from patient_summary.models.bundle import CanonicalBundle
from patient_summary.models.document import SourceDocument, reference_keys
from patient_summary.services.fhir_values import first, format_instant, parse_fhir_datetime
from patient_summary.services.identity import find_matching_actor

logger = logging.getLogger(__name__)


def import_resource(bundle: CanonicalBundle, document: SourceDocument, entry: dict[str, Any]) -> str:
    """Copy a document entry into the bundle under a fresh canonical id.

    The copy is registered under every local reference of the source entry,
    so later references to it from the same document resolve to the copy.
    """
    resource = copy.deepcopy(entry["resource"])
    keys = reference_keys(entry)
    full_url = bundle.add(resource, origin=document.key)
    for key in keys:
        bundle.remember_alias(document.key, key, full_url)
    return full_url


def _entry_for(document: SourceDocument, resource: dict[str, Any]) -> dict[str, Any]:
    for entry in document.entries:
        if entry["resource"] is resource:
            return entry
    return {"resource": resource}


def resolve_actor(
    bundle: CanonicalBundle,
    document: SourceDocument,
    reference: dict[str, Any] | None,
) -> dict[str, Any] | None:
    """Turn a document-local actor reference into a reference into the bundle.

    An actor already present in the bundle (same type, shared identifier)
    is reused; otherwise the actor is copied in with a canonical id. Actors
    the document does not contain keep only their identifier and display.
    """
    if not reference:
        return None
    ref = reference.get("reference")
    resolved: dict[str, Any] = {}
    if reference.get("display"):
        resolved["display"] = reference["display"]
    if not ref:
        if reference.get("identifier"):
            resolved["identifier"] = reference["identifier"]
        return resolved or None

    already = bundle.resolve_alias(document.key, ref)
    if already is not None:
        resolved["reference"] = already
        return resolved

    actor = document.resolve(ref)
    if actor is None:
        logger.warning("Actor %s is not contained in document %s", ref, document.key)
        if reference.get("identifier"):
            resolved["identifier"] = reference["identifier"]
        resolved.setdefault("display", ref)
        return resolved

    match = find_matching_actor(actor, bundle)
    if match is not None:
        logger.debug("Actor %s matched existing entry %s", ref, match)
        bundle.remember_alias(document.key, ref, match)
        for key in reference_keys(_entry_for(document, actor)):
            bundle.remember_alias(document.key, key, match)
        resolved["reference"] = match
        return resolved

    full_url = import_resource(bundle, document, _entry_for(document, actor))
    bundle.remember_alias(document.key, ref, full_url)
    logger.debug("Imported %s %s as %s", actor.get("resourceType"), ref, full_url)
    resolved["reference"] = full_url
    return resolved


def _agent(code: str, display: str, who: dict[str, Any] | None) -> dict[str, Any]:
    agent: dict[str, Any] = {
        "type": {
            "coding": [{"system": PARTICIPANT_TYPE_SYSTEM, "code": code, "display": display}]
        }
    }
    if who:
        agent["who"] = who
    return agent


def synthesize_provenance(
    bundle: CanonicalBundle,
    document: SourceDocument,
    target_full_url: str,
    now: datetime | None = None,
) -> str:
    """Append a Provenance for ``target_full_url`` tracing it to ``document``.

    ``recorded`` is the document timestamp (or ``now``). Agents name the
    document Composition's first author and its custodian, and are omitted
    when it names neither. The entity points at the source document by
    identifier, displaying the Composition title.
    """
    recorded = parse_fhir_datetime(document.timestamp) or now or datetime.now(UTC)
    provenance: dict[str, Any] = {
        "resourceType": "Provenance",
        "target": [{"reference": target_full_url}],
        "recorded": format_instant(recorded),
    }
    provenance_url = bundle.add(provenance)

    agents = []
    composition = document.composition
    if composition is not None:
        author = first(composition.get("author"))
        if author:
            agents.append(_agent("author", "Author", resolve_actor(bundle, document, author)))
        custodian = composition.get("custodian")
        if custodian:
            agents.append(_agent("custodian", "Custodian", resolve_actor(bundle, document, custodian)))
    if agents:
        provenance["agent"] = agents
    else:
        logger.warning("Document %s names no author or custodian; provenance has no agent", document.key)

    what: dict[str, Any] = {"type": "Bundle"}
    if document.identifier:
        what["identifier"] = dict(document.identifier)
    if document.title:
        what["display"] = document.title
    provenance["entity"] = [{"role": "source", "what": what}]
    return provenance_url
