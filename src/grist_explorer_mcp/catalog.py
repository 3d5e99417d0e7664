# Grist Explorer MCP Server
# File: catalog.py
# Version: v1

"""Remote Catalog Resolver: organization -> workspaces -> documents."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from .client import GristClient
from .errors import ResolutionError
from .models import Document, Organization

logger = logging.getLogger(__name__)


def _to_org(item: Dict[str, Any]) -> Organization:
    return Organization(
        id=item.get("id"),
        name=str(item.get("name") or ""),
        domain=item.get("domain"),
        raw=item,
    )


def select_organization(payload: Any, target_domain: Optional[str]) -> Organization:
    """Pick the organization to browse.

    A list answer prefers the entry whose ``domain`` matches ``target_domain``
    and otherwise takes the first entry; a single object is used as-is.
    """
    chosen: Optional[Dict[str, Any]] = None

    if isinstance(payload, list):
        orgs = [o for o in payload if isinstance(o, dict)]
        if target_domain:
            chosen = next((o for o in orgs if o.get("domain") == target_domain), None)
        if chosen is None and orgs:
            chosen = orgs[0]
    elif isinstance(payload, dict):
        chosen = payload

    if chosen is None or chosen.get("id") in (None, ""):
        raise ResolutionError("no organization")

    return _to_org(chosen)


def flatten_documents(workspaces: List[Dict[str, Any]]) -> List[Document]:
    """Flatten workspace docs and give clashing names a workspace suffix.

    A document listed twice (same id) is kept once, at its first position.
    """
    documents: List[Document] = []
    seen_ids: set[str] = set()

    for workspace in workspaces:
        workspace_name = str(workspace.get("name") or "")
        for doc in workspace.get("docs") or []:
            if not isinstance(doc, dict) or doc.get("id") in (None, ""):
                continue
            doc_id = str(doc["id"])
            if doc_id in seen_ids:
                continue
            seen_ids.add(doc_id)
            documents.append(
                Document(
                    id=doc_id,
                    name=str(doc.get("name") or doc_id),
                    workspace_name=workspace_name,
                    raw=doc,
                )
            )

    name_counts = Counter(d.name for d in documents)
    for doc in documents:
        if name_counts[doc.name] > 1:
            doc.display_name = f"{doc.name} ({doc.workspace_name})"
        else:
            doc.display_name = doc.name

    # Same name inside the same workspace still clashes; fall back to the id.
    display_counts = Counter(d.display_name for d in documents)
    for doc in documents:
        if display_counts[doc.display_name] > 1:
            doc.display_name = f"{doc.display_name} [{doc.id}]"

    return documents


async def resolve_documents(
    client: GristClient,
    token: Optional[str],
    target_domain: Optional[str],
) -> List[Document]:
    """Resolve the document catalog visible to ``token``."""
    org = select_organization(await client.get_orgs(token), target_domain)
    logger.debug("Using organization %s (%s).", org.id, org.domain)

    workspaces = await client.list_workspaces(token, org.id)
    documents = flatten_documents(workspaces)
    logger.debug("Resolved %d documents across %d workspaces.", len(documents), len(workspaces))
    return documents
