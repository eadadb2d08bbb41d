"""Fingerprints used to decide whether a document changed remotely."""

import hashlib
from typing import Any

from .markdown import MarkdownRenderer


def revision_fingerprint(document: dict[str, Any]) -> str:
    """Fingerprint from the document's linear revision counter."""
    revision = document.get("revision_id")
    return "" if revision is None else str(revision)


def document_fingerprint(document: dict[str, Any], blocks: list[dict[str, Any]]) -> str:
    """SHA-256 of the title followed by the rendered body.

    Mentions are left unresolved so the value only depends on the document
    itself, not on user directory lookups.
    """
    title = document.get("title") or ""
    body = MarkdownRenderer().render_body(blocks)
    return hashlib.sha256((title + body).encode("utf-8")).hexdigest()
