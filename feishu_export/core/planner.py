"""Decide which configured documents need to be synced."""

from dataclasses import dataclass

from ..models.config import (
    SYNC_MODE_INCREMENTAL,
    DocumentTarget,
    SyncSettings,
    sanitize_filename,
)
from .client import FeishuClient
from .downloader import resolve_docx_token
from .fingerprint import document_fingerprint, revision_fingerprint
from .metadata import MetadataStore


TABLE_TYPES = ("csv", "xlsx")
TREE_TYPES = ("folder", "wiki_space")


@dataclass
class PlanDecision:
    """Whether a target needs syncing, and why."""

    target: DocumentTarget
    needs_sync: bool
    reason: str


class IncrementalPlanner:
    """Compares stored sync records with the remote state.

    The planner only reads; records are written by the orchestrator after a
    document syncs successfully. Any failure while checking a document
    counts as "needs sync" so errors never hide updates.
    """

    def __init__(self, client: FeishuClient, settings: SyncSettings) -> None:
        self.client = client
        self.settings = settings

    def plan(self, targets: list[DocumentTarget], mode: str | None = None) -> list[DocumentTarget]:
        """Return the targets to sync, preserving order."""
        mode = mode or self.settings.sync_mode
        if mode != SYNC_MODE_INCREMENTAL:
            return list(targets)
        return [d.target for d in self.decide(targets) if d.needs_sync]

    def decide(self, targets: list[DocumentTarget]) -> list[PlanDecision]:
        """Check every target in incremental mode."""
        return [self.check(target) for target in targets]

    def check(self, target: DocumentTarget) -> PlanDecision:
        """Check a single target against its stored record."""
        try:
            return self._check(target)
        except Exception as e:
            return PlanDecision(target, True, f"check failed: {e}")

    def _check(self, target: DocumentTarget) -> PlanDecision:
        doc_type = target.resolved_type()
        output_dir = self.settings.output_dir_for(target)
        store = MetadataStore(output_dir)

        if doc_type in TABLE_TYPES:
            record = store.lookup_by_url(target.url)
            if record is None:
                return PlanDecision(target, True, "no previous export")
            if not store.output_exists(record):
                return PlanDecision(target, True, f"exported file missing: {record.output_file_name}")
            return PlanDecision(target, False, f"already exported as {record.output_file_name}")

        if doc_type in TREE_TYPES:
            return PlanDecision(target, True, f"{doc_type} targets are always synced")

        token = resolve_docx_token(self.client, target.url)
        document = self.client.get_docx_document(token)

        title = document.get("title") or ""
        if self.settings.use_original_title and title:
            expected = f"{sanitize_filename(title)}.md"
        else:
            expected = f"{sanitize_filename(target.name)}.md"

        if not (output_dir / expected).is_file():
            return PlanDecision(target, True, f"output file missing: {expected}")

        record = store.lookup(target.name)
        if record is None:
            return PlanDecision(target, True, "no sync metadata")

        if doc_type == "docx":
            current = revision_fingerprint(document)
            kind = "revision"
        else:
            current = document_fingerprint(document, self.client.list_docx_blocks(token))
            kind = "content"

        if not current or current != record.fingerprint:
            return PlanDecision(target, True, f"{kind} changed")
        return PlanDecision(target, False, "up to date")
