"""Run a configured batch sync."""

import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console

from ..models.config import (
    SYNC_MODE_CLEAN_ALL,
    SYNC_MODE_INCREMENTAL,
    DocumentTarget,
    OutputSettings,
    SyncConfig,
)
from .client import FeishuClient
from .downloader import DocumentDownloader
from .exporter import TableExporter
from .metadata import MetadataStore
from .planner import TABLE_TYPES, IncrementalPlanner


console = Console()

# Output directories that must never be wiped
PROTECTED_OUTPUT_DIRS = ("", "/", ".")


@dataclass
class SyncResult:
    """Result of syncing one configured document."""

    success: bool
    name: str
    message: str
    file_name: str = ""
    skipped: bool = False


@dataclass
class SyncSummary:
    """Outcome of a batch run."""

    total: int = 0
    succeeded: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    elapsed: float = 0.0
    results: list[SyncResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class SyncOrchestrator:
    """Plans and executes a sync run over the configured documents."""

    def __init__(self, config: SyncConfig, client: FeishuClient | None = None) -> None:
        """Initialize the orchestrator.

        Args:
            config: Sync configuration
            client: FeishuClient (created if not provided)
        """
        self.config = config
        self._client = client
        self._success_lock = threading.Lock()
        self._error_lock = threading.Lock()

    @property
    def client(self) -> FeishuClient:
        """Get or create FeishuClient."""
        if self._client is None:
            self._client = FeishuClient()
        return self._client

    def clean_output_dir(self) -> bool:
        """Remove the output directory so the run starts from scratch.

        Returns:
            True if the directory was removed or did not exist
        """
        output_dir = self.config.sync.output_dir.strip()
        if output_dir in PROTECTED_OUTPUT_DIRS or Path(output_dir).resolve() == Path("/").resolve():
            console.print(f"[yellow]Warning: refusing to clean output directory '{output_dir}'[/yellow]")
            return False

        path = Path(output_dir)
        if not path.exists():
            return True
        try:
            shutil.rmtree(path)
        except OSError as e:
            console.print(f"[yellow]Warning: failed to clean {path}: {e}[/yellow]")
            return False
        console.print(f"[dim]Cleaned {path}[/dim]")
        return True

    def sync_document(self, target: DocumentTarget) -> SyncResult:
        """Download or export a single configured document and record it."""
        settings = self.config.sync
        options = settings.options_for(target)
        output_dir = settings.output_dir_for(target)
        doc_type = target.resolved_type()

        if doc_type in TABLE_TYPES:
            exporter = TableExporter(self.client, include_system_fields=options.include_system_fields)
            file_name = exporter.export(
                target.url,
                doc_type,
                output_dir,
                view_scoped=options.view_fields_only,
                filter_images=options.filter_images,
            )
            store = MetadataStore(output_dir)
            store.write(target, file_name, store.hash_file(output_dir / file_name) or "")
            return SyncResult(True, target.name, f"exported {file_name}", file_name)

        downloader = DocumentDownloader(self.client, OutputSettings(skip_image_download=options.skip_images))

        if doc_type == "folder":
            files = downloader.download_folder(target.url, output_dir, workers=settings.concurrent_downloads)
            return SyncResult(True, target.name, f"downloaded {len(files)} documents from folder")

        if doc_type == "wiki_space":
            files = downloader.download_wiki_space(target.url, output_dir)
            return SyncResult(True, target.name, f"downloaded {len(files)} wiki pages")

        result = downloader.download_document(
            target.url,
            output_dir,
            doc_name=target.name,
            skip_images=options.skip_images,
            use_original_title=options.use_original_title,
        )
        fingerprint = result.revision_id if doc_type == "docx" else result.content_hash
        MetadataStore(output_dir).write(target, result.file_name, fingerprint)
        return SyncResult(True, target.name, f"downloaded {result.file_name}", result.file_name)

    def run(self, group: str | None = None, force: bool = False) -> SyncSummary:
        """Sync all configured documents (optionally one group).

        Args:
            group: Only sync documents in this group
            force: Clean the output directory and sync everything

        Returns:
            SyncSummary with per-document results and collected errors
        """
        started = time.monotonic()
        settings = self.config.sync
        targets = self.config.get_documents(group)
        summary = SyncSummary(total=len(targets))

        if not targets:
            console.print("[yellow]No documents configured[/yellow]")
            return summary

        if settings.sync_mode == SYNC_MODE_CLEAN_ALL or force:
            self.clean_output_dir()

        mode = SYNC_MODE_INCREMENTAL if settings.sync_mode == SYNC_MODE_INCREMENTAL and not force else SYNC_MODE_CLEAN_ALL
        if mode == SYNC_MODE_INCREMENTAL:
            planner = IncrementalPlanner(self.client, settings)
            decisions = planner.decide(targets)
            pending = []
            for decision in decisions:
                if decision.needs_sync:
                    console.print(f"  [cyan]~[/cyan] {decision.target.name}: {decision.reason}")
                    pending.append(decision.target)
                else:
                    console.print(f"  [dim]= {decision.target.name}: {decision.reason}[/dim]")
                    summary.results.append(SyncResult(True, decision.target.name, decision.reason, skipped=True))
            summary.skipped = len(targets) - len(pending)
        else:
            pending = list(targets)

        console.print(
            f"[bold]Syncing {len(pending)} of {len(targets)} documents "
            f"with {settings.concurrent_downloads} workers[/bold]"
        )

        def work(target: DocumentTarget) -> SyncResult:
            try:
                result = self.sync_document(target)
            except Exception as e:
                with self._error_lock:
                    summary.errors.append(f"{target.name}: {e}")
                return SyncResult(False, target.name, str(e))
            with self._success_lock:
                summary.succeeded += 1
            return result

        with ThreadPoolExecutor(max_workers=settings.concurrent_downloads) as executor:
            future_to_target = {executor.submit(work, target): target for target in pending}
            for future in as_completed(future_to_target):
                result = future.result()
                summary.results.append(result)
                if result.success:
                    console.print(f"  [green]✓[/green] {result.name}: {result.message}")
                else:
                    console.print(f"  [red]✗[/red] {result.name}: {result.message}")

        summary.elapsed = time.monotonic() - started
        return summary
