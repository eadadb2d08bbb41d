#!/usr/bin/env python3
"""CLI entry point for the Feishu document exporter."""

import argparse
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .core.auth import FeishuAuthError
from .core.client import FeishuAPIError, FeishuClient
from .core.downloader import DocumentDownloader, DownloadError
from .core.exporter import EXPORT_FORMATS, ExportError, TableExporter
from .core.merge import find_files, merge_csv_files_to_markdown, merge_markdown_files
from .core.metadata import MetadataStore
from .core.orchestrator import SyncOrchestrator
from .core.url_parser import TARGET_TYPES
from .models.config import (
    INCLUDE_SYSTEM_FIELDS_ENV,
    ConfigError,
    OutputSettings,
    SyncConfig,
    env_flag,
    find_config_path,
)

console = Console()


def _make_client() -> FeishuClient | None:
    try:
        return FeishuClient()
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}")
        return None


def cmd_verify_auth(args: argparse.Namespace) -> int:
    """Verify API authentication."""
    console.print("Verifying Feishu app credentials...", style="blue")

    try:
        client = FeishuClient()
        if client.verify_connection():
            console.print("[green]Authentication successful!")
            return 0
    except FeishuAPIError as e:
        console.print(f"[red]Authentication failed: {e}")
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}")

    return 1


def cmd_download(args: argparse.Namespace) -> int:
    """Download a document, a drive folder or a wiki space."""
    client = _make_client()
    if client is None:
        return 1

    settings = OutputSettings(
        title_as_filename=args.title_as_filename,
        skip_image_download=args.skip_images,
        dump=args.dump,
    )
    downloader = DocumentDownloader(client, settings)
    output_dir = Path(args.output)

    try:
        if args.batch:
            files = downloader.download_folder(args.url, output_dir, workers=args.workers)
            console.print(f"[green]Downloaded {len(files)} documents to {output_dir}")
        elif args.wiki:
            files = downloader.download_wiki_space(args.url, output_dir, workers=args.workers)
            console.print(f"[green]Downloaded {len(files)} wiki pages to {output_dir}")
        else:
            result = downloader.download_document(args.url, output_dir, doc_name=args.name)
            console.print(f"[green]Downloaded '{result.title}' to {output_dir / result.file_name}")
            if result.images:
                console.print(f"  {result.images} images saved")
    except (DownloadError, FeishuAPIError) as e:
        console.print(f"[red]Download failed: {e}")
        return 1

    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export a Bitable table to CSV or XLSX."""
    client = _make_client()
    if client is None:
        return 1

    include_system = args.include_system_fields or env_flag(INCLUDE_SYSTEM_FIELDS_ENV)
    exporter = TableExporter(client, include_system_fields=include_system)
    try:
        exporter.export(
            args.url,
            args.format,
            Path(args.output),
            base_name=args.name,
            view_scoped=args.view_fields_only,
            filter_images=args.filter_images,
        )
    except (ExportError, FeishuAPIError, OSError) as e:
        console.print(f"[red]Export failed: {e}")
        return 1
    return 0


def _load_config(args: argparse.Namespace) -> tuple[SyncConfig, Path] | None:
    config_path = find_config_path(getattr(args, "config", None))
    try:
        return SyncConfig.load(config_path), config_path
    except ConfigError as e:
        console.print(f"[red]{e}")
        return None


def cmd_sync(args: argparse.Namespace) -> int:
    """Manage and run the configured document sync."""
    if args.sync_command == "init":
        config_path = find_config_path(args.config)
        if config_path.exists() and not args.force:
            console.print(f"[yellow]Config already exists: {config_path} (use --force to overwrite)")
            return 1
        SyncConfig().save(config_path)
        console.print(f"[green]Created {config_path}")
        return 0

    loaded = _load_config(args)
    if loaded is None:
        return 1
    config, config_path = loaded

    if args.sync_command == "add":
        try:
            target = config.add_document(args.name, args.url, group=args.group or "", doc_type=args.type or "")
        except ConfigError as e:
            console.print(f"[red]Error: {e}")
            return 1
        config.save(config_path)
        console.print(f"[green]Added '{target.name}' ({target.resolved_type()}) to {config_path}")
        return 0

    elif args.sync_command == "remove":
        try:
            target = config.remove_document(args.target)
        except ConfigError as e:
            console.print(f"[red]Error: {e}")
            return 1
        config.save(config_path)
        console.print(f"[green]Removed '{target.name}'")
        return 0

    elif args.sync_command == "list":
        documents = config.get_documents(args.group)
        if not documents:
            console.print("[yellow]No documents configured")
            return 0

        table = Table(title=f"Documents ({config_path})")
        table.add_column("#", justify="right")
        table.add_column("Name", style="cyan")
        table.add_column("Group", style="blue")
        table.add_column("Type")
        table.add_column("URL", style="green")
        for index, doc in enumerate(documents, start=1):
            table.add_row(str(index), doc.name, doc.group or "[dim]-", doc.resolved_type(), doc.url)
        console.print(table)
        return 0

    elif args.sync_command == "status":
        return _sync_status(config)

    elif args.sync_command == "run":
        client = _make_client()
        if client is None:
            return 1
        summary = SyncOrchestrator(config, client).run(group=args.group, force=args.force)

        console.print(
            f"\n[bold]Done in {summary.elapsed:.1f}s:[/bold] {summary.succeeded} synced, "
            f"{summary.skipped} up to date, {len(summary.errors)} failed (of {summary.total})"
        )
        for error in summary.errors:
            console.print(f"  [red]{error}")
        return 0 if summary.ok else 1

    return 1


def _sync_status(config: SyncConfig) -> int:
    """Show stored sync records, flagging ones no longer configured."""
    active_urls = {d.url for d in config.documents}
    directories = {config.sync.output_dir_for(d) for d in config.documents}
    directories.add(Path(config.sync.output_dir))

    table = Table(title="Sync records")
    table.add_column("Name", style="cyan")
    table.add_column("File")
    table.add_column("Exists")
    table.add_column("Fingerprint")
    table.add_column("Last Sync")
    table.add_column("Configured")

    rows = 0
    for directory in sorted(directories):
        store = MetadataStore(directory)
        for record in store.list_records():
            rows += 1
            exists = "[green]Yes" if store.output_exists(record) else "[red]No"
            configured = "Yes" if record.url in active_urls else "[yellow]Stale"
            fingerprint = record.fingerprint[:12] + "..." if len(record.fingerprint) > 12 else record.fingerprint
            table.add_row(
                record.name,
                str(directory / record.output_file_name),
                exists,
                fingerprint or "[dim]-",
                record.synced_at[:19] or "[dim]Never",
                configured,
            )

    if not rows:
        console.print("[yellow]No sync records found")
        return 0
    console.print(table)
    return 0


def cmd_merge(args: argparse.Namespace) -> int:
    """Merge synced Markdown (and CSV) files into single documents."""
    loaded = _load_config(args)
    if loaded is None:
        return 1
    config, _ = loaded
    settings = config.merge

    input_dir = Path(args.input or settings.input_dir or config.sync.output_dir)
    output_dir = Path(args.output or settings.output_dir)
    filename = args.filename or settings.filename

    if not input_dir.is_dir():
        console.print(f"[red]Input directory not found: {input_dir}")
        return 1

    md_files = find_files(input_dir, ".md", settings.sort_files)
    if not md_files:
        console.print(f"[red]No .md files found in {input_dir}")
        return 1

    merged = merge_markdown_files(md_files, output_dir / filename, settings)
    console.print(f"[green]Merged {merged} files into {output_dir / filename}")

    if settings.csv_filename:
        csv_files = find_files(input_dir, ".csv", settings.sort_files)
        if csv_files:
            count = merge_csv_files_to_markdown(csv_files, output_dir / settings.csv_filename, settings)
            console.print(f"[green]Merged {count} CSV files into {output_dir / settings.csv_filename}")
        else:
            console.print("[dim]No CSV files found, skipping table merge")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="feishu-export",
        description="Download Feishu/Lark documents as Markdown and export Bitable tables",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # verify-auth
    subparsers.add_parser("verify-auth", help="Verify API authentication")

    # download
    download_parser = subparsers.add_parser("download", help="Download a document, folder or wiki space")
    download_parser.add_argument("url", help="Document, folder (--batch) or wiki space (--wiki) URL")
    download_parser.add_argument("--output", "-o", default="./", help="Output directory")
    download_parser.add_argument("--name", help="File name for a single document")
    download_parser.add_argument("--batch", action="store_true", help="Download every document in a folder")
    download_parser.add_argument("--wiki", action="store_true", help="Download every page of a wiki space")
    download_parser.add_argument("--workers", type=int, default=10, help="Concurrent downloads for --batch/--wiki")
    download_parser.add_argument("--skip-images", action="store_true", help="Do not download images")
    download_parser.add_argument("--title-as-filename", action="store_true", help="Name files after document titles")
    download_parser.add_argument("--dump", action="store_true", help="Also save the raw API response as JSON")

    # export
    export_parser = subparsers.add_parser("export", help="Export a Bitable table to CSV or XLSX")
    export_parser.add_argument("url", help="Table URL with a table= parameter")
    export_parser.add_argument("--format", "-f", choices=EXPORT_FORMATS, default="xlsx", help="Output format")
    export_parser.add_argument("--output", "-o", default="./", help="Output directory")
    export_parser.add_argument("--name", help="File name without extension (default: App_Table_View)")
    export_parser.add_argument("--view-fields-only", action="store_true", help="Only export fields visible in the view")
    export_parser.add_argument("--filter-images", action="store_true", help="Drop image file names from cells")
    export_parser.add_argument("--include-system-fields", action="store_true", help="Export created/modified columns")

    # sync
    sync_parser = subparsers.add_parser("sync", help="Configured document sync")
    sync_parser.add_argument("--config", "-c", help="Path to config file (default: config.yml)")
    sync_subparsers = sync_parser.add_subparsers(dest="sync_command")

    sync_init = sync_subparsers.add_parser("init", help="Create a config file")
    sync_init.add_argument("--force", action="store_true", help="Overwrite an existing config")

    sync_add = sync_subparsers.add_parser("add", help="Add a document")
    sync_add.add_argument("url", help="Document URL")
    sync_add.add_argument("--name", "-n", required=True, help="Document name")
    sync_add.add_argument("--group", "-g", help="Group (sub-directory)")
    sync_add.add_argument("--type", "-t", choices=TARGET_TYPES, help="Sync type (default: detect from URL)")

    sync_list = sync_subparsers.add_parser("list", help="List configured documents")
    sync_list.add_argument("--group", "-g", help="Only show this group")

    sync_remove = sync_subparsers.add_parser("remove", help="Remove a document")
    sync_remove.add_argument("target", help="Document name or 1-based index")

    sync_subparsers.add_parser("status", help="Show stored sync records")

    sync_run = sync_subparsers.add_parser("run", help="Sync configured documents")
    sync_run.add_argument("--group", "-g", help="Only sync this group")
    sync_run.add_argument("--force", action="store_true", help="Clean output and sync everything")

    # merge
    merge_parser = subparsers.add_parser("merge", help="Merge Markdown files into one document")
    merge_parser.add_argument("--config", "-c", help="Path to config file (default: config.yml)")
    merge_parser.add_argument("--input", "-i", help="Input directory (overrides config)")
    merge_parser.add_argument("--output", "-o", help="Output directory (overrides config)")
    merge_parser.add_argument("--filename", "-f", help="Merged file name (overrides config)")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "verify-auth":
            return cmd_verify_auth(args)
        elif args.command == "download":
            return cmd_download(args)
        elif args.command == "export":
            return cmd_export(args)
        elif args.command == "sync":
            if args.sync_command:
                return cmd_sync(args)
            console.print("[yellow]Specify a sync command: init, add, list, remove, status or run")
            return 1
        elif args.command == "merge":
            return cmd_merge(args)
        else:
            parser.print_help()
            return 1
    except FeishuAuthError as e:
        console.print(f"[red]Authentication failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
