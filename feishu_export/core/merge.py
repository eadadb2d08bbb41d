"""Concatenate synced files into a single Markdown document."""

from datetime import datetime
from pathlib import Path

from rich.console import Console

from ..models.config import MergeSettings


console = Console()

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
UTF8_BOM = "\ufeff"


def find_files(input_dir: Path, suffix: str, sort_files: bool = True) -> list[Path]:
    """Find files with a suffix under a directory, recursively."""
    files = [p for p in Path(input_dir).rglob("*") if p.is_file() and p.suffix.lower() == suffix]
    if sort_files:
        files.sort(key=lambda p: p.as_posix())
    return files


def _demote_headings(content: str) -> str:
    # Each merged file gets its own top-level heading; fenced code is left alone
    lines = []
    in_fence = False
    for line in content.split("\n"):
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
        elif not in_fence and line.startswith("#"):
            line = "#" + line
        lines.append(line)
    return "\n".join(lines)


def merge_markdown_files(files: list[Path], output_path: Path, settings: MergeSettings) -> int:
    """Write the given Markdown files into one document.

    Returns:
        Number of files merged; unreadable files are skipped with a warning
    """
    timestamp = datetime.now().strftime(TIMESTAMP_FORMAT)
    header = f"# {settings.header_title}\n\n> Generated by feishu-export"
    if settings.include_timestamp:
        header += f"\n> Generated at: {timestamp}"
    header += f"\n> Documents: {len(files)}\n\n---\n\n"

    parts = [header]
    merged = 0
    for path in files:
        try:
            content = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            console.print(f"[yellow]Warning: skipping {path}: {e}[/yellow]")
            continue
        parts.append(f"\n\n---\n\n# 📄 {Path(path).stem}\n\n")
        parts.append(_demote_headings(content))
        if not content.endswith("\n"):
            parts.append("\n")
        merged += 1

    footer = f"\n\n---\n\n> Merge complete | {merged} files"
    if settings.include_timestamp:
        footer += f" | Generated at: {timestamp}"
    parts.append(footer + "\n")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text("".join(parts), encoding="utf-8")
    return merged


def merge_csv_files_to_markdown(files: list[Path], output_path: Path, settings: MergeSettings) -> int:
    """Write CSV files into one Markdown document, each in a csv code fence."""
    parts = []
    if settings.include_timestamp:
        parts.append(f"> Generated at: {datetime.now().strftime(TIMESTAMP_FORMAT)}\n\n")

    merged = 0
    for path in files:
        try:
            raw = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            console.print(f"[yellow]Warning: skipping {path}: {e}[/yellow]")
            continue
        if raw.startswith(UTF8_BOM):
            raw = raw[len(UTF8_BOM):]
        if not raw.endswith("\n"):
            raw += "\n"
        parts.append(f"# {Path(path).stem}\n\n```csv\n{raw}```\n\n")
        merged += 1

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text("".join(parts), encoding="utf-8")
    return merged
