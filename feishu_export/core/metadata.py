"""Per-document sync records kept beside the exported files."""

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console

from ..models.config import DocumentTarget, sanitize_filename


console = Console()

METADATA_DIRNAME = ".feishu-export"
METADATA_SUFFIX = ".meta"


@dataclass
class SyncRecord:
    """What was produced for a configured document at its last sync."""

    url: str
    name: str
    output_file_name: str
    fingerprint: str  # Revision ID or content hash, empty for tables
    synced_at: str  # ISO timestamp of last sync

    def to_text(self) -> str:
        """Serialize as Key=value lines."""
        return (
            f"URL={self.url}\n"
            f"Name={self.name}\n"
            f"ActualFileName={self.output_file_name}\n"
            f"Fingerprint={self.fingerprint}\n"
            f"SyncTime={self.synced_at}\n"
        )

    @classmethod
    def from_text(cls, text: str) -> "SyncRecord | None":
        """Parse Key=value lines; unknown keys are ignored.

        Returns:
            The record, or None when the URL or file name is missing
        """
        values: dict[str, str] = {}
        for line in text.splitlines():
            key, sep, value = line.partition("=")
            if sep:
                values[key.strip()] = value.strip()

        if not values.get("URL") or not values.get("ActualFileName"):
            return None
        return cls(
            url=values["URL"],
            name=values.get("Name", ""),
            output_file_name=values["ActualFileName"],
            fingerprint=values.get("Fingerprint", ""),
            synced_at=values.get("SyncTime", ""),
        )


class MetadataStore:
    """Reads and writes sync records under an output directory.

    One record file per configured document name, so the latest write for
    a name always wins. Read failures are treated as "no record" and write
    failures only print a warning: a lost record costs a re-download on
    the next run, never a failed sync.
    """

    def __init__(self, output_dir: Path) -> None:
        """Initialize the store.

        Args:
            output_dir: Directory the documents are exported into
        """
        self.output_dir = Path(output_dir)
        self.metadata_dir = self.output_dir / METADATA_DIRNAME

    def record_path(self, name: str) -> Path:
        """Path of the record file for a document name."""
        return self.metadata_dir / f"{sanitize_filename(name)}{METADATA_SUFFIX}"

    @staticmethod
    def compute_hash(content: str) -> str:
        """Compute SHA-256 hash of content."""
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    @staticmethod
    def hash_file(filepath: Path) -> str | None:
        """Compute SHA-256 hash of a file's bytes."""
        if not filepath.exists():
            return None
        return hashlib.sha256(filepath.read_bytes()).hexdigest()

    def write(self, target: DocumentTarget, output_file_name: str, fingerprint: str) -> SyncRecord | None:
        """Record a successful sync.

        Returns:
            The written record, or None when it could not be persisted
        """
        record = SyncRecord(
            url=target.url,
            name=target.name,
            output_file_name=output_file_name,
            fingerprint=fingerprint or "",
            synced_at=datetime.now(timezone.utc).isoformat(),
        )
        path = self.record_path(target.name)
        try:
            self.metadata_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(path.suffix + ".tmp")
            tmp_path.write_text(record.to_text(), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            console.print(f"[yellow]Warning: could not save sync metadata for {target.name}: {e}[/yellow]")
            return None
        return record

    def _read(self, path: Path) -> SyncRecord | None:
        try:
            return SyncRecord.from_text(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError):
            return None

    def lookup(self, name: str) -> SyncRecord | None:
        """Read the record for a configured document name."""
        path = self.record_path(name)
        if not path.is_file():
            return None
        return self._read(path)

    def list_records(self) -> list[SyncRecord]:
        """Read every valid record, sorted by file name."""
        if not self.metadata_dir.is_dir():
            return []
        records = []
        for path in sorted(self.metadata_dir.glob(f"*{METADATA_SUFFIX}")):
            record = self._read(path)
            if record is not None:
                records.append(record)
        return records

    def lookup_by_url(self, url: str) -> SyncRecord | None:
        """Find the record whose source URL matches."""
        for record in self.list_records():
            if record.url == url:
                return record
        return None

    def stale_records(self, active_urls: Iterable[str]) -> list[SyncRecord]:
        """Records whose URL is no longer configured."""
        active = set(active_urls)
        return [r for r in self.list_records() if r.url not in active]

    def output_exists(self, record: SyncRecord) -> bool:
        """Check that the file a record points at is still on disk."""
        return (self.output_dir / record.output_file_name).is_file()
