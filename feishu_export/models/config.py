"""Configuration and data models for the sync system."""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..core.url_parser import TARGET_TYPES, detect_target_type


SYNC_MODE_CLEAN_ALL = "clean_all"
SYNC_MODE_INCREMENTAL = "incremental"
SYNC_MODES = (SYNC_MODE_CLEAN_ALL, SYNC_MODE_INCREMENTAL)

CONFIG_VERSION = "1.0"
DEFAULT_CONFIG_NAMES = ("config.yml", "config.yaml", "sync_config.yaml", "sync_config.yml")
INCLUDE_SYSTEM_FIELDS_ENV = "FEISHU_EXPORT_INCLUDE_SYSTEM_FIELDS"
UNNAMED_FILE = "untitled"


class ConfigError(Exception):
    """Raised for invalid configuration or configuration edits."""
    pass


def sanitize_filename(name: str) -> str:
    """Sanitize a name for use as a file name.

    Replaces characters that are invalid on common filesystems with
    underscores. Falls back to a fixed name when nothing is left.
    """
    sanitized = re.sub(r'[\\/:*?"<>|]', '_', name).strip()
    return sanitized or UNNAMED_FILE


def env_flag(name: str) -> bool:
    """Read a truthy environment flag (1/true/yes/on)."""
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DocumentTarget:
    """A configured document to keep in sync."""

    name: str
    url: str
    group: str = ""
    type: str = ""  # Empty means detect from URL
    skip_images: bool | None = None  # None inherits the global setting
    bitable_view_fields_only: bool | None = None
    bitable_filter_images: bool | None = None

    def resolved_type(self) -> str:
        """Get the sync type, detecting it from the URL when not set."""
        return detect_target_type(self.url, self.type or None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting unset overrides."""
        data: dict[str, Any] = {"name": self.name, "url": self.url, "group": self.group}
        if self.type:
            data["type"] = self.type
        for key in ("skip_images", "bitable_view_fields_only", "bitable_filter_images"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentTarget":
        """Create from dictionary."""
        if not str(data.get("name") or "").strip():
            raise ConfigError(f"Document name is required for {data.get('url', '')}")
        doc_type = data.get("type") or ""
        if doc_type and doc_type not in TARGET_TYPES:
            raise ConfigError(f"Unknown document type '{doc_type}' for {data.get('name', '')}")
        return cls(
            name=data.get("name", ""),
            url=data.get("url", ""),
            group=data.get("group") or "",
            type=doc_type,
            skip_images=data.get("skip_images"),
            bitable_view_fields_only=data.get("bitable_view_fields_only"),
            bitable_filter_images=data.get("bitable_filter_images"),
        )


@dataclass
class DocumentOptions:
    """Effective per-document options after merging global settings."""

    skip_images: bool = False
    use_original_title: bool = False
    view_fields_only: bool = False
    filter_images: bool = False
    include_system_fields: bool = False


@dataclass
class SyncSettings:
    """Sync operation settings."""

    output_dir: str = "./feishu_docs"
    sync_mode: str = SYNC_MODE_CLEAN_ALL
    concurrent_downloads: int = 3
    organize_by_group: bool = True
    skip_images: bool = False
    use_original_title: bool = False
    bitable_view_fields_only: bool = False
    bitable_filter_images: bool = False
    include_system_fields: bool = field(default_factory=lambda: env_flag(INCLUDE_SYSTEM_FIELDS_ENV))

    def options_for(self, target: DocumentTarget) -> DocumentOptions:
        """Merge the global settings with a document's overrides."""

        def pick(override: bool | None, default: bool) -> bool:
            return default if override is None else override

        return DocumentOptions(
            skip_images=pick(target.skip_images, self.skip_images),
            use_original_title=self.use_original_title,
            view_fields_only=pick(target.bitable_view_fields_only, self.bitable_view_fields_only),
            filter_images=pick(target.bitable_filter_images, self.bitable_filter_images),
            include_system_fields=self.include_system_fields,
        )

    def output_dir_for(self, target: DocumentTarget) -> Path:
        """Directory a target's files are written to."""
        base = Path(self.output_dir)
        if self.organize_by_group and target.group:
            return base / target.group
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "output_dir": self.output_dir,
            "sync_mode": self.sync_mode,
            "concurrent_downloads": self.concurrent_downloads,
            "organize_by_group": self.organize_by_group,
            "skip_images": self.skip_images,
            "use_original_title": self.use_original_title,
            "bitable_view_fields_only": self.bitable_view_fields_only,
            "bitable_filter_images": self.bitable_filter_images,
            "include_system_fields": self.include_system_fields,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncSettings":
        """Create from dictionary, normalizing invalid values to defaults."""
        defaults = cls()
        sync_mode = data.get("sync_mode") or defaults.sync_mode
        if sync_mode not in SYNC_MODES:
            sync_mode = defaults.sync_mode
        try:
            concurrent = int(data.get("concurrent_downloads", defaults.concurrent_downloads))
        except (TypeError, ValueError):
            concurrent = defaults.concurrent_downloads
        if concurrent <= 0:
            concurrent = defaults.concurrent_downloads

        include_system = data.get("include_system_fields")
        return cls(
            output_dir=data.get("output_dir") or defaults.output_dir,
            sync_mode=sync_mode,
            concurrent_downloads=concurrent,
            organize_by_group=data.get("organize_by_group", True),
            skip_images=data.get("skip_images", False),
            use_original_title=data.get("use_original_title", False),
            bitable_view_fields_only=data.get("bitable_view_fields_only", False),
            bitable_filter_images=data.get("bitable_filter_images", False),
            include_system_fields=defaults.include_system_fields if include_system is None else bool(include_system),
        )


@dataclass
class MergeSettings:
    """Settings for the merge command."""

    input_dir: str = "./feishu_docs"
    output_dir: str = "./merged"
    filename: str = "merged_docs.md"
    csv_filename: str = "merged_tables.md"
    include_timestamp: bool = True
    sort_files: bool = True
    header_title: str = "Feishu documents"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "input_dir": self.input_dir,
            "output_dir": self.output_dir,
            "filename": self.filename,
            "csv_filename": self.csv_filename,
            "include_timestamp": self.include_timestamp,
            "sort_files": self.sort_files,
            "header_title": self.header_title,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MergeSettings":
        """Create from dictionary."""
        defaults = cls()
        return cls(
            input_dir=data.get("input_dir") or defaults.input_dir,
            output_dir=data.get("output_dir") or defaults.output_dir,
            filename=data.get("filename") or defaults.filename,
            csv_filename=data.get("csv_filename") or defaults.csv_filename,
            include_timestamp=data.get("include_timestamp", True),
            sort_files=data.get("sort_files", True),
            header_title=data.get("header_title") or defaults.header_title,
        )


@dataclass
class OutputSettings:
    """Output behavior of the download command."""

    title_as_filename: bool = False
    skip_image_download: bool = False
    dump: bool = False


@dataclass
class SyncConfig:
    """Main configuration for the sync system."""

    version: str = CONFIG_VERSION
    sync: SyncSettings = field(default_factory=SyncSettings)
    merge: MergeSettings = field(default_factory=MergeSettings)
    documents: list[DocumentTarget] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncConfig":
        """Create from dictionary."""
        return cls(
            version=str(data.get("version") or CONFIG_VERSION),
            sync=SyncSettings.from_dict(data.get("sync") or {}),
            merge=MergeSettings.from_dict(data.get("merge") or {}),
            documents=[DocumentTarget.from_dict(d) for d in data.get("documents") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "version": self.version,
            "sync": self.sync.to_dict(),
            "merge": self.merge.to_dict(),
            "documents": [d.to_dict() for d in self.documents],
        }

    @classmethod
    def load(cls, config_path: Path) -> "SyncConfig":
        """Load configuration from a YAML or JSON file.

        A missing file yields the default configuration.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            return cls()

        try:
            with open(config_path, encoding="utf-8") as f:
                if config_path.suffix.lower() == ".json":
                    data = json.load(f) or {}
                else:
                    data = yaml.safe_load(f) or {}
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read config {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config {config_path} must contain a mapping")
        return cls.from_dict(data)

    def save(self, config_path: Path) -> None:
        """Save configuration to a YAML or JSON file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            if config_path.suffix.lower() == ".json":
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
                f.write("\n")
            else:
                yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    def add_document(self, name: str, url: str, group: str = "", doc_type: str = "") -> DocumentTarget:
        """Add a document, rejecting duplicate names or URLs."""
        if not name.strip() or not url:
            raise ConfigError("Document name and URL are required")
        if doc_type and doc_type not in TARGET_TYPES:
            raise ConfigError(f"Unknown document type '{doc_type}'")
        for doc in self.documents:
            if doc.url == url:
                raise ConfigError(f"Document URL already exists: {url}")
            if doc.name == name:
                raise ConfigError(f"Document name already exists: {name}")

        target = DocumentTarget(name=name, url=url, group=group, type=doc_type)
        self.documents.append(target)
        return target

    def remove_document(self, name_or_index: str | int) -> DocumentTarget:
        """Remove a document by 1-based index or by name."""
        if isinstance(name_or_index, int) or str(name_or_index).isdigit():
            index = int(name_or_index) - 1
            if 0 <= index < len(self.documents):
                return self.documents.pop(index)
        for i, doc in enumerate(self.documents):
            if doc.name == name_or_index:
                return self.documents.pop(i)
        raise ConfigError(f"Document not found: {name_or_index}")

    def get_documents(self, group: str | None = None) -> list[DocumentTarget]:
        """Get documents, optionally filtered by group."""
        if not group:
            return list(self.documents)
        return [d for d in self.documents if d.group == group]

    def groups(self) -> list[str]:
        """Get the distinct non-empty groups in configuration order."""
        seen: list[str] = []
        for doc in self.documents:
            if doc.group and doc.group not in seen:
                seen.append(doc.group)
        return seen


def user_config_dir() -> Path:
    """Platform config directory for feishu-export."""
    base = os.getenv("XDG_CONFIG_HOME") or os.getenv("APPDATA")
    root = Path(base) if base else Path.home() / ".config"
    return root / "feishu-export"


def find_config_path(explicit: str | Path | None = None, cwd: Path | None = None) -> Path:
    """Locate the sync configuration file.

    An explicit path always wins. Otherwise the working directory is searched
    for the conventional names, then the user config directory. When nothing
    exists the first conventional name in the working directory is returned.
    """
    if explicit:
        return Path(explicit)
    cwd = Path(cwd) if cwd else Path.cwd()
    for name in DEFAULT_CONFIG_NAMES:
        candidate = cwd / name
        if candidate.exists():
            return candidate
    user_config = user_config_dir() / "config.yaml"
    if user_config.exists():
        return user_config
    return cwd / DEFAULT_CONFIG_NAMES[0]
