"""Data models for the sync system."""

from .config import (
    ConfigError,
    DocumentOptions,
    DocumentTarget,
    MergeSettings,
    OutputSettings,
    SyncConfig,
    SyncSettings,
    find_config_path,
    sanitize_filename,
)

__all__ = [
    "ConfigError",
    "DocumentOptions",
    "DocumentTarget",
    "MergeSettings",
    "OutputSettings",
    "SyncConfig",
    "SyncSettings",
    "find_config_path",
    "sanitize_filename",
]
