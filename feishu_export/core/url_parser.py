"""URL parsing utilities for Feishu/Lark URLs.

This module provides functions to parse Feishu document URLs, extracting
document tokens, wiki space IDs, folder tokens, and the Bitable table/view
query parameters.
"""

import re
from typing import Literal
from urllib.parse import urlparse, parse_qs


DocType = Literal["docx", "docs", "wiki", "base", "sheets"]
TargetType = Literal["docx", "wiki_page", "wiki_space", "folder", "csv", "xlsx"]

TARGET_TYPES: tuple[str, ...] = ("docx", "wiki_page", "wiki_space", "folder", "csv", "xlsx")


class UrlParseError(Exception):
    """Raised when URL parsing fails."""
    pass


_DOC_PATTERN = re.compile(r'/(docx|docs|wiki|base|sheets)/([a-zA-Z0-9]+)')
_FOLDER_PATTERN = re.compile(r'/drive/folder/([a-zA-Z0-9]+)')
_WIKI_SPACE_PATTERN = re.compile(r'/wiki/(?:settings|space)/([a-zA-Z0-9]+)')


def _split(url: str) -> tuple[str, str]:
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        raise UrlParseError(f"Invalid URL format: {url}")
    return f"{parsed.scheme}://{parsed.netloc}", parsed.path


def parse_document_url(url: str) -> tuple[DocType, str]:
    """Extract the document type and token from a document URL.

    Supported formats:
    - https://example.feishu.cn/docx/{token}
    - https://example.feishu.cn/wiki/{token}
    - https://example.feishu.cn/base/{appToken}?table=tbl...
    - https://example.larksuite.com/docx/{token}

    Raises:
        UrlParseError: If the URL does not point to a document
    """
    _, path = _split(url)
    if _WIKI_SPACE_PATTERN.search(path):
        raise UrlParseError(f"URL points to a wiki space, not a document: {url}")
    match = _DOC_PATTERN.search(path)
    if not match:
        raise UrlParseError(f"Invalid feishu/larksuite document URL: {url}")
    return match.group(1), match.group(2)  # type: ignore[return-value]


def parse_folder_url(url: str) -> str:
    """Extract the folder token from a drive folder URL."""
    _, path = _split(url)
    match = _FOLDER_PATTERN.search(path)
    if not match:
        raise UrlParseError(f"Invalid feishu/larksuite folder URL: {url}")
    return match.group(1)


def parse_wiki_space_url(url: str) -> tuple[str, str]:
    """Extract the site prefix and space ID from a wiki settings URL.

    Returns:
        Tuple of (prefix, space_id), e.g.
        ("https://example.feishu.cn", "7123456789")
    """
    prefix, path = _split(url)
    match = _WIKI_SPACE_PATTERN.search(path)
    if not match:
        raise UrlParseError(f"Invalid feishu/larksuite wiki space URL: {url}")
    return prefix, match.group(1)


def get_site_prefix(url: str) -> str:
    """Return scheme://host for a URL."""
    prefix, _ = _split(url)
    return prefix


def extract_bitable_params(url: str) -> tuple[str, str]:
    """Read the table and view IDs from a URL's query string.

    Returns:
        Tuple of (table_id, view_id); view_id is empty when absent

    Raises:
        UrlParseError: If the URL carries no table parameter
    """
    query = parse_qs(urlparse(url.strip()).query)
    table_id = (query.get("table") or [""])[0]
    view_id = (query.get("view") or [""])[0]
    if not table_id:
        raise UrlParseError("table parameter missing in URL")
    return table_id, view_id


def detect_target_type(url: str, explicit: str | None = None) -> str:
    """Determine how a configured URL should be synced.

    An explicit type always wins. Otherwise wiki settings URLs are spaces,
    other wiki URLs are pages, drive folders are folders, Bitable apps
    export to XLSX and everything else is treated as a docx document.
    """
    if explicit:
        return explicit
    if "/wiki/settings/" in url or "/wiki/space/" in url:
        return "wiki_space"
    if "/wiki/" in url:
        return "wiki_page"
    if "/folder/" in url:
        return "folder"
    if "/base/" in url:
        return "xlsx"
    return "docx"


def build_document_url(prefix: str, doc_type: str, token: str) -> str:
    """Construct a document URL from its parts."""
    return f"{prefix.rstrip('/')}/{doc_type}/{token}"
