"""Tests for Feishu URL parsing."""

import pytest

from feishu_export.core.url_parser import (
    UrlParseError,
    build_document_url,
    detect_target_type,
    extract_bitable_params,
    get_site_prefix,
    parse_document_url,
    parse_folder_url,
    parse_wiki_space_url,
)


class TestParseDocumentUrl:
    """Tests for parse_document_url."""

    def test_docx(self) -> None:
        assert parse_document_url("https://example.feishu.cn/docx/AbC123") == ("docx", "AbC123")

    def test_wiki_with_query(self) -> None:
        assert parse_document_url("https://example.larksuite.com/wiki/Wk9?from=share") == ("wiki", "Wk9")

    def test_base_with_table(self) -> None:
        assert parse_document_url("https://example.feishu.cn/base/App1?table=tbl1&view=vew1") == ("base", "App1")

    def test_legacy_docs(self) -> None:
        assert parse_document_url("https://example.feishu.cn/docs/Old1") == ("docs", "Old1")

    def test_rejects_other_paths(self) -> None:
        with pytest.raises(UrlParseError, match="Invalid feishu/larksuite document URL"):
            parse_document_url("https://example.feishu.cn/drive/home")

    def test_rejects_wiki_space(self) -> None:
        with pytest.raises(UrlParseError, match="wiki space"):
            parse_document_url("https://example.feishu.cn/wiki/settings/7123")

    def test_rejects_non_url(self) -> None:
        with pytest.raises(UrlParseError, match="Invalid URL format"):
            parse_document_url("docx/AbC123")


class TestFolderAndSpace:
    """Tests for folder and wiki space URLs."""

    def test_folder(self) -> None:
        assert parse_folder_url("https://example.feishu.cn/drive/folder/Fold1") == "Fold1"

    def test_folder_invalid(self) -> None:
        with pytest.raises(UrlParseError):
            parse_folder_url("https://example.feishu.cn/docx/AbC")

    def test_wiki_space(self) -> None:
        prefix, space_id = parse_wiki_space_url("https://example.feishu.cn/wiki/settings/7123456789")

        assert prefix == "https://example.feishu.cn"
        assert space_id == "7123456789"

    def test_site_prefix(self) -> None:
        assert get_site_prefix("https://example.larksuite.com/docx/a") == "https://example.larksuite.com"


class TestBitableParams:
    """Tests for extract_bitable_params."""

    def test_table_and_view(self) -> None:
        assert extract_bitable_params("https://x.feishu.cn/base/App?table=tbl1&view=vew1") == ("tbl1", "vew1")

    def test_view_optional(self) -> None:
        assert extract_bitable_params("https://x.feishu.cn/wiki/Wk?table=tbl1") == ("tbl1", "")

    def test_missing_table(self) -> None:
        with pytest.raises(UrlParseError, match="table parameter missing"):
            extract_bitable_params("https://x.feishu.cn/base/App?view=vew1")


class TestDetectTargetType:
    """Tests for detect_target_type."""

    def test_detection(self) -> None:
        assert detect_target_type("https://x.feishu.cn/wiki/settings/123") == "wiki_space"
        assert detect_target_type("https://x.feishu.cn/wiki/space/123") == "wiki_space"
        assert detect_target_type("https://x.feishu.cn/wiki/Wk1") == "wiki_page"
        assert detect_target_type("https://x.feishu.cn/drive/folder/F1") == "folder"
        assert detect_target_type("https://x.feishu.cn/base/App?table=t") == "xlsx"
        assert detect_target_type("https://x.feishu.cn/docx/D1") == "docx"

    def test_explicit_wins(self) -> None:
        assert detect_target_type("https://x.feishu.cn/base/App?table=t", "csv") == "csv"

    def test_build_document_url(self) -> None:
        assert build_document_url("https://x.feishu.cn/", "docx", "D1") == "https://x.feishu.cn/docx/D1"
