"""Shared fixtures: an in-memory stand-in for FeishuClient."""

from pathlib import Path
from typing import Any

import pytest

from feishu_export.core.client import FeishuAPIError


def page_block(block_id: str, children: list[str]) -> dict[str, Any]:
    return {"block_id": block_id, "parent_id": "", "block_type": 1, "children": children, "page": {"elements": []}}


def text_block(block_id: str, parent_id: str, content: str, block_type: int = 2, field: str = "text") -> dict[str, Any]:
    return {
        "block_id": block_id,
        "parent_id": parent_id,
        "block_type": block_type,
        field: {"elements": [{"text_run": {"content": content}}]},
    }


def bitable_block(block_id: str, parent_id: str, token: str) -> dict[str, Any]:
    return {"block_id": block_id, "parent_id": parent_id, "block_type": 18, "bitable": {"token": token}}


class FakeClient:
    """Serves canned API data and records which calls were made."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.blocks: dict[str, list[dict[str, Any]]] = {}
        self.wiki_nodes: dict[str, dict[str, Any]] = {}
        self.users: dict[str, str] = {}
        self.apps: dict[str, dict[str, Any]] = {}
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.views: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.fields: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.record_pages: dict[tuple[str, str], list[list[dict[str, Any]]]] = {}
        self.folder_files: dict[str, list[dict[str, Any]]] = {}
        self.space_names: dict[str, str] = {}
        self.space_nodes: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.fail_record_page: int | None = None
        self.calls: list[tuple[str, ...]] = []

    def add_docx(self, token: str, title: str, revision: int, paragraphs: list[str]) -> None:
        children = [f"{token}_b{i}" for i in range(len(paragraphs))]
        self.documents[token] = {"document_id": token, "revision_id": revision, "title": title}
        self.blocks[token] = [page_block(token, children)] + [
            text_block(child, token, text) for child, text in zip(children, paragraphs)
        ]

    # Documents

    def get_docx_document(self, document_id: str) -> dict[str, Any]:
        self.calls.append(("document", document_id))
        if document_id not in self.documents:
            raise FeishuAPIError(f"document {document_id} not found", 404)
        return self.documents[document_id]

    def list_docx_blocks(self, document_id: str) -> list[dict[str, Any]]:
        self.calls.append(("blocks", document_id))
        if document_id not in self.blocks:
            raise FeishuAPIError(f"document {document_id} not found", 404)
        return self.blocks[document_id]

    def get_docx_content(self, document_id: str) -> tuple[dict[str, Any], list[dict[str, Any]]]:
        return self.get_docx_document(document_id), self.list_docx_blocks(document_id)

    def get_wiki_node(self, node_token: str) -> dict[str, Any]:
        self.calls.append(("wiki_node", node_token))
        if node_token not in self.wiki_nodes:
            raise FeishuAPIError(f"node {node_token} not found", 404)
        return self.wiki_nodes[node_token]

    def get_user_name(self, open_id: str) -> str:
        if open_id not in self.users:
            raise FeishuAPIError("no such user", 404)
        return self.users[open_id]

    def download_media(self, file_token: str, target_dir: Path) -> Path:
        target_dir = Path(target_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"{file_token}.png"
        path.write_bytes(b"png")
        return path

    def list_folder_files(self, folder_token: str) -> list[dict[str, Any]]:
        return self.folder_files.get(folder_token, [])

    def get_wiki_space_name(self, space_id: str) -> str:
        return self.space_names.get(space_id, "")

    def list_wiki_nodes(self, space_id: str, parent_node_token: str | None = None) -> list[dict[str, Any]]:
        return self.space_nodes.get((space_id, parent_node_token or ""), [])

    # Bitable

    def get_bitable_meta(self, app_token: str) -> dict[str, Any]:
        if app_token not in self.apps:
            raise FeishuAPIError("app not found", 404)
        return self.apps[app_token]

    def list_bitable_tables(self, app_token: str) -> list[dict[str, Any]]:
        return self.tables.get(app_token, [])

    def list_bitable_views(self, app_token: str, table_id: str) -> list[dict[str, Any]]:
        return self.views.get((app_token, table_id), [])

    def list_bitable_fields(self, app_token: str, table_id: str, view_id: str = "") -> list[dict[str, Any]]:
        self.calls.append(("fields", app_token, table_id))
        if (app_token, table_id) not in self.fields:
            raise FeishuAPIError("table not found", 404, 1254041)
        return self.fields[(app_token, table_id)]

    def get_bitable_record_page(
        self,
        app_token: str,
        table_id: str,
        view_id: str = "",
        page_token: str = "",
    ) -> dict[str, Any]:
        index = int(page_token or 0)
        self.calls.append(("records", app_token, table_id, str(index)))
        if self.fail_record_page is not None and index == self.fail_record_page:
            raise FeishuAPIError("server error", 500)
        pages = self.record_pages.get((app_token, table_id)) or [[]]
        has_more = index + 1 < len(pages)
        return {
            "items": pages[index],
            "has_more": has_more,
            "page_token": str(index + 1) if has_more else "",
        }


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()
