"""Tests for the docx block tree and Markdown rendering."""

from typing import Any

from feishu_export.core.blocks import BlockTree
from feishu_export.core.fingerprint import document_fingerprint, revision_fingerprint
from feishu_export.core.markdown import MarkdownRenderer, mention_user_ids

from conftest import bitable_block, page_block, text_block


def block(block_id: str, parent_id: str, block_type: int, field: str, data: dict[str, Any], children: list[str] | None = None) -> dict[str, Any]:
    result = {"block_id": block_id, "parent_id": parent_id, "block_type": block_type, field: data}
    if children:
        result["children"] = children
    return result


def run(content: str, **style: Any) -> dict[str, Any]:
    return {"text_run": {"content": content, "text_element_style": style}}


class TestBlockTree:
    """Tests for BlockTree."""

    def test_root_and_children(self) -> None:
        blocks = [page_block("doc", ["a", "missing", "b"]), text_block("a", "doc", "A"), text_block("b", "doc", "B")]
        tree = BlockTree(blocks)

        assert tree.root_id == "doc"
        assert tree.children("doc") == ["a", "b"]

    def test_depth_first_order(self) -> None:
        blocks = [
            page_block("doc", ["a", "c"]),
            {**text_block("a", "doc", "A"), "children": ["b"]},
            text_block("b", "a", "B"),
            text_block("c", "doc", "C"),
        ]

        order = [b["block_id"] for b in BlockTree(blocks).iter_depth_first()]

        assert order == ["doc", "a", "b", "c"]

    def test_cycle_terminates(self) -> None:
        blocks = [
            page_block("doc", ["a"]),
            {**text_block("a", "doc", "A"), "children": ["doc"]},
        ]

        order = [b["block_id"] for b in BlockTree(blocks).iter_depth_first()]

        assert order == ["doc", "a"]

    def test_bitable_and_image_tokens(self) -> None:
        blocks = [
            page_block("doc", ["t1", "i1", "t2", "t3"]),
            bitable_block("t1", "doc", "AppA_tblA"),
            block("i1", "doc", 27, "image", {"token": "img1"}),
            bitable_block("t2", "doc", "AppB_tblB"),
            bitable_block("t3", "doc", "AppA_tblA"),
        ]
        tree = BlockTree(blocks)

        assert tree.bitable_tokens() == ["AppA_tblA", "AppB_tblB"]
        assert tree.image_tokens() == ["img1"]

    def test_empty(self) -> None:
        tree = BlockTree([])

        assert tree.root_id is None
        assert list(tree.iter_depth_first()) == []


class TestMarkdownRenderer:
    """Tests for MarkdownRenderer."""

    def test_title_and_paragraphs(self) -> None:
        blocks = [page_block("doc", ["a", "b"]), text_block("a", "doc", "Hello"), text_block("b", "doc", "World")]

        markdown = MarkdownRenderer().render({"title": "Notes"}, blocks)

        assert markdown == "# Notes\n\nHello\n\nWorld\n"

    def test_headings(self) -> None:
        blocks = [
            page_block("doc", ["h1", "h2"]),
            text_block("h1", "doc", "Intro", block_type=3, field="heading1"),
            text_block("h2", "doc", "Detail", block_type=4, field="heading2"),
        ]

        assert MarkdownRenderer().render_body(blocks) == "# Intro\n\n## Detail\n"

    def test_lists_are_tight_and_numbered(self) -> None:
        blocks = [
            page_block("doc", ["o1", "o2", "b1"]),
            text_block("o1", "doc", "first", block_type=13, field="ordered"),
            {**text_block("o2", "doc", "second", block_type=13, field="ordered"), "children": ["n1"]},
            text_block("n1", "o2", "nested", block_type=12, field="bullet"),
            text_block("b1", "doc", "bullet", block_type=12, field="bullet"),
        ]

        markdown = MarkdownRenderer().render_body(blocks)

        assert markdown == "1. first\n2. second\n   - nested\n\n- bullet\n"

    def test_todo(self) -> None:
        blocks = [
            page_block("doc", ["t1"]),
            block("t1", "doc", 17, "todo", {"elements": [run("ship")], "style": {"done": True}}),
        ]

        assert MarkdownRenderer().render_body(blocks) == "- [x] ship\n"

    def test_inline_styles_and_links(self) -> None:
        elements = [
            run("bold ", bold=True),
            run("and "),
            run("code", inline_code=True),
            run(" "),
            run("site", link={"url": "https%3A%2F%2Fexample.com"}),
        ]
        blocks = [page_block("doc", ["p"]), block("p", "doc", 2, "text", {"elements": elements})]

        markdown = MarkdownRenderer().render_body(blocks)

        assert markdown == "**bold** and `code` [site](https://example.com)\n"

    def test_mentions(self) -> None:
        elements = [run("hi "), {"mention_user": {"user_id": "ou_1"}}]
        blocks = [page_block("doc", ["p"]), block("p", "doc", 2, "text", {"elements": elements})]

        assert mention_user_ids(blocks) == ["ou_1"]
        assert MarkdownRenderer({"ou_1": "Alice"}).render_body(blocks) == "hi @Alice\n"
        assert MarkdownRenderer().render_body(blocks) == "hi @ou_1\n"

    def test_code_block(self) -> None:
        code = {"elements": [run("print(1)\nprint(2)")], "style": {"language": 49}}
        blocks = [page_block("doc", ["c"]), block("c", "doc", 14, "code", code)]

        assert MarkdownRenderer().render_body(blocks) == "```python\nprint(1)\nprint(2)\n```\n"

    def test_image_divider_and_embeds(self) -> None:
        blocks = [
            page_block("doc", ["i", "d", "t"]),
            block("i", "doc", 27, "image", {"token": "imgTok"}),
            block("d", "doc", 22, "divider", {}),
            bitable_block("t", "doc", "AppA_tblA"),
        ]

        markdown = MarkdownRenderer().render_body(blocks)

        assert markdown == "![](imgTok)\n\n---\n\n<!-- bitable: AppA_tblA -->\n"

    def test_table(self) -> None:
        table = {"property": {"row_size": 2, "column_size": 2}, "cells": ["c1", "c2", "c3", "c4"]}
        blocks = [page_block("doc", ["tbl"]), block("tbl", "doc", 31, "table", table)]
        for index, cell_id in enumerate(["c1", "c2", "c3", "c4"]):
            blocks.append(block(cell_id, "tbl", 32, "table_cell", {}, children=[f"{cell_id}p"]))
            blocks.append(text_block(f"{cell_id}p", cell_id, f"v{index}|x" if index == 3 else f"v{index}"))

        markdown = MarkdownRenderer().render_body(blocks)

        assert markdown == "| v0 | v1 |\n|---|---|\n| v2 | v3\\|x |\n"

    def test_callout_is_quoted(self) -> None:
        blocks = [
            page_block("doc", ["co"]),
            block("co", "doc", 19, "callout", {}, children=["p1", "p2"]),
            text_block("p1", "co", "Note"),
            text_block("p2", "co", "More"),
        ]

        assert MarkdownRenderer().render_body(blocks) == "> Note\n>\n> More\n"

    def test_empty_document(self) -> None:
        assert MarkdownRenderer().render({"title": "Empty"}, [page_block("doc", [])]) == "# Empty\n"


class TestFingerprints:
    """Tests for change detection fingerprints."""

    def test_revision(self) -> None:
        assert revision_fingerprint({"revision_id": 12}) == "12"
        assert revision_fingerprint({}) == ""

    def test_content_hash_ignores_mention_names(self) -> None:
        elements = [{"mention_user": {"user_id": "ou_1"}}]
        blocks = [page_block("doc", ["p"]), block("p", "doc", 2, "text", {"elements": elements})]

        first = document_fingerprint({"title": "T"}, blocks)
        second = document_fingerprint({"title": "T"}, blocks)

        assert first == second
        assert len(first) == 64

    def test_content_hash_changes_with_text(self) -> None:
        before = [page_block("doc", ["p"]), text_block("p", "doc", "old")]
        after = [page_block("doc", ["p"]), text_block("p", "doc", "new")]

        assert document_fingerprint({"title": "T"}, before) != document_fingerprint({"title": "T"}, after)
        assert document_fingerprint({"title": "A"}, before) != document_fingerprint({"title": "B"}, before)
