"""Docx block tree indexed by block ID."""

from collections.abc import Iterator
from typing import Any


class BlockType:
    """Docx block type codes."""

    PAGE = 1
    TEXT = 2
    HEADING1 = 3
    HEADING9 = 11
    BULLET = 12
    ORDERED = 13
    CODE = 14
    QUOTE = 15
    TODO = 17
    BITABLE = 18
    CALLOUT = 19
    DIVIDER = 22
    FILE = 23
    GRID = 24
    GRID_COLUMN = 25
    IMAGE = 27
    SHEET = 30
    TABLE = 31
    TABLE_CELL = 32
    QUOTE_CONTAINER = 34


class BlockTree:
    """Flat arena of docx blocks with parent/children links by ID.

    The blocks endpoint returns every block of a document as a flat list;
    `children` holds child IDs and `parent_id` the parent's ID.
    """

    def __init__(self, blocks: list[dict[str, Any]]) -> None:
        self.blocks = blocks
        self.by_id: dict[str, dict[str, Any]] = {}
        for block in blocks:
            block_id = block.get("block_id")
            if block_id:
                self.by_id[block_id] = block

    def get(self, block_id: str) -> dict[str, Any] | None:
        return self.by_id.get(block_id)

    def children(self, block_id: str) -> list[str]:
        """Child IDs of a block that exist in the tree, in order."""
        block = self.by_id.get(block_id) or {}
        return [c for c in block.get("children") or [] if c in self.by_id]

    @property
    def root_id(self) -> str | None:
        """ID of the page block at the top of the document."""
        for block in self.blocks:
            block_id = block.get("block_id")
            parent_id = block.get("parent_id") or ""
            if block_id and (not parent_id or parent_id == block_id):
                return block_id
        for block in self.blocks:
            if block.get("block_type") == BlockType.PAGE and block.get("block_id"):
                return block["block_id"]
        return None

    def iter_depth_first(self, start: str | None = None) -> Iterator[dict[str, Any]]:
        """Walk blocks depth-first in document order using an explicit stack.

        Blocks already visited are skipped, so malformed documents with
        cycles terminate.
        """
        start = start or self.root_id
        if start is None:
            return
        stack = [start]
        visited: set[str] = set()
        while stack:
            block_id = stack.pop()
            if block_id in visited:
                continue
            visited.add(block_id)
            block = self.by_id.get(block_id)
            if block is None:
                continue
            yield block
            stack.extend(reversed(self.children(block_id)))

    def bitable_tokens(self) -> list[str]:
        """Tokens of embedded Bitable blocks, deduplicated in document order."""
        tokens: list[str] = []
        for block in self.iter_depth_first():
            if block.get("block_type") != BlockType.BITABLE:
                continue
            token = (block.get("bitable") or {}).get("token") or ""
            if token and token not in tokens:
                tokens.append(token)
        return tokens

    def image_tokens(self) -> list[str]:
        """Tokens of image blocks in document order."""
        tokens: list[str] = []
        for block in self.iter_depth_first():
            if block.get("block_type") == BlockType.IMAGE:
                token = (block.get("image") or {}).get("token") or ""
                if token and token not in tokens:
                    tokens.append(token)
        return tokens
