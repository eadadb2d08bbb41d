"""Render docx blocks as Markdown."""

from typing import Any
from urllib.parse import unquote

from .blocks import BlockTree, BlockType


_TEXT_FIELDS = {
    BlockType.TEXT: "text",
    BlockType.BULLET: "bullet",
    BlockType.ORDERED: "ordered",
    BlockType.CODE: "code",
    BlockType.QUOTE: "quote",
    BlockType.TODO: "todo",
}

_LIST_TYPES = {BlockType.BULLET, BlockType.ORDERED, BlockType.TODO}

# Subset of docx code language IDs
_CODE_LANGUAGES = {
    1: "", 7: "bash", 8: "csharp", 9: "cpp", 10: "c", 12: "css", 22: "go",
    24: "html", 28: "json", 29: "java", 30: "javascript", 32: "kotlin",
    39: "markdown", 49: "python", 52: "ruby", 53: "rust", 56: "sql",
    60: "shell", 61: "swift", 63: "typescript", 66: "xml", 67: "yaml",
}


def mention_user_ids(blocks: list[dict[str, Any]]) -> list[str]:
    """Collect the user IDs mentioned anywhere in a document."""
    ids: list[str] = []
    for block in blocks:
        for value in block.values():
            if not isinstance(value, dict):
                continue
            for element in value.get("elements") or []:
                user_id = (element.get("mention_user") or {}).get("user_id")
                if user_id and user_id not in ids:
                    ids.append(user_id)
    return ids


class MarkdownRenderer:
    """Converts a docx block list into Markdown text.

    Image blocks render as `![](<token>)`; the downloader rewrites the
    tokens to local paths after fetching the files.
    """

    def __init__(self, mention_names: dict[str, str] | None = None) -> None:
        self.mention_names = mention_names or {}
        self.tree = BlockTree([])

    def render(self, document: dict[str, Any], blocks: list[dict[str, Any]]) -> str:
        """Render a document with its title as the top-level heading."""
        body = self.render_body(blocks)
        title = document.get("title") or ""
        if title:
            return f"# {title}\n\n{body}" if body else f"# {title}\n"
        return body

    def render_body(self, blocks: list[dict[str, Any]]) -> str:
        self.tree = BlockTree(blocks)
        root_id = self.tree.root_id
        if root_id is None:
            return ""
        lines = self._render_children(self.tree.children(root_id))
        text = "\n".join(lines).strip()
        return text + "\n" if text else ""

    # -------------------------------------------------------------------------
    # Blocks
    # -------------------------------------------------------------------------

    def _render_children(self, block_ids: list[str]) -> list[str]:
        lines: list[str] = []
        previous_type = None
        ordinal = 0
        for block_id in block_ids:
            block = self.tree.get(block_id)
            if block is None:
                continue
            block_type = block.get("block_type")
            ordinal = ordinal + 1 if block_type == BlockType.ORDERED and previous_type == BlockType.ORDERED else 1
            rendered = self._render_block(block, ordinal)
            if not rendered:
                continue
            tight = block_type in _LIST_TYPES and block_type == previous_type
            if lines and not tight:
                lines.append("")
            lines.extend(rendered)
            previous_type = block_type
        return lines

    def _render_block(self, block: dict[str, Any], ordinal: int = 1) -> list[str]:
        block_type = block.get("block_type")
        block_id = block.get("block_id", "")

        if block_type == BlockType.PAGE:
            return self._render_children(self.tree.children(block_id))
        if block_type is not None and BlockType.HEADING1 <= block_type <= BlockType.HEADING9:
            level = min(block_type - 2, 6)
            text = self._text(block.get(f"heading{block_type - 2}"))
            return [f"{'#' * level} {text}"] if text else []
        if block_type == BlockType.TEXT:
            text = self._text(block.get("text"))
            return text.split("\n") if text else []
        if block_type in _LIST_TYPES:
            return self._render_list_item(block, block_type, ordinal)
        if block_type == BlockType.CODE:
            code = block.get("code") or {}
            language = _CODE_LANGUAGES.get((code.get("style") or {}).get("language"), "")
            return [f"```{language}", *self._text(code, styled=False).split("\n"), "```"]
        if block_type == BlockType.QUOTE:
            text = self._text(block.get("quote"))
            return [f"> {line}" for line in text.split("\n")] if text else []
        if block_type in (BlockType.QUOTE_CONTAINER, BlockType.CALLOUT):
            inner = self._render_children(self.tree.children(block_id))
            return [f"> {line}" if line else ">" for line in inner]
        if block_type == BlockType.DIVIDER:
            return ["---"]
        if block_type == BlockType.IMAGE:
            token = (block.get("image") or {}).get("token", "")
            return [f"![]({token})"] if token else []
        if block_type == BlockType.FILE:
            file_info = block.get("file") or {}
            name = file_info.get("name") or file_info.get("token", "")
            return [f"[{name}]({file_info.get('token', '')})"] if name else []
        if block_type == BlockType.TABLE:
            return self._render_table(block)
        if block_type == BlockType.BITABLE:
            token = (block.get("bitable") or {}).get("token", "")
            return [f"<!-- bitable: {token} -->"] if token else []
        if block_type == BlockType.SHEET:
            token = (block.get("sheet") or {}).get("token", "")
            return [f"<!-- sheet: {token} -->"] if token else []

        # Grids, columns and unknown containers
        return self._render_children(self.tree.children(block_id))

    def _render_list_item(self, block: dict[str, Any], block_type: int, ordinal: int) -> list[str]:
        field = _TEXT_FIELDS[block_type]
        container = block.get(field) or {}
        text = self._text(container)
        if block_type == BlockType.ORDERED:
            marker = f"{ordinal}."
        elif block_type == BlockType.TODO:
            marker = "- [x]" if (container.get("style") or {}).get("done") else "- [ ]"
        else:
            marker = "-"

        lines = [f"{marker} {text}"]
        indent = " " * (len(marker) + 1)
        for child_line in self._render_children(self.tree.children(block.get("block_id", ""))):
            lines.append(f"{indent}{child_line}" if child_line else "")
        return lines

    def _render_table(self, block: dict[str, Any]) -> list[str]:
        table = block.get("table") or {}
        prop = table.get("property") or {}
        rows = int(prop.get("row_size") or 0)
        cols = int(prop.get("column_size") or 0)
        cells = table.get("cells") or block.get("children") or []
        if rows <= 0 or cols <= 0:
            return []

        matrix = [["" for _ in range(cols)] for _ in range(rows)]
        for index, cell_id in enumerate(cells):
            row, col = divmod(index, cols)
            if row >= rows:
                break
            matrix[row][col] = self._cell_text(cell_id)

        lines = ["| " + " | ".join(matrix[0]) + " |", "|" + "---|" * cols]
        lines.extend("| " + " | ".join(row) + " |" for row in matrix[1:])
        return lines

    def _cell_text(self, cell_id: str) -> str:
        parts = []
        for line in self._render_children(self.tree.children(cell_id)):
            if line:
                parts.append(line.replace("|", "\\|"))
        return "<br>".join(parts)

    # -------------------------------------------------------------------------
    # Inline text
    # -------------------------------------------------------------------------

    def _text(self, container: dict[str, Any] | None, styled: bool = True) -> str:
        if not container:
            return ""
        parts = [self._element(element, styled) for element in container.get("elements") or []]
        return "".join(parts)

    def _element(self, element: dict[str, Any], styled: bool) -> str:
        text_run = element.get("text_run")
        if text_run:
            content = text_run.get("content") or ""
            if not styled or not content:
                return content
            style = text_run.get("text_element_style") or {}
            text = self._apply_style(content, style)
            url = (style.get("link") or {}).get("url")
            return f"[{text}]({unquote(url)})" if url else text

        mention_user = element.get("mention_user")
        if mention_user:
            user_id = mention_user.get("user_id", "")
            return f"@{self.mention_names.get(user_id) or user_id}"

        mention_doc = element.get("mention_doc")
        if mention_doc:
            title = mention_doc.get("title") or mention_doc.get("token", "")
            url = mention_doc.get("url")
            return f"[{title}]({unquote(url)})" if url else title

        equation = element.get("equation")
        if equation:
            content = (equation.get("content") or "").strip()
            return f"${content}$" if content else ""
        return ""

    @staticmethod
    def _apply_style(text: str, style: dict[str, Any]) -> str:
        # Markers must hug the text, so move surrounding whitespace outside
        stripped = text.strip()
        if not stripped:
            return text
        lead = text[: len(text) - len(text.lstrip())]
        trail = text[len(text.rstrip()):]
        if style.get("inline_code"):
            stripped = f"`{stripped}`"
        if style.get("bold"):
            stripped = f"**{stripped}**"
        if style.get("italic"):
            stripped = f"*{stripped}*"
        if style.get("strikethrough"):
            stripped = f"~~{stripped}~~"
        return f"{lead}{stripped}{trail}"
