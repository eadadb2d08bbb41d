"""Export Bitable tables to CSV or XLSX."""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

from rich.console import Console

from ..models.config import sanitize_filename
from .blocks import BlockTree
from .client import FeishuAPIError, FeishuClient
from .fields import FieldDescriptor, build_catalog, restrict_to_observed
from .normalizer import FieldValueNormalizer
from .url_parser import UrlParseError, extract_bitable_params, parse_document_url
from .writers import write_csv, write_xlsx


console = Console()

EXPORT_FORMATS = ("csv", "xlsx")


class ExportError(Exception):
    """Raised when a table cannot be exported."""
    pass


class TableExporter:
    """Exports one Bitable table (optionally one view) to a file."""

    def __init__(self, client: FeishuClient, include_system_fields: bool = False) -> None:
        """Initialize the exporter.

        Args:
            client: Feishu API client
            include_system_fields: Export created/modified time and user columns
        """
        self.client = client
        self.include_system_fields = include_system_fields

    # -------------------------------------------------------------------------
    # App token resolution
    # -------------------------------------------------------------------------

    def resolve_app_token(self, url: str, table_id: str) -> str:
        """Find the Bitable app token behind a URL.

        Direct Bitable URLs carry the app token. Wiki nodes may point at a
        Bitable or at a docx page; docx pages are searched for embedded
        Bitable blocks and each candidate is probed with a fields request.

        Raises:
            ExportError: If no embedded table can be found
        """
        try:
            doc_type, token = parse_document_url(url)
        except UrlParseError as e:
            raise ExportError(str(e)) from e

        if doc_type == "base":
            return token

        if doc_type == "wiki":
            node = self.client.get_wiki_node(token)
            obj_type = node.get("obj_type", "")
            if obj_type == "bitable":
                return node.get("obj_token", "")
            if obj_type != "docx":
                raise ExportError(f"Wiki node type '{obj_type}' has no embedded table")
            token = node.get("obj_token", "")
        elif doc_type != "docx":
            raise ExportError(f"Cannot export a table from a '{doc_type}' document")

        tree = BlockTree(self.client.list_docx_blocks(token))
        candidates = self._token_candidates(tree.bitable_tokens())
        if not candidates:
            raise ExportError(
                "Failed to resolve the table's app token from URL: page must embed "
                "a table or point to a bitable file"
            )

        for candidate in candidates:
            if self._probe(candidate, table_id):
                return candidate
        return candidates[0]

    @staticmethod
    def _token_candidates(tokens: list[str]) -> list[str]:
        # Embedded block tokens look like <appToken>_<tableId>
        candidates: list[str] = []
        for token in tokens:
            for candidate in (token.split("_", 1)[0], token):
                if candidate and candidate not in candidates:
                    candidates.append(candidate)
        return candidates

    def _probe(self, app_token: str, table_id: str) -> bool:
        try:
            self.client.list_bitable_fields(app_token, table_id)
        except FeishuAPIError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Naming
    # -------------------------------------------------------------------------

    def export_basename(self, app_token: str, table_id: str, view_id: str = "") -> str:
        """Build App_Table[_View] from remote names.

        Lookups that fail fall back to generic names or IDs.
        """
        app_name = "bitable"
        try:
            app_name = self.client.get_bitable_meta(app_token).get("name") or app_name
        except FeishuAPIError:
            pass

        table_name = table_id
        try:
            for table in self.client.list_bitable_tables(app_token):
                if table.get("table_id") == table_id:
                    table_name = table.get("name") or table_id
                    break
        except FeishuAPIError:
            pass

        parts = [app_name, table_name]
        if view_id:
            view_name = view_id
            try:
                for view in self.client.list_bitable_views(app_token, table_id):
                    if view.get("view_id") == view_id:
                        view_name = view.get("view_name") or view_id
                        break
            except FeishuAPIError:
                pass
            parts.append(view_name)

        return "_".join(sanitize_filename(part) for part in parts)

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def load_catalog(self, app_token: str, table_id: str, view_id: str = "") -> list[FieldDescriptor]:
        """Fetch the field schema and build the column catalog."""
        try:
            raw_fields = self.client.list_bitable_fields(app_token, table_id, view_id)
        except FeishuAPIError as e:
            raise ExportError(f"Failed to load fields of table {table_id}: {e}") from e

        catalog = build_catalog(
            (FieldDescriptor.from_dict(f) for f in raw_fields),
            include_system_fields=self.include_system_fields,
        )
        if not catalog:
            raise ExportError(f"Table {table_id} has no exportable fields")
        return catalog

    def iter_record_pages(self, app_token: str, table_id: str, view_id: str = "") -> Iterator[list[dict[str, Any]]]:
        """Yield record pages until the server reports no more."""
        page_token = ""
        seen: set[str] = set()
        while True:
            data = self.client.get_bitable_record_page(app_token, table_id, view_id, page_token)
            yield data.get("items") or []

            page_token = data.get("page_token") or ""
            if not data.get("has_more") or not page_token or page_token in seen:
                return
            seen.add(page_token)

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    def export(
        self,
        url: str,
        fmt: str,
        output_dir: Path,
        base_name: str | None = None,
        view_scoped: bool = False,
        filter_images: bool = False,
    ) -> str:
        """Export the table a URL refers to.

        Args:
            url: Bitable, wiki or docx URL with a table= query parameter
            fmt: "csv" or "xlsx"
            output_dir: Directory to write into
            base_name: File name without extension; derived from remote
                names when not given
            view_scoped: Only keep fields seen on the view's first page
            filter_images: Drop image file names from attachment and text cells

        Returns:
            Name of the written file, relative to output_dir
        """
        fmt = fmt.lower()
        if fmt not in EXPORT_FORMATS:
            raise ExportError(f"Unsupported export format: {fmt}")

        try:
            table_id, view_id = extract_bitable_params(url)
        except UrlParseError as e:
            raise ExportError(str(e)) from e

        app_token = self.resolve_app_token(url, table_id)
        name = sanitize_filename(base_name) if base_name else self.export_basename(app_token, table_id, view_id)
        catalog = self.load_catalog(app_token, table_id, view_id)

        normalizer = FieldValueNormalizer(is_csv_target=fmt == "csv", filter_images=filter_images)
        rows: list[list[str]] = []
        first_page = True
        for records in self.iter_record_pages(app_token, table_id, view_id):
            if first_page and view_scoped:
                catalog = restrict_to_observed(catalog, records)
            first_page = False
            for record in records:
                rows.append(normalizer.normalize_row(catalog, record.get("fields") or {}))

        file_name = f"{name}.{fmt}"
        target = Path(output_dir) / file_name
        if fmt == "csv":
            write_csv(target, catalog, rows)
        else:
            write_xlsx(target, catalog, rows, sheet_title=name)

        console.print(f"[green]Exported {len(rows)} rows x {len(catalog)} columns to {target}[/green]")
        return file_name
