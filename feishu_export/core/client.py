"""HTTP client wrapper for the Feishu Open API."""

import re
import threading
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from urllib.parse import unquote

import requests

from .auth import FeishuAuth, FeishuAuthError


class FeishuAPIError(Exception):
    """Exception raised for Feishu API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: int | None = None,
        response: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.response = response


# Business codes meaning the tenant token is no longer accepted
TOKEN_INVALID_CODES = {99991661, 99991663, 99991668}


class FeishuClient:
    """HTTP client for the Feishu REST API with tenant token authentication."""

    # Record page size used for Bitable exports
    RECORD_PAGE_SIZE = 500
    # Minimum spacing between requests (4 requests per second)
    MIN_REQUEST_INTERVAL = 0.25
    REQUEST_TIMEOUT = 60

    def __init__(self, auth: FeishuAuth | None = None) -> None:
        """Initialize client with authentication.

        Args:
            auth: FeishuAuth instance (creates one from env if not provided)
        """
        self.auth = auth or FeishuAuth()
        self.session = requests.Session()
        self._pace_lock = threading.Lock()
        self._last_request = 0.0

    def _pace(self) -> None:
        """Block until the shared request rate allows another call."""
        with self._pace_lock:
            wait = self._last_request + self.MIN_REQUEST_INTERVAL - time.monotonic()
            if wait > 0:
                time.sleep(wait)
            self._last_request = time.monotonic()

    def _send(
        self,
        method: str,
        path: str,
        query_params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        stream: bool = False,
    ) -> requests.Response:
        """Send an authenticated request and return the raw response."""
        self._pace()
        try:
            headers = self.auth.get_headers()
        except FeishuAuthError as e:
            raise FeishuAPIError(str(e)) from e

        try:
            response = self.session.request(
                method=method,
                url=self.auth.get_full_url(path),
                headers=headers,
                params={k: v for k, v in (query_params or {}).items() if v not in (None, "")},
                json=json_data if method in ("POST", "PUT", "PATCH") else None,
                timeout=self.REQUEST_TIMEOUT,
                stream=stream,
            )
        except requests.RequestException as e:
            raise FeishuAPIError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            code = None
            try:
                code = response.json().get("code")
            except ValueError:
                pass
            error_msg = f"API error {response.status_code}: {response.text[:500]}"
            raise FeishuAPIError(error_msg, response.status_code, code, response)

        return response

    def _request(
        self,
        method: str,
        path: str,
        query_params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request and return the response's data object.

        Raises:
            FeishuAPIError: On HTTP errors, transport failures or a non-zero code
        """
        for attempt in range(2):
            try:
                response = self._send(method, path, query_params, json_data)
            except FeishuAPIError as e:
                if attempt == 0 and e.code in TOKEN_INVALID_CODES:
                    self.auth.invalidate()
                    continue
                raise

            if not response.content:
                return {}

            try:
                payload: dict[str, Any] = response.json()
            except ValueError as e:
                raise FeishuAPIError(f"Invalid JSON response from {path}", response.status_code) from e

            code = payload.get("code", 0)
            if code != 0:
                if attempt == 0 and code in TOKEN_INVALID_CODES:
                    self.auth.invalidate()
                    continue
                raise FeishuAPIError(
                    f"API error {code}: {payload.get('msg', 'unknown error')}",
                    response.status_code,
                    code,
                    response,
                )
            return payload.get("data") or {}

        raise FeishuAPIError(f"Authentication rejected for {path}")

    def get(
        self,
        path: str,
        query_params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a GET request."""
        return self._request("GET", path, query_params)

    def post(
        self,
        path: str,
        json_data: dict[str, Any] | None = None,
        query_params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a POST request."""
        return self._request("POST", path, query_params, json_data)

    def paginate(
        self,
        path: str,
        query_params: dict[str, Any] | None = None,
        items_key: str = "items",
        token_key: str = "page_token",
    ) -> Iterator[dict[str, Any]]:
        """Yield items across all pages of a list endpoint.

        Paging stops when has_more is false, the next token is empty, or the
        server repeats a token it already handed out.
        """
        params = dict(query_params or {})
        seen: set[str] = set()
        while True:
            data = self.get(path, params)
            yield from data.get(items_key) or []

            next_token = data.get(token_key) or data.get("next_page_token") or ""
            if not data.get("has_more") or not next_token or next_token in seen:
                return
            seen.add(next_token)
            params["page_token"] = next_token

    # -------------------------------------------------------------------------
    # Document Operations
    # -------------------------------------------------------------------------

    def get_docx_document(self, document_id: str) -> dict[str, Any]:
        """Get docx metadata.

        Returns:
            Dictionary with document_id, revision_id and title
        """
        data = self.get(f"/open-apis/docx/v1/documents/{document_id}")
        return data.get("document") or {}

    def list_docx_blocks(self, document_id: str) -> list[dict[str, Any]]:
        """List every block of a docx document in document order."""
        path = f"/open-apis/docx/v1/documents/{document_id}/blocks"
        return list(self.paginate(path, {"page_size": 500, "document_revision_id": -1}))

    def get_docx_content(self, document_id: str) -> tuple[dict[str, Any], list[dict[str, Any]]]:
        """Get a docx document together with its blocks."""
        return self.get_docx_document(document_id), self.list_docx_blocks(document_id)

    def download_media(self, file_token: str, target_dir: Path) -> Path:
        """Download an image or file attachment into target_dir.

        The file name comes from the Content-Disposition header, falling back
        to the file token.

        Returns:
            Path of the written file
        """
        response = self._send("GET", f"/open-apis/drive/v1/medias/{file_token}/download", stream=True)

        filename = file_token
        disposition = response.headers.get("Content-Disposition", "")
        match = re.search(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", disposition)
        if match:
            filename = Path(unquote(match.group(1))).name or file_token

        target_dir = Path(target_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / filename
        with open(target, "wb") as f:
            for chunk in response.iter_content(chunk_size=65536):
                f.write(chunk)
        return target

    def get_user_name(self, open_id: str) -> str:
        """Get the display name of a user by open_id."""
        data = self.get(f"/open-apis/contact/v3/users/{open_id}", {"user_id_type": "open_id"})
        return (data.get("user") or {}).get("name", "")

    # -------------------------------------------------------------------------
    # Wiki Operations
    # -------------------------------------------------------------------------

    def get_wiki_node(self, node_token: str) -> dict[str, Any]:
        """Resolve a wiki node token.

        Returns:
            Node dictionary with obj_type, obj_token, title, has_child
        """
        data = self.get("/open-apis/wiki/v2/spaces/get_node", {"token": node_token})
        return data.get("node") or {}

    def get_wiki_space_name(self, space_id: str) -> str:
        """Get the display name of a wiki space."""
        data = self.get(f"/open-apis/wiki/v2/spaces/{space_id}")
        return (data.get("space") or {}).get("name", "")

    def list_wiki_nodes(self, space_id: str, parent_node_token: str | None = None) -> list[dict[str, Any]]:
        """List the child nodes of a wiki space or parent node."""
        params = {"page_size": 50, "parent_node_token": parent_node_token}
        return list(self.paginate(f"/open-apis/wiki/v2/spaces/{space_id}/nodes", params))

    # -------------------------------------------------------------------------
    # Folder Operations
    # -------------------------------------------------------------------------

    def list_folder_files(self, folder_token: str) -> list[dict[str, Any]]:
        """List files in a drive folder.

        Returns:
            List of file dictionaries with name, token, type and url
        """
        params = {"folder_token": folder_token, "page_size": 200}
        return list(self.paginate("/open-apis/drive/v1/files", params, items_key="files", token_key="next_page_token"))

    # -------------------------------------------------------------------------
    # Bitable Operations
    # -------------------------------------------------------------------------

    def get_bitable_meta(self, app_token: str) -> dict[str, Any]:
        """Get Bitable app metadata (name, revision)."""
        data = self.get(f"/open-apis/bitable/v1/apps/{app_token}")
        return data.get("app") or {}

    def list_bitable_tables(self, app_token: str) -> list[dict[str, Any]]:
        """List the tables of a Bitable app."""
        return list(self.paginate(f"/open-apis/bitable/v1/apps/{app_token}/tables", {"page_size": 100}))

    def list_bitable_views(self, app_token: str, table_id: str) -> list[dict[str, Any]]:
        """List the views of a Bitable table."""
        path = f"/open-apis/bitable/v1/apps/{app_token}/tables/{table_id}/views"
        return list(self.paginate(path, {"page_size": 100}))

    def list_bitable_fields(self, app_token: str, table_id: str, view_id: str = "") -> list[dict[str, Any]]:
        """List field schemas of a table, optionally scoped to a view.

        Returns:
            List of field dictionaries with field_id, field_name, type, property
        """
        path = f"/open-apis/bitable/v1/apps/{app_token}/tables/{table_id}/fields"
        return list(self.paginate(path, {"page_size": 100, "view_id": view_id}))

    def get_bitable_record_page(
        self,
        app_token: str,
        table_id: str,
        view_id: str = "",
        page_token: str = "",
    ) -> dict[str, Any]:
        """Fetch one page of records.

        Returns:
            Dictionary with items, has_more, page_token and total
        """
        path = f"/open-apis/bitable/v1/apps/{app_token}/tables/{table_id}/records"
        params = {
            "page_size": self.RECORD_PAGE_SIZE,
            "view_id": view_id,
            "page_token": page_token,
        }
        return self.get(path, params)

    # -------------------------------------------------------------------------
    # Health Check
    # -------------------------------------------------------------------------

    def verify_connection(self) -> bool:
        """Verify API connectivity by requesting a fresh tenant token.

        Raises:
            FeishuAPIError: On connection or auth failure
        """
        self.auth.invalidate()
        try:
            return bool(self.auth.get_token())
        except FeishuAuthError as e:
            raise FeishuAPIError(str(e)) from e
