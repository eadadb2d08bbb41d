"""Tenant access token authentication for the Feishu Open API."""

import os
import threading
import time
from typing import Any

import requests
from dotenv import load_dotenv


DEFAULT_BASE_URL = "https://open.feishu.cn"
TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"

# Refresh this many seconds before the server-side expiry
TOKEN_REFRESH_MARGIN = 60


class FeishuAuthError(Exception):
    """Raised when a tenant access token cannot be obtained."""
    pass


class FeishuAuth:
    """Handles Feishu app credentials and the tenant access token."""

    def __init__(
        self,
        app_id: str | None = None,
        app_secret: str | None = None,
        base_url: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize authentication with credentials.

        Args:
            app_id: Feishu app ID (or load from FEISHU_APP_ID env)
            app_secret: Feishu app secret (or load from FEISHU_APP_SECRET env)
            base_url: Open API base URL (or load from FEISHU_BASE_URL env)
            session: Optional requests session used for token requests
        """
        load_dotenv()

        self.app_id = app_id or os.getenv("FEISHU_APP_ID", "")
        self.app_secret = app_secret or os.getenv("FEISHU_APP_SECRET", "")
        self.base_url = (base_url or os.getenv("FEISHU_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")

        if not self.app_id or not self.app_secret:
            raise ValueError(
                "Missing Feishu app credentials. Set FEISHU_APP_ID and "
                "FEISHU_APP_SECRET environment variables or pass them directly."
            )

        self.session = session or requests.Session()
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    def _fetch_token(self) -> tuple[str, int]:
        """Request a fresh tenant access token.

        Returns:
            Tuple of (token, lifetime in seconds)
        """
        try:
            response = self.session.post(
                self.base_url + TOKEN_PATH,
                json={"app_id": self.app_id, "app_secret": self.app_secret},
                timeout=30,
            )
        except requests.RequestException as e:
            raise FeishuAuthError(f"Token request failed: {e}") from e

        if response.status_code >= 400:
            raise FeishuAuthError(f"Token request failed with HTTP {response.status_code}: {response.text[:500]}")

        data: dict[str, Any] = response.json()
        if data.get("code", 0) != 0:
            raise FeishuAuthError(f"Token request rejected: {data.get('msg', 'unknown error')} (code {data.get('code')})")

        token = data.get("tenant_access_token") or ""
        if not token:
            raise FeishuAuthError("Token response did not contain tenant_access_token")
        return token, int(data.get("expire", 7200))

    def get_token(self) -> str:
        """Return a valid tenant access token, refreshing it when close to expiry."""
        with self._lock:
            if self._token is None or time.monotonic() >= self._expires_at:
                token, lifetime = self._fetch_token()
                self._token = token
                self._expires_at = time.monotonic() + max(lifetime - TOKEN_REFRESH_MARGIN, 0)
            return self._token

    def invalidate(self) -> None:
        """Forget the cached token so the next request fetches a new one."""
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def get_headers(self, content_type: str = "application/json; charset=utf-8") -> dict[str, str]:
        """Generate authentication headers for an API request."""
        return {
            "Authorization": f"Bearer {self.get_token()}",
            "Content-Type": content_type,
        }

    def get_full_url(self, path: str) -> str:
        """Build full URL from base URL and path."""
        return f"{self.base_url}{path}"

    def verify_credentials(self) -> bool:
        """Verify that credentials are set (does not test API connectivity)."""
        return bool(self.app_id and self.app_secret and self.base_url)
