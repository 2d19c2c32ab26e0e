"""Async gateway to the Mindbody public API v6.

Mindbody API docs: https://developers.mindbodyonline.com/PublicDocumentation/V6
Every request carries the ``API-Key`` and ``SiteId`` headers; staff-level
endpoints additionally need a bearer token from the :class:`TokenManager`.

The process-wide pieces (HTTP connection pool, current token, response
cache) live on a :class:`MindbodySession` that the server creates once in its
lifespan.  A :class:`MindbodyClient` binds that session to one set of
credentials and is cheap to create per chat request.

No retries are performed here: a failed call surfaces immediately as a
:class:`MindbodyAPIError` and becomes the tool result the model sees.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import urlencode, urlsplit

import httpx

from studio_assistant.config import MINDBODY_BASE_URL, MindbodyCredentials
from studio_assistant.services.cache import DEFAULT_TTL_SECONDS, ResponseCache
from studio_assistant.services.metrics import metrics
from studio_assistant.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0

_AUTH_REMEDIATION = (
    "Authentication failed. Please check your Mindbody credentials: make sure "
    "MINDBODY_API_KEY, MINDBODY_USERNAME and MINDBODY_PASSWORD (or "
    "MINDBODY_STAFF_TOKEN) are correct."
)


class MindbodyAPIError(Exception):
    """Raised when a Mindbody API call fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class MindbodyAuthError(MindbodyAPIError):
    """The API rejected our credentials (HTTP 401/403)."""


def build_query(params: dict[str, Any]) -> str:
    """Render *params* as a query string, ``""`` when nothing is left.

    ``None`` values are dropped, list values repeat the key and booleans
    are rendered the way the API expects (``true``/``false``).
    """
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if isinstance(item, bool):
                item = "true" if item else "false"
            pairs.append((key, str(item)))
    return f"?{urlencode(pairs)}" if pairs else ""


class MindbodySession:
    """Shared connection pool, token slot and response cache."""

    def __init__(
        self,
        *,
        http: httpx.AsyncClient | None = None,
        tokens: TokenManager | None = None,
        cache: ResponseCache | None = None,
        base_url: str = MINDBODY_BASE_URL,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.http = http or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)
        self.tokens = tokens or TokenManager(self.http, base_url=self.base_url)
        self.cache = cache or ResponseCache()

    def client(self, credentials: MindbodyCredentials) -> MindbodyClient:
        return MindbodyClient(credentials, self)

    async def aclose(self) -> None:
        await self.http.aclose()


class MindbodyClient:
    """Performs authenticated, cached calls for one set of credentials."""

    def __init__(self, credentials: MindbodyCredentials, session: MindbodySession):
        self._credentials = credentials
        self._session = session

    @property
    def credentials(self) -> MindbodyCredentials:
        return self._credentials

    async def fetch(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        body: dict[str, Any] | None = None,
        tool_name: str = "mindbody",
    ) -> Any:
        """Call ``endpoint`` (path plus query string) and return the parsed JSON."""
        method = method.upper()
        url = f"{self._session.base_url}{endpoint}"
        cache = self._session.cache

        cached = cache.lookup(method, url, body)
        if cached is not None:
            logger.debug("[%s] cache hit %s", tool_name, url)
            return cached

        token = await self._session.tokens.get_token(self._credentials)
        headers = {
            "Content-Type": "application/json",
            "API-Key": self._credentials.api_key,
            "SiteId": self._credentials.site_id,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        operation = f"{method} {urlsplit(endpoint).path}"
        logger.info("[%s] %s %s (%s)", tool_name, method, url, "staff" if token else "key-only")
        t0 = time.perf_counter()
        try:
            response = await self._session.http.request(method, url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "mindbody", operation, error_type=type(exc).__name__, latency_ms=elapsed,
            )
            logger.error("[%s] request failed: %s", tool_name, exc)
            raise MindbodyAPIError(f"Mindbody API request failed: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        if not response.is_success:
            metrics.record_failure(
                "mindbody", operation,
                error_type=str(response.status_code), latency_ms=elapsed,
            )
            logger.error(
                "[%s] Mindbody API error %d: %s",
                tool_name, response.status_code, response.text,
            )
            if response.status_code in (401, 403):
                raise MindbodyAuthError(
                    f"{_AUTH_REMEDIATION} Error: {response.status_code} - {response.text}",
                    status_code=response.status_code,
                    body=response.text,
                )
            raise MindbodyAPIError(
                f"Mindbody API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as exc:
            metrics.record_failure(
                "mindbody", operation, error_type="InvalidJSON", latency_ms=elapsed,
            )
            raise MindbodyAPIError(
                "Mindbody API returned a non-JSON response",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        metrics.record_success("mindbody", operation, latency_ms=elapsed)
        if cache.store(method, url, body, data):
            logger.debug("[%s] cached for %ds", tool_name, DEFAULT_TTL_SECONDS)
        return data
