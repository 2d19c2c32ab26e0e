"""Staff bearer-token lifecycle for the Mindbody public API.

Mindbody staff tokens are issued from a username/password pair
(``POST /usertoken/issue``) and can be extended by presenting the current
token to ``POST /usertoken/renew``, at most seven times.  The manager keeps a
single current token and decides on every call whether to reuse, renew or
re-issue it:

  static token configured           → adopt it, never renew
  no username/password              → no token (API-key-only calls)
  expires more than 1 hour from now → reuse
  renewals left and not yet expired → renew, else fall through
  otherwise                         → issue a new token

Concurrent callers that all need a fresh token share a single in-flight
refresh instead of each issuing their own.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from studio_assistant.config import MINDBODY_BASE_URL, MindbodyCredentials

logger = logging.getLogger(__name__)

RENEWAL_MARGIN = timedelta(hours=1)
MAX_RENEWALS = 7
DEFAULT_TOKEN_LIFETIME = timedelta(hours=24)
STATIC_TOKEN_LIFETIME = timedelta(days=365)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at: datetime
    renewal_count: int = 0
    is_static: bool = False


class TokenManager:
    """Issues, renews and caches one upstream bearer token."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        base_url: str = MINDBODY_BASE_URL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._clock = clock
        self._current: AccessToken | None = None
        self._inflight: asyncio.Task[AccessToken | None] | None = None

    @property
    def current(self) -> AccessToken | None:
        return self._current

    async def get_token(self, credentials: MindbodyCredentials) -> str | None:
        """Return a bearer token for *credentials*, or ``None`` for key-only calls."""
        if credentials.static_token:
            return self._adopt_static(credentials.static_token).token

        if not credentials.has_staff_login:
            logger.debug("Token: no staff credentials, using API key only")
            return None

        current = self._current
        if (
            current is not None
            and not current.is_static
            and current.expires_at > self._clock() + RENEWAL_MARGIN
        ):
            return current.token

        if self._inflight is None:
            task = asyncio.ensure_future(self._refresh(credentials))
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        refreshed = await asyncio.shield(self._inflight)
        return refreshed.token if refreshed else None

    # ── Internal ──────────────────────────────────────────────────────

    def _adopt_static(self, token: str) -> AccessToken:
        current = self._current
        if current is None or not current.is_static or current.token != token:
            logger.info(
                "Token: using static staff token from environment "
                "(expiration cannot be validated)",
            )
            current = AccessToken(
                token=token,
                expires_at=self._clock() + STATIC_TOKEN_LIFETIME,
                is_static=True,
            )
            self._current = current
        return current

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _refresh(self, credentials: MindbodyCredentials) -> AccessToken | None:
        current = self._current
        if (
            current is not None
            and not current.is_static
            and current.renewal_count < MAX_RENEWALS
            and current.expires_at > self._clock()
        ):
            logger.info(
                "Token: expiring soon, renewing (%d/%d)",
                current.renewal_count, MAX_RENEWALS,
            )
            renewed = await self._renew(credentials, current)
            if renewed is not None:
                self._current = renewed
                return renewed
            logger.warning("Token: renewal failed, issuing a new token")

        issued = await self._issue(credentials)
        if issued is not None:
            self._current = issued
            return issued

        logger.error(
            "Token: staff authentication failed. Verify MINDBODY_USERNAME, "
            "MINDBODY_PASSWORD and MINDBODY_SITE_ID, or set MINDBODY_STAFF_TOKEN "
            "to use a pre-generated token.",
        )
        return None

    async def _issue(self, credentials: MindbodyCredentials) -> AccessToken | None:
        data = await self._post(
            "/usertoken/issue",
            credentials,
            json_body={"Username": credentials.username, "Password": credentials.password},
        )
        if data is None:
            return None
        token = self._parse(data, renewal_count=0)
        if token is not None:
            logger.info("Token: issued, expires at %s", token.expires_at.isoformat())
        return token

    async def _renew(
        self, credentials: MindbodyCredentials, current: AccessToken,
    ) -> AccessToken | None:
        data = await self._post("/usertoken/renew", credentials, bearer=current.token)
        if data is None:
            return None
        token = self._parse(data, renewal_count=current.renewal_count + 1)
        if token is not None:
            logger.info("Token: renewed, new expiration %s", token.expires_at.isoformat())
        return token

    async def _post(
        self,
        path: str,
        credentials: MindbodyCredentials,
        *,
        json_body: dict[str, Any] | None = None,
        bearer: str | None = None,
    ) -> dict[str, Any] | None:
        headers = {
            "Content-Type": "application/json",
            "API-Key": credentials.api_key,
            "SiteId": credentials.site_id,
        }
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        try:
            response = await self._http.post(
                f"{self._base_url}{path}", headers=headers, json=json_body,
            )
        except httpx.HTTPError as exc:
            logger.error("Token: %s request failed: %s", path, exc)
            return None
        if not response.is_success:
            logger.error(
                "Token: %s failed with %d: %s", path, response.status_code, response.text,
            )
            return None
        try:
            return response.json()
        except ValueError:
            logger.error("Token: %s returned a non-JSON body", path)
            return None

    def _parse(self, data: dict[str, Any], *, renewal_count: int) -> AccessToken | None:
        token = data.get("AccessToken")
        if not token:
            logger.error("Token: response did not contain an AccessToken")
            return None
        return AccessToken(
            token=token,
            expires_at=self._parse_expiration(data.get("AccessTokenExpiration")),
            renewal_count=renewal_count,
        )

    def _parse_expiration(self, raw: str | None) -> datetime:
        if raw:
            try:
                expires_at = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            except ValueError:
                logger.warning("Token: unparseable expiration %r, assuming 24h", raw)
            else:
                if expires_at.tzinfo is None:
                    expires_at = expires_at.replace(tzinfo=UTC)
                return expires_at
        return self._clock() + DEFAULT_TOKEN_LIFETIME
