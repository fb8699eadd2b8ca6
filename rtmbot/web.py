"""
Web API client.

Thin wrapper over httpx for the handful of REST calls the bot needs:
- rtm.start (session handshake, see handshake.py)
- users.info
- chat.postMessage (the "say via REST" path)

Every call is an authenticated form-encoded POST that returns a JSON object.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
from loguru import logger

from rtmbot.errors import ApiDecodeError, ApiRequestError, ApiResponseError, ApiStatusError
from rtmbot.models import User

BASE_API = "https://slack.com/api/"


class WebClient:
    """
    Authenticated client for the backend's web API.

    Args:
        token: Bot token. Sent as the ``token`` form field on every call.
        base_url: API root; endpoints are appended to it.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        token: str,
        base_url: str = BASE_API,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("token must not be empty")
        self._token = token
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"

        kwargs: dict[str, Any] = {"timeout": timeout}
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**kwargs)

    async def __aenter__(self) -> "WebClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Raw calls
    # ------------------------------------------------------------------

    async def post(self, endpoint: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        """POST ``params`` (plus the token) to ``endpoint`` and decode the reply.

        Raises ApiRequestError, ApiStatusError or ApiDecodeError. The
        payload's ``ok`` flag is not inspected here; see call().
        """
        form = dict(params or {})
        form["token"] = self._token

        logger.debug(f"[web] POST {endpoint} {sorted(k for k in form if k != 'token')}")
        try:
            resp = await self._client.post(self.base_url + endpoint, data=form)
        except httpx.HTTPError as exc:
            raise ApiRequestError(f"{endpoint} request failed: {exc}") from exc

        if not resp.is_success:
            logger.warning(f"[web] {endpoint} returned HTTP {resp.status_code}")
            raise ApiStatusError(resp.status_code, endpoint)

        try:
            data = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ApiDecodeError(f"{endpoint} returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ApiDecodeError(f"{endpoint} returned {type(data).__name__}, expected an object")
        return data

    async def call(self, endpoint: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        """Like post(), but raise ApiResponseError unless the payload says ok."""
        data = await self.post(endpoint, params)
        if data.get("ok") is not True:
            raise ApiResponseError(data.get("error", "unknown_error"), endpoint)
        return data

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> User:
        """Fetch a user's profile by id."""
        data = await self.call("users.info", {"user": user_id})
        return User.from_dict(data.get("user") or {})

    async def say(self, channel: str, text: str) -> None:
        """Post a message via REST. ``channel`` may be a name or an id."""
        await self.call(
            "chat.postMessage",
            {"channel": channel, "text": text, "as_user": "true"},
        )
        logger.debug(f"[web] Posted to {channel}: {text[:80]!r}")
