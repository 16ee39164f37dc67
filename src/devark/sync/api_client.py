"""HTTP client for the devark cloud API."""

import logging
from collections.abc import Callable
from typing import Any

import httpx

from ..config import get_api_url
from ..errors import AuthError, PermanentIOError, TransientIOError
from ..llm.base import raise_for_status

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
UPLOAD_TIMEOUT = 30.0
SOURCE_HEADER = "x-devark-source"
SOURCE_HEADER_VALUE = "ide_extension"


class ApiClient:
    def __init__(
        self,
        token_provider: Callable[[], str | None],
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or get_api_url()).rstrip("/")
        self.timeout = timeout
        self._token_provider = token_provider
        self._transport = transport

    async def verify_token(self) -> dict:
        """Return ``{valid, userId, user}``. A rejected token is not an error."""
        try:
            data = await self._request("GET", "/api/auth/cli/verify")
        except AuthError:
            return {"valid": False, "userId": None, "user": None}
        user = data.get("user") if isinstance(data, dict) else None
        valid = bool(isinstance(data, dict) and (data.get("valid") is True or user is not None))
        return {"valid": valid, "userId": (user or {}).get("id"), "user": user}

    async def get_known_sessions(self, fingerprints: list[dict]) -> set[tuple[str, str, str]]:
        """Ask which ``(source, sessionId, lastMessageHash)`` triples the backend already has."""
        if not fingerprints:
            return set()
        data = await self._request("POST", "/api/sessions/known", json={"sessions": fingerprints})
        known = data.get("known", []) if isinstance(data, dict) else []
        return {
            (str(k.get("source")), str(k.get("sessionId")), str(k.get("lastMessageHash")))
            for k in known
            if isinstance(k, dict)
        }

    async def upload_session(self, payload: dict) -> dict:
        return await self._request(
            "POST",
            "/api/sessions",
            json=payload,
            timeout=UPLOAD_TIMEOUT,
            headers={SOURCE_HEADER: SOURCE_HEADER_VALUE},
        )

    async def get_last_session_date(self) -> str | None:
        data = await self._request("GET", "/api/sessions/last")
        return data.get("lastSessionDate") if isinstance(data, dict) else None

    async def get_recent_sessions(self, limit: int = 10) -> list[dict]:
        data = await self._request("GET", "/api/sessions/recent", params={"limit": limit})
        if isinstance(data, dict):
            data = data.get("sessions", [])
        return data if isinstance(data, list) else []

    # ── Private helpers ──────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> Any:
        token = self._token_provider()
        if not token:
            raise AuthError("Not signed in to devark")
        all_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=timeout or self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, headers=all_headers, **kwargs)
        except httpx.HTTPError as e:
            raise TransientIOError(f"devark API unreachable: {e}") from e
        raise_for_status(response, "devark API")
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise PermanentIOError(f"devark API returned a non-JSON body for {path}") from e
