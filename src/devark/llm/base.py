"""Provider contract shared by every LLM backend."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..errors import AuthError, PermanentIOError, TransientIOError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


@dataclass
class GenerateRequest:
    system: str
    user: str
    temperature: float = 0.2
    max_tokens: int = 1024


@dataclass
class GenerateResult:
    text: str
    tokens_used: int | None = None


@dataclass
class DetectionResult:
    available: bool
    reason: str | None = None
    models: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"available": self.available, "reason": self.reason, "models": list(self.models)}


class LLMProvider(ABC):
    """A text-generation backend reached over HTTP.

    Subclasses set ``id`` and ``name``. ``transport`` is passed straight to
    ``httpx.AsyncClient`` so tests can substitute ``httpx.MockTransport``.
    """

    id: str = ""
    name: str = ""
    kind: str = "local"

    def __init__(
        self,
        endpoint: str,
        model: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @abstractmethod
    async def detect(self) -> DetectionResult:
        """Report whether the backend is reachable and usable."""

    @abstractmethod
    async def list_models(self) -> list[str]:
        ...

    @abstractmethod
    async def generate(self, request: GenerateRequest) -> GenerateResult:
        ...

    def configure(self, endpoint: str | None = None, model: str | None = None, api_key: str | None = None) -> None:
        if endpoint:
            self.endpoint = endpoint.rstrip("/")
        if model:
            self.model = model

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "type": self.kind, "endpoint": self.endpoint, "model": self.model}

    # ── Private helpers ──────────────────────────────────────────────

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send one request and return the decoded JSON body, mapping failures."""
        timeout = kwargs.pop("timeout", None)
        try:
            async with self._client(timeout) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise TransientIOError(f"{self.name} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransientIOError(f"{self.name} unreachable: {e}") from e
        raise_for_status(response, self.name)
        try:
            return response.json()
        except ValueError as e:
            raise PermanentIOError(f"{self.name} returned a non-JSON body") from e


def raise_for_status(response: httpx.Response, service: str) -> None:
    """Translate an HTTP error status into the devark error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    detail = response.text[:200]
    if status in (401, 403):
        raise AuthError(f"{service} rejected credentials ({status})")
    if status == 429 or status >= 500:
        raise TransientIOError(f"{service} returned {status}: {detail}")
    raise PermanentIOError(f"{service} returned {status}: {detail}")
