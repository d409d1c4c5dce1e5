"""HTTP transport used by keepalive checks and notification channels."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from keepalive.config import settings

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """A request produced no HTTP response (timeout, DNS failure, refused, ...)."""


@dataclass
class TransportResponse:
    """The parts of an HTTP response the core looks at."""

    status_code: int
    reason: str
    text: str

    @property
    def ok(self) -> bool:
        """True for 2xx and 3xx statuses."""
        return 200 <= self.status_code < 400


class HttpTransport:
    """Thin wrapper over ``httpx.AsyncClient`` returning TransportResponse.

    Pass *client* to share a connection pool or, in tests, an
    ``httpx.AsyncClient(transport=httpx.MockTransport(...))``.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: str | None = None,
        json: Any = None,
        timeout: float | None = None,
    ) -> TransportResponse:
        """Issue a request; raise TransportError when no response arrives."""
        timeout = timeout if timeout is not None else settings.http_timeout_seconds
        kwargs: dict[str, Any] = {"headers": headers or {}, "timeout": timeout}
        if json is not None:
            kwargs["json"] = json
        elif body is not None:
            kwargs["content"] = body

        try:
            if self._client is not None:
                resp = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(follow_redirects=True) as client:
                    resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out after %.1fs", method, url, timeout)
            msg = f"Request timed out after {timeout:g}s"
            raise TransportError(msg) from exc
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise TransportError(str(exc) or exc.__class__.__name__) from exc

        return TransportResponse(
            status_code=resp.status_code,
            reason=resp.reason_phrase,
            text=resp.text,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
