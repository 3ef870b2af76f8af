"""Thin aiohttp wrapper around the concept-style backend (`POST /{Concept}/{action}`)."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from nudgebet.config import API_URL

_DEFAULT_TIMEOUT = 30.0


class ApiError(Exception):
    """Backend or transport failure, with the HTTP status when there was one."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    def __repr__(self) -> str:
        return f"ApiError({self.message!r}, status={self.status})"


def _error_message(data: Any, fallback: str) -> str:
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return fallback


async def handle_response(resp: aiohttp.ClientResponse) -> Any:
    """Decode a JSON body; non-2xx or an `error` key both raise ApiError."""
    try:
        data = await resp.json(content_type=None)
    except ValueError:
        data = None

    if resp.status >= 400:
        fallback = f"HTTP {resp.status}: {resp.reason}" if data is None else "API request failed"
        raise ApiError(_error_message(data, fallback), resp.status)

    # Some handlers answer 200 with {"error": ...}
    if isinstance(data, dict) and "error" in data:
        raise ApiError(_error_message(data, "API returned an error"), resp.status)

    return data


class ApiClient:
    """One shared ClientSession; every call carries the bearer credential in the body."""

    def __init__(
        self,
        base_url: str = API_URL,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def url(self, concept: str, action: str) -> str:
        return f"{self.base_url}/{concept}/{action}"

    async def call(
        self, concept: str, action: str, credential: str, **payload: Any
    ) -> Any:
        """POST a JSON body to `/{concept}/{action}` and return the decoded reply."""
        body = {"accessToken": credential, **payload}
        try:
            async with self._get_session().post(
                self.url(concept, action), json=body
            ) as resp:
                return await handle_response(resp)
        except ApiError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ApiError(f"Network error: {e}") from e

    async def stream_lines(
        self, concept: str, action: str, credential: str
    ) -> AsyncIterator[str]:
        """Open a long-lived GET and yield decoded lines until the server closes it."""
        session = self._get_session()
        try:
            async with session.get(
                self.url(concept, action),
                params={"accessToken": credential},
                headers={"Accept": "text/event-stream"},
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=_DEFAULT_TIMEOUT),
            ) as resp:
                if resp.status >= 400:
                    await handle_response(resp)
                async for raw in resp.content:
                    yield raw.decode("utf-8", errors="replace").rstrip("\r\n")
        except ApiError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ApiError(f"Network error: {e}") from e
