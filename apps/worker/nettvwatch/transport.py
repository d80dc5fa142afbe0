"""
Session transport for the portal.

One PortalSession per workflow run. It owns the cookie jar, the default
User-Agent and the optional SOCKS proxy; every request the workflow issues
goes through ``send``.

Redirects are never followed implicitly: the caller must validate a 3xx
``Location`` before fetching it.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

import httpx

from nettvwatch.exceptions import TransportError, UnexpectedStatus

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/51.0.2704.79 Safari/537.36 Edge/14.14393"
)

StatusValidator = Callable[[int], bool]


def accept_success(status_code: int) -> bool:
    """2xx only."""
    return 200 <= status_code < 300


def accept_success_or_redirect(status_code: int) -> bool:
    """2xx and 3xx, for requests whose redirect the caller resolves itself."""
    return 200 <= status_code < 400


class PortalSession:
    """Cookie-backed async HTTP session for one workflow run."""

    def __init__(
        self,
        user_agent: str | None = None,
        timeout: float = 30,
        proxy: str | None = None,
        default_encoding: str = "utf-8",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._user_agent = user_agent or DEFAULT_USER_AGENT
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": self._user_agent},
            follow_redirects=False,
            proxy=proxy or None,
            default_encoding=default_encoding,
            transport=transport,
        )

    @property
    def cookies(self) -> httpx.Cookies:
        return self._client.cookies

    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict | None = None,
        data: dict | None = None,
        follow_redirects: bool = False,
        accept_status: StatusValidator | None = None,
    ) -> httpx.Response:
        """
        Issue one request through the session jar.

        Caller-supplied headers override the defaults (including User-Agent).
        Raises TransportError on network, timeout and body-decoding errors,
        and UnexpectedStatus when ``accept_status`` rejects the status
        (default: 2xx only).
        """
        accept = accept_status or accept_success
        start = time.monotonic()
        try:
            resp = await self._client.request(
                method,
                url,
                headers=headers,
                params=params,
                data=data,
                follow_redirects=follow_redirects,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {method} {url}") from e
        except httpx.TransportError as e:
            raise TransportError(f"Network error on {method} {url}: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"Request failed on {method} {url}: {e}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug(
            "%s %s -> %d (%d bytes, %dms)",
            method, resp.url, resp.status_code, len(resp.content), elapsed_ms,
        )

        if not accept(resp.status_code):
            raise UnexpectedStatus(resp.status_code, str(resp.url))
        return resp

    async def get(
        self,
        url: str,
        *,
        referer: str | None = None,
        params: dict | None = None,
        accept_status: StatusValidator | None = None,
    ) -> httpx.Response:
        """GET with an optional Referer header."""
        headers = {"Referer": referer} if referer else None
        return await self.send(
            "GET", url, headers=headers, params=params, accept_status=accept_status,
        )

    async def fetch_bytes(self, url: str, *, referer: str | None = None) -> bytes:
        """Download a binary resource (captcha image) using session cookies."""
        resp = await self.get(url, referer=referer)
        return resp.content

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> PortalSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
