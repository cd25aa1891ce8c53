"""
HTTP transport for Web Push requests.
"""

import logging
from typing import Dict, Optional, Protocol

import httpx

from dosepush.domain.results import TransportResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 12.0


class PushTransport(Protocol):
    """Sends one push request. Implementations never raise."""

    async def post(self, url: str, headers: Dict[str, str]) -> TransportResult:
        ...


class HttpxPushTransport:
    """Push transport backed by httpx.AsyncClient."""

    name = "httpx"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def post(self, url: str, headers: Dict[str, str]) -> TransportResult:
        """
        POST an empty body to a push endpoint.

        Args:
            url: Subscription endpoint
            headers: TTL and VAPID authorization headers

        Returns:
            TransportResult with the status code even on failure
        """
        try:
            response = await self._get_client().post(
                url,
                headers=headers,
                content=b"",
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Push request timed out: {e!r}")
            return TransportResult(
                ok=False,
                status_code=0,
                error=f"Push request timed out after {self.timeout:g}s.",
                transport=self.name,
            )
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
            logger.warning(f"Push request failed: {e!r}")
            return TransportResult(
                ok=False,
                status_code=0,
                error=str(e) or "Push request failed.",
                transport=self.name,
            )

        status_code = response.status_code
        if 200 <= status_code < 300:
            return TransportResult(ok=True, status_code=status_code, transport=self.name)

        error = response.text.strip() or f"Push request failed with status {status_code}."
        return TransportResult(
            ok=False,
            status_code=status_code,
            error=error[:1000],
            transport=self.name,
        )
