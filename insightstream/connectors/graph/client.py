"""InsightStream: Graph API Client.

Thin async transport over httpx. It performs exactly one HTTP call per
``get``; retrying is left to the stream's retry policy.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from insightstream.config import settings
from insightstream.core.errors import GraphAPIError, RetryableError
from insightstream.core.logging import get_logger

logger = get_logger("graph.client")


@dataclass(frozen=True)
class GraphResponse:
    """Status code and raw body of one Graph API response."""

    status: int
    body: str


class GraphClient:
    """Async HTTP client for the Graph API."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float | None = None,
    ):
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "GraphClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Core Request Method ──

    async def get(self, url: str) -> GraphResponse:
        """Issue a GET. Transport failures are reported as retryable."""
        client = await self._get_client()
        try:
            resp = await client.get(url)
        except httpx.TransportError as e:
            logger.warning(f"Transport error: {e!r}")
            raise RetryableError(f"Graph API request failed: {e!r}") from e
        return GraphResponse(status=resp.status_code, body=resp.text)

    async def get_json(self, url: str) -> Dict[str, Any]:
        """GET and parse the body as JSON.

        The Graph API reports failures inside the JSON body (``error``), so
        the HTTP status is not inspected here; classification happens on
        the parsed body.
        """
        resp = await self.get(url)
        try:
            return json.loads(resp.body)
        except ValueError as e:
            if resp.status == 429 or resp.status >= 500:
                raise RetryableError(
                    f"Graph API unavailable (status {resp.status})",
                    {"status": resp.status},
                ) from e
            raise GraphAPIError(
                f"Graph API returned a non-JSON body (status {resp.status})",
                {"status": resp.status, "body": resp.body[:500]},
            ) from e
