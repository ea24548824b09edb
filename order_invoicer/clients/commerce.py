from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from order_invoicer import __version__
from order_invoicer.services.exceptions import FetchError

logger = logging.getLogger(__name__)

# Configuration-class failures: retrying only hides the misconfiguration.
NON_RETRYABLE_STATUS = {
    401: "Unauthorized - check the commerce API key",
    403: "Forbidden - check the API key permissions",
    404: "Not Found - check the commerce API base URL",
}


class CommerceApiClient:
    """Async HTTP client responsible for talking to the commerce platform."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = str(base_url).rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "User-Agent": f"Order-Invoicer/{__version__}",
        }
        self._client: Optional[httpx.AsyncClient] = None

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def get(self, path: str, params: Dict[str, Any] | None = None) -> Any:
        client = await self._ensure_client()
        logger.debug("Making API request: GET %s %s", path, params)
        try:
            response = await client.get(path, params=params)
            logger.debug("API response: %s %s", response.status_code, response.reason_phrase)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise self._status_error(exc) from exc
        except httpx.TimeoutException as exc:
            raise FetchError("Request to commerce API timed out", cause=exc) from exc
        except httpx.RequestError as exc:
            raise FetchError(
                f"Unable to reach commerce API: {exc}", cause=exc
            ) from exc
        except ValueError as exc:
            raise FetchError("Commerce API returned an undecodable body", cause=exc) from exc

    async def health_check(self) -> bool:
        """Return True when a minimal orders request succeeds."""

        try:
            await self.get("/commerce/orders", params={"limit": 1})
            return True
        except FetchError as exc:
            logger.error("API health check failed: %s", exc)
            return False

    @staticmethod
    def _status_error(exc: httpx.HTTPStatusError) -> FetchError:
        status = exc.response.status_code
        try:
            body: Any = exc.response.json()
        except ValueError:
            body = exc.response.text
        logger.error("API Error %s: %s", status, body)

        if status in NON_RETRYABLE_STATUS:
            return FetchError(
                NON_RETRYABLE_STATUS[status],
                status_code=status,
                transient=False,
                cause=exc,
            )
        if status >= 500:
            message = f"Commerce API server error {status}"
        else:
            message = f"Commerce API client error {status}"
        return FetchError(message, status_code=status, transient=True, cause=exc)
