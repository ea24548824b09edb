from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from order_invoicer.clients.commerce import CommerceApiClient
from order_invoicer.config import Settings
from order_invoicer.schemas.orders import Order
from order_invoicer.services.exceptions import FetchError, OrderValidationError
from order_invoicer.services.results import Failure, Result, Success

logger = logging.getLogger(__name__)

ORDERS_PATH = "/commerce/orders"


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.transient


def _isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_order(record: Any) -> Order:
    """Validate one raw API record, raising ``OrderValidationError`` when unusable."""

    if not isinstance(record, dict):
        raise OrderValidationError(f"Expected an order object, got {type(record).__name__}")
    try:
        return Order.model_validate(record)
    except ValidationError as exc:
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"]) for error in exc.errors()
        )
        raise OrderValidationError(
            f"Order {record.get('orderNumber')!r} failed validation ({fields})",
            cause=exc,
        ) from exc


class OrderSource:
    """Fetches the recent order window from the commerce API with retry/backoff."""

    def __init__(
        self,
        client: CommerceApiClient,
        settings: Settings,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._lookback = timedelta(hours=settings.fetch_lookback_hours)
        self._limit = settings.fetch_limit
        self._max_retries = settings.max_retries
        self._base_delay = settings.retry_base_delay
        self._max_delay = settings.retry_max_delay
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def fetch(self) -> Result[List[Order], FetchError]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            # First retry waits base * 2, then doubles up to the cap.
            wait=wait_exponential(multiplier=self._base_delay * 2, max=self._max_delay),
            retry=retry_if_exception(_is_transient),
            before_sleep=self._log_retry,
            sleep=self._sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    payload = await self._request_window()
        except RetryError as exc:
            error = exc.last_attempt.exception()
            logger.error(
                "Failed to fetch orders after %s retries: %s", self._max_retries, error
            )
            if isinstance(error, FetchError):
                return Failure(error)
            return Failure(FetchError("Failed to fetch orders", cause=error))
        except FetchError as exc:
            logger.error("Not retrying order fetch (configuration error): %s", exc)
            return Failure(exc)
        except Exception as exc:
            logger.exception("Unexpected error fetching orders")
            return Failure(FetchError("Unexpected error fetching orders", transient=False, cause=exc))

        return Success(self._parse_orders(payload))

    async def fetch_recent_orders(self) -> List[Order]:
        result = await self.fetch()
        if isinstance(result, Success):
            return result.value
        return []

    async def health_check(self) -> bool:
        return await self._client.health_check()

    async def _request_window(self) -> Any:
        now = self._clock()
        params = {
            "modifiedAfter": _isoformat(now - self._lookback),
            "modifiedBefore": _isoformat(now),
            "limit": self._limit,
        }
        logger.debug(
            "Fetching orders modified between %s and %s",
            params["modifiedAfter"],
            params["modifiedBefore"],
        )
        return await self._client.get(ORDERS_PATH, params=params)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "%s, will retry (%s/%s) in %.1fs",
            error,
            retry_state.attempt_number,
            self._max_retries,
            delay,
        )

    def _parse_orders(self, payload: Any) -> List[Order]:
        records = payload.get("result", payload) if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            logger.warning("API returned non-array response for orders: %s", type(records).__name__)
            return []

        logger.info("Retrieved %s orders from commerce API", len(records))
        orders: List[Order] = []
        for record in records:
            try:
                orders.append(parse_order(record))
            except OrderValidationError as exc:
                logger.warning("Skipping invalid order: %s", exc)

        if len(orders) != len(records):
            logger.warning("Filtered out %s invalid orders", len(records) - len(orders))
        return orders
