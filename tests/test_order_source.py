from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from conftest import order_payload
from order_invoicer.clients.commerce import CommerceApiClient
from order_invoicer.schemas.orders import Order
from order_invoicer.services.exceptions import FetchError
from order_invoicer.services.order_source import OrderSource, parse_order
from order_invoicer.services.results import Failure, Success

FIXED_NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _source(settings, handler, sleep=None) -> tuple[OrderSource, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = CommerceApiClient(
        str(settings.commerce_api_base_url),
        token=settings.commerce_api_key,
        transport=httpx.MockTransport(recording),
    )
    source = OrderSource(client, settings, sleep=sleep or SleepRecorder(), clock=lambda: FIXED_NOW)
    return source, requests


def test_fetch_requests_recent_window_with_auth(settings) -> None:
    source, requests = _source(settings, lambda request: httpx.Response(200, json={"result": []}))

    result = asyncio.run(source.fetch())

    assert isinstance(result, Success)
    assert result.value == []
    request = requests[0]
    assert request.url.path == "/commerce/orders"
    assert request.headers["Authorization"] == "Bearer test-key"
    assert request.url.params["modifiedAfter"] == "2026-03-14T10:00:00.000Z"
    assert request.url.params["modifiedBefore"] == "2026-03-14T12:00:00.000Z"
    assert request.url.params["limit"] == "50"


def test_fetch_accepts_result_envelope_and_bare_array(settings) -> None:
    enveloped, _ = _source(
        settings, lambda request: httpx.Response(200, json={"result": [order_payload("A1")]})
    )
    bare, _ = _source(settings, lambda request: httpx.Response(200, json=[order_payload("B1")]))

    first = asyncio.run(enveloped.fetch())
    second = asyncio.run(bare.fetch())

    assert [order.order_number for order in first.value] == ["A1"]
    assert [order.order_number for order in second.value] == ["B1"]


def test_fetch_drops_invalid_records(settings) -> None:
    body = [
        order_payload("OK-1"),
        {"orderNumber": "", "lineItems": [{"productName": "x"}]},
        {"orderNumber": "EMPTY", "lineItems": []},
        "not-an-order",
    ]
    source, _ = _source(settings, lambda request: httpx.Response(200, json=body))

    result = asyncio.run(source.fetch())

    assert [order.order_number for order in result.value] == ["OK-1"]


def test_fetch_non_list_body_yields_no_orders(settings) -> None:
    source, _ = _source(settings, lambda request: httpx.Response(200, json={"result": {"oops": 1}}))

    result = asyncio.run(source.fetch())

    assert isinstance(result, Success)
    assert result.value == []


def test_transient_errors_are_retried_until_exhausted(make_settings) -> None:
    settings = make_settings(max_retries=3, retry_base_delay=1.0, retry_max_delay=10.0)
    sleep = SleepRecorder()
    source, requests = _source(settings, lambda request: httpx.Response(503), sleep=sleep)

    result = asyncio.run(source.fetch())

    assert isinstance(result, Failure)
    assert isinstance(result.error, FetchError)
    assert result.error.status_code == 503
    assert len(requests) == 4
    assert sleep.delays == [2.0, 4.0, 8.0]


def test_backoff_is_capped_at_max_delay(make_settings) -> None:
    settings = make_settings(max_retries=5, retry_base_delay=1.0, retry_max_delay=10.0)
    sleep = SleepRecorder()
    source, requests = _source(settings, lambda request: httpx.Response(500), sleep=sleep)

    asyncio.run(source.fetch())

    assert len(requests) == 6
    assert sleep.delays == [2.0, 4.0, 8.0, 10.0, 10.0]


def test_retry_recovers_after_transient_failure(settings) -> None:
    responses = iter([httpx.Response(502), httpx.Response(200, json=[order_payload("R1")])])
    source, requests = _source(settings, lambda request: next(responses))

    result = asyncio.run(source.fetch())

    assert isinstance(result, Success)
    assert [order.order_number for order in result.value] == ["R1"]
    assert len(requests) == 2


@pytest.mark.parametrize("status", [401, 403, 404])
def test_configuration_errors_are_not_retried(settings, status) -> None:
    sleep = SleepRecorder()
    source, requests = _source(settings, lambda request: httpx.Response(status, json={"error": "denied"}), sleep=sleep)

    result = asyncio.run(source.fetch())

    assert isinstance(result, Failure)
    assert result.error.transient is False
    assert result.error.status_code == status
    assert len(requests) == 1
    assert sleep.delays == []


def test_connection_errors_are_transient(make_settings) -> None:
    settings = make_settings(max_retries=1)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    source, requests = _source(settings, handler)

    result = asyncio.run(source.fetch())

    assert isinstance(result, Failure)
    assert result.error.transient is True
    assert len(requests) == 2


def test_fetch_recent_orders_returns_empty_list_on_failure(make_settings) -> None:
    settings = make_settings(max_retries=0)
    source, _ = _source(settings, lambda request: httpx.Response(500))

    assert asyncio.run(source.fetch_recent_orders()) == []


def test_health_check_reports_reachability(settings) -> None:
    healthy, _ = _source(settings, lambda request: httpx.Response(200, json=[]))
    broken, _ = _source(settings, lambda request: httpx.Response(403))

    assert asyncio.run(healthy.health_check()) is True
    assert asyncio.run(broken.health_check()) is False


def test_parse_order_unwraps_money_and_customer() -> None:
    order = parse_order(order_payload("77", grandTotal=None))

    assert isinstance(order, Order)
    assert order.line_items[0].unit_price == 12.5
    assert order.customer_name == "Maria Papadopoulou"
    assert order.order_total == 33.0


def test_parse_order_coerces_numeric_order_number() -> None:
    order = parse_order(order_payload(number=4242))

    assert order.order_number == "4242"


def test_customer_name_falls_back_to_email() -> None:
    with_email = parse_order(order_payload("78", customerInfo=None, customerEmail="buyer@example.com"))
    anonymous = parse_order(order_payload("79", customerInfo=None))

    assert with_email.customer_name == "buyer@example.com"
    assert anonymous.customer_name == "Unknown Customer"
