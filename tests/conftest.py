from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from order_invoicer.config import Settings
from order_invoicer.services.process import CommandResult


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Build settings rooted in ``tmp_path`` without reading ``.env``."""

    def factory(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "commerce_api_base_url": "https://api.example.com",
            "commerce_api_key": "test-key",
            "shop_name": "Κατάστημα Δοκιμής",
            "shop_address": "Ermou 1, Athens",
            "shop_email": "shop@example.com",
            "shop_registration_1": "123456789",
            "data_dir": tmp_path / "data",
            "output_dir": tmp_path / "invoices",
            "logs_dir": tmp_path / "logs",
            "reports_dir": tmp_path / "reports",
            "retry_base_delay": 0.0,
            "retry_max_delay": 0.0,
            "initial_run_delay": 0.0,
            "desktop_notifications_enabled": False,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


class RecordingRunner:
    """Command runner stub that records argv and replays canned results."""

    def __init__(self, *results: CommandResult | Exception) -> None:
        self.calls: List[List[str]] = []
        self._results = list(results)

    async def __call__(self, argv: Sequence[str]) -> CommandResult:
        self.calls.append(list(argv))
        result = self._results.pop(0) if self._results else CommandResult(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def runner_factory() -> Callable[..., RecordingRunner]:
    return RecordingRunner


def order_payload(number: str = "1001", **overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "orderNumber": number,
        "createdOn": "2026-03-14T10:30:00Z",
        "customerInfo": {
            "firstName": "Maria",
            "lastName": "Papadopoulou",
            "address1": "Tsimiski 12",
        },
        "lineItems": [
            {"productName": "Olive oil 1L", "quantity": 2, "unitPrice": {"value": "12.50"}, "sku": "OIL-1"},
            {"productName": "Honey", "quantity": 1, "unitPrice": 8},
        ],
        "grandTotal": {"value": "33.00", "currency": "EUR"},
    }
    payload.update(overrides)
    return payload
