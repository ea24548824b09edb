"""Service package public API definitions.

The pipeline components import ``order_invoicer.services.exceptions`` and
``order_invoicer.services.results``, which would execute this module first.
Importing every implementation here eagerly would pull Playwright and the
HTTP client into that chain, so implementations are resolved lazily on
first attribute access.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "InvoiceRenderer",
    "InvoiceScheduler",
    "NotificationFanout",
    "OrderPipeline",
    "OrderSource",
    "PrintDispatcher",
    "ProcessedOrderLedger",
    "ReportService",
    "SystemDiagnostics",
    "UnrenderableOrderLog",
]

_SERVICE_MODULES = {
    "InvoiceRenderer": "invoice_renderer",
    "InvoiceScheduler": "scheduler",
    "NotificationFanout": "notifications",
    "OrderPipeline": "pipeline",
    "OrderSource": "order_source",
    "PrintDispatcher": "printer",
    "ProcessedOrderLedger": "ledger",
    "ReportService": "reports",
    "SystemDiagnostics": "diagnostics",
    "UnrenderableOrderLog": "ledger",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .diagnostics import SystemDiagnostics as SystemDiagnostics
    from .invoice_renderer import InvoiceRenderer as InvoiceRenderer
    from .ledger import ProcessedOrderLedger as ProcessedOrderLedger
    from .ledger import UnrenderableOrderLog as UnrenderableOrderLog
    from .notifications import NotificationFanout as NotificationFanout
    from .order_source import OrderSource as OrderSource
    from .pipeline import OrderPipeline as OrderPipeline
    from .printer import PrintDispatcher as PrintDispatcher
    from .reports import ReportService as ReportService
    from .scheduler import InvoiceScheduler as InvoiceScheduler
