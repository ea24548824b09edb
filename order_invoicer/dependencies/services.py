from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from order_invoicer.clients.commerce import CommerceApiClient
from order_invoicer.config import Settings, get_settings
from order_invoicer.services import (
    InvoiceRenderer,
    InvoiceScheduler,
    NotificationFanout,
    OrderPipeline,
    OrderSource,
    PrintDispatcher,
    ProcessedOrderLedger,
    ReportService,
    SystemDiagnostics,
    UnrenderableOrderLog,
)
from order_invoicer.services.invoice_renderer import PlaywrightPdfBackend
from order_invoicer.services.notifications import DesktopNotifier, EmailNotifier, SoundAlert


@lru_cache(maxsize=1)
def get_commerce_client_cached() -> CommerceApiClient:
    settings = get_settings()
    return CommerceApiClient(
        str(settings.commerce_api_base_url),
        token=settings.commerce_api_key,
        timeout=settings.commerce_api_timeout,
    )


@lru_cache(maxsize=1)
def get_order_source_cached() -> OrderSource:
    return OrderSource(get_commerce_client_cached(), get_settings())


@lru_cache(maxsize=1)
def get_ledger_cached() -> ProcessedOrderLedger:
    return ProcessedOrderLedger(get_settings().ledger_path)


@lru_cache(maxsize=1)
def get_dead_letters_cached() -> UnrenderableOrderLog:
    return UnrenderableOrderLog(get_settings().dead_letter_path)


@lru_cache(maxsize=1)
def get_printer_cached() -> PrintDispatcher:
    return PrintDispatcher(get_settings())


@lru_cache(maxsize=1)
def get_notifier_cached() -> NotificationFanout:
    settings = get_settings()
    return NotificationFanout(
        SoundAlert(settings),
        DesktopNotifier(settings),
        EmailNotifier(settings),
    )


@lru_cache(maxsize=1)
def get_pipeline_cached() -> OrderPipeline:
    settings = get_settings()
    return OrderPipeline(
        get_order_source_cached(),
        get_ledger_cached(),
        InvoiceRenderer(settings, PlaywrightPdfBackend()),
        get_printer_cached(),
        get_notifier_cached(),
        get_dead_letters_cached(),
    )


@lru_cache(maxsize=1)
def get_scheduler_cached() -> InvoiceScheduler:
    settings = get_settings()
    reports = ReportService(settings, get_notifier_cached().email)
    return InvoiceScheduler(get_pipeline_cached(), reports, settings)


def get_ledger(settings: Settings = Depends(get_settings)) -> ProcessedOrderLedger:
    return get_ledger_cached()


def get_dead_letters(settings: Settings = Depends(get_settings)) -> UnrenderableOrderLog:
    return get_dead_letters_cached()


def get_pipeline(settings: Settings = Depends(get_settings)) -> OrderPipeline:
    return get_pipeline_cached()


def get_diagnostics(settings: Settings = Depends(get_settings)) -> SystemDiagnostics:
    return SystemDiagnostics(settings, get_order_source_cached(), get_printer_cached())
