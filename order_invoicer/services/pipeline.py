"""One fetch -> filter -> process-each cycle.

Per order, in this order: dedup check, sound alert (detached), desktop
notification, render, print, ledger commit, success log. A render failure
ends that order only; a print failure does not prevent the commit. A ledger
write failure is the one error that escapes the cycle.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime, timezone
from typing import Optional

from order_invoicer.schemas.orders import Order
from order_invoicer.schemas.reports import CycleReport
from order_invoicer.services.exceptions import LedgerError
from order_invoicer.services.invoice_renderer import InvoiceRenderer
from order_invoicer.services.ledger import ProcessedOrderLedger, UnrenderableOrderLog
from order_invoicer.services.notifications import NotificationFanout
from order_invoicer.services.order_source import OrderSource
from order_invoicer.services.printer import PrintDispatcher
from order_invoicer.services.results import Failure

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Successfully processed order %s"


class CycleState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING = "filtering"
    PROCESSING_ORDER = "processing_order"


class OrderOutcome(str, enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    RENDER_FAILED = "render_failed"
    FAILED = "failed"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class OrderPipeline:
    def __init__(
        self,
        source: OrderSource,
        ledger: ProcessedOrderLedger,
        renderer: InvoiceRenderer,
        printer: PrintDispatcher,
        notifier: NotificationFanout,
        dead_letters: UnrenderableOrderLog,
    ) -> None:
        self._source = source
        self._ledger = ledger
        self._renderer = renderer
        self._printer = printer
        self._notifier = notifier
        self._dead_letters = dead_letters
        self.state = CycleState.IDLE
        self.current_order: Optional[str] = None
        self.last_report: Optional[CycleReport] = None

    async def run_cycle(self) -> CycleReport:
        report = CycleReport(started_at=_now())
        try:
            await self._run(report)
        finally:
            self.state = CycleState.IDLE
            self.current_order = None
            report.finished_at = _now()
            self.last_report = report
        return report

    async def _run(self, report: CycleReport) -> None:
        logger.info("Checking for new orders...")
        self._ledger.load()
        self.state = CycleState.FETCHING
        fetched = await self._source.fetch()
        if isinstance(fetched, Failure):
            report.fetch_error = str(fetched.error)
            logger.error("Order fetch failed, nothing to process this cycle: %s", fetched.error)
            return

        orders = fetched.value
        report.fetched = len(orders)
        if not orders:
            logger.info("No new orders found")
            return
        logger.info("Found %s orders to check", len(orders))

        self.state = CycleState.FILTERING
        for order in orders:
            outcome = await self._process_isolated(order, report)
            if outcome is OrderOutcome.SKIPPED:
                report.skipped += 1
            elif outcome is OrderOutcome.PROCESSED:
                report.processed.append(order.order_number)
            else:
                report.failed.append(order.order_number)
            self.state = CycleState.FILTERING

        if report.processed:
            logger.info("Successfully processed %s new orders", len(report.processed))

    async def _process_isolated(self, order: Order, report: CycleReport) -> OrderOutcome:
        if not order.order_number or not order.line_items:
            logger.warning("Invalid order object received, skipping")
            return OrderOutcome.FAILED
        if self._ledger.contains(order.order_number):
            logger.debug("Skipping already processed order %s", order.order_number)
            return OrderOutcome.SKIPPED

        self.state = CycleState.PROCESSING_ORDER
        self.current_order = order.order_number
        try:
            return await self._process_order(order, report)
        except LedgerError:
            logger.critical(
                "Could not record order %s as processed; stopping to avoid duplicate invoices",
                order.order_number,
            )
            raise
        except Exception as exc:
            logger.exception("Failed to process order %s", order.order_number)
            await self._notifier.order_failed(order, exc)
            return OrderOutcome.FAILED
        finally:
            self.current_order = None

    async def _process_order(self, order: Order, report: CycleReport) -> OrderOutcome:
        order_number = order.order_number
        logger.info("Processing new order %s", order_number)

        self._notifier.alert_new_order(order_number)
        await self._notifier.new_order(order)

        rendered = await self._renderer.render(order)
        if isinstance(rendered, Failure):
            logger.error("Failed to process order %s: %s", order_number, rendered.error)
            self._dead_letters.record_failure(order_number, rendered.error)
            await self._notifier.order_failed(order, rendered.error)
            return OrderOutcome.RENDER_FAILED
        pdf_path = rendered.value

        printed = await self._printer.print(pdf_path)
        if isinstance(printed, Failure):
            report.print_failures.append(order_number)
            await self._notifier.print_failed(pdf_path, printed.error)

        self._ledger.commit(order_number)
        self._dead_letters.clear(order_number)
        logger.info(SUCCESS_MESSAGE, order_number)
        return OrderOutcome.PROCESSED
