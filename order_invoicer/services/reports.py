from __future__ import annotations

import html
import json
import logging
import re
import socket
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

from order_invoicer.config import Settings
from order_invoicer.schemas.reports import DailyCount, DigestReport
from order_invoicer.services.notifications import EmailNotifier

logger = logging.getLogger(__name__)

_PROCESSED_LINE = re.compile(r"Successfully processed order (\S+)")
_REPORT_FILE = re.compile(r"^(daily|weekly)-(\d{4}-\d{2}-\d{2})\.json$")


def week_bounds(day: date) -> tuple[date, date]:
    """Return the Sunday-to-Saturday week containing ``day``."""

    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return start, start + timedelta(days=6)


class ReportService:
    """Builds daily and weekly digests from the application log.

    Reads ``logs/app.log`` and ``reports/`` only; never the processed-order
    ledger, so it can run at any time next to a polling cycle.
    """

    def __init__(
        self,
        settings: Settings,
        email: EmailNotifier,
        *,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._log_file = Path(settings.log_file)
        self._reports_dir = Path(settings.reports_dir)
        self._retention_days = settings.report_retention_days
        self._shop_name = settings.shop_name
        self._email = email
        self._today = today or date.today

    def generate_daily_report(self, day: Optional[date] = None) -> DigestReport:
        day = day or self._today()
        stamp = day.isoformat()
        orders: List[str] = []
        if self._log_file.exists():
            with self._log_file.open(encoding="utf-8", errors="replace") as handle:
                for line in handle:
                    if not line.startswith(stamp):
                        continue
                    match = _PROCESSED_LINE.search(line)
                    if match and match.group(1) not in orders:
                        orders.append(match.group(1))

        report = DigestReport(
            kind="daily",
            period=stamp,
            orders=orders,
            total=len(orders),
            generated_at=datetime.now(timezone.utc).isoformat(),
        )
        self._save(f"daily-{stamp}.json", report)
        logger.info("Daily report generated: %s orders processed", report.total)
        return report

    def generate_weekly_report(self, day: Optional[date] = None) -> DigestReport:
        start, end = week_bounds(day or self._today())
        daily_reports: List[DigestReport] = []
        for path in sorted(self._reports_dir.glob("daily-*.json")):
            match = _REPORT_FILE.match(path.name)
            if not match:
                continue
            report_day = date.fromisoformat(match.group(2))
            if not start <= report_day <= end:
                continue
            try:
                daily_reports.append(DigestReport.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as exc:
                logger.warning("Failed to read daily report %s: %s", path.name, exc)

        orders: List[str] = []
        for daily in daily_reports:
            for order in daily.orders:
                if order not in orders:
                    orders.append(order)

        report = DigestReport(
            kind="weekly",
            period=f"{start.isoformat()} to {end.isoformat()}",
            orders=orders,
            total=len(orders),
            daily_breakdown=[DailyCount(date=r.period, count=r.total) for r in daily_reports],
            generated_at=datetime.now(timezone.utc).isoformat(),
        )
        self._save(f"weekly-{start.isoformat()}.json", report)
        logger.info("Weekly report generated: %s orders processed", report.total)
        return report

    async def send_daily_report(self, day: Optional[date] = None, force: bool = False) -> bool:
        return await self._send("daily", day, force)

    async def send_weekly_report(self, day: Optional[date] = None, force: bool = False) -> bool:
        return await self._send("weekly", day, force)

    async def _send(self, kind: str, day: Optional[date], force: bool) -> bool:
        if not self._email.configured:
            logger.debug("Email not configured, skipping %s report", kind)
            return False
        try:
            report = (
                self.generate_daily_report(day)
                if kind == "daily"
                else self.generate_weekly_report(day)
            )
            if report.total == 0 and not force:
                logger.info("No orders processed in %s, skipping %s report", report.period, kind)
                return False
            subject = f"{kind.capitalize()} Report - {report.total} orders processed ({report.period})"
            text = f"{kind.capitalize()} report for {report.period}: {report.total} orders processed"
            sent = await self._email.send(subject, text, self.render_html(report))
        except Exception:
            logger.exception("Failed to send %s report", kind)
            return False
        if sent:
            logger.info("%s report sent to %s", kind.capitalize(), self._email.recipient)
        return sent

    def cleanup_old_reports(self, days_to_keep: Optional[int] = None) -> List[str]:
        """Delete report files dated before the retention cutoff."""

        keep = days_to_keep if days_to_keep is not None else self._retention_days
        cutoff = self._today() - timedelta(days=keep)
        removed: List[str] = []
        if not self._reports_dir.exists():
            return removed
        for path in self._reports_dir.iterdir():
            match = _REPORT_FILE.match(path.name)
            if not match:
                continue
            try:
                if date.fromisoformat(match.group(2)) < cutoff:
                    path.unlink()
                    removed.append(path.name)
                    logger.debug("Cleaned up old report: %s", path.name)
            except (OSError, ValueError) as exc:
                logger.error("Failed to clean up report %s: %s", path.name, exc)
        return removed

    def render_html(self, report: DigestReport) -> str:
        esc = html.escape
        title = "Daily Report" if report.kind == "daily" else "Weekly Report"

        breakdown_html = ""
        if report.daily_breakdown:
            rows = "".join(
                f"<tr><td>{esc(day.date)}</td><td style=\"text-align: center;\">{day.count}</td></tr>"
                for day in report.daily_breakdown
            )
            breakdown_html = (
                "<h3>Daily Breakdown</h3>"
                "<table><thead><tr><th>Date</th><th>Orders</th></tr></thead>"
                f"<tbody>{rows}</tbody></table>"
            )

        if report.orders:
            items = "".join(
                f"<div class=\"order-item\"><strong>Order #{esc(order)}</strong></div>"
                for order in report.orders
            )
            orders_html = f"<div class=\"order-list\"><h3>Processed Orders</h3>{items}</div>"
        else:
            orders_html = "<p>No orders processed during this period.</p>"

        return f"""
        <!DOCTYPE html>
        <html>
            <head>
                <meta charset="UTF-8">
                <title>{title}</title>
                <style>
                    body {{ font-family: Arial, sans-serif; margin: 20px; color: #333; }}
                    .header {{ background-color: #2c3e50; color: white; padding: 20px; border-radius: 5px; }}
                    .summary {{ background-color: #f8f9fa; padding: 20px; border-radius: 5px; margin: 20px 0; }}
                    table {{ width: 100%; border-collapse: collapse; margin: 20px 0; }}
                    th, td {{ border: 1px solid #ddd; padding: 12px; text-align: left; }}
                    .order-item {{ padding: 8px 0; border-bottom: 1px solid #eee; }}
                    .footer {{ margin-top: 30px; font-size: 12px; color: #666; }}
                </style>
            </head>
            <body>
                <div class="header">
                    <h1>{title}</h1>
                    <p>Invoice Automation System - {esc(self._shop_name)}</p>
                </div>
                <div class="summary">
                    <h2>Summary</h2>
                    <p><strong>Period:</strong> {esc(report.period)}</p>
                    <p><strong>Total Orders Processed:</strong> {report.total}</p>
                    <p><strong>Generated:</strong> {esc(report.generated_at)}</p>
                </div>
                {breakdown_html}
                {orders_html}
                <div class="footer">
                    <p>This report was automatically generated by the invoice automation system.</p>
                    <p>System running on: {esc(socket.gethostname())}</p>
                </div>
            </body>
        </html>
        """

    def _save(self, name: str, report: DigestReport) -> None:
        self._reports_dir.mkdir(parents=True, exist_ok=True)
        path = self._reports_dir / name
        path.write_text(json.dumps(report.model_dump(), indent=2), encoding="utf-8")
