from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from order_invoicer.config import Settings
from order_invoicer.schemas.diagnostics import ComponentHealth, DiagnosticsReport
from order_invoicer.services.order_source import OrderSource
from order_invoicer.services.printer import PrintDispatcher

logger = logging.getLogger(__name__)

_SEVERITY = {"healthy": 0, "warning": 1, "unhealthy": 2}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _worst(current: str, candidate: str) -> str:
    return candidate if _SEVERITY[candidate] > _SEVERITY[current] else current


class SystemDiagnostics:
    """Health query consumed by the status API."""

    def __init__(self, settings: Settings, source: OrderSource, printer: PrintDispatcher) -> None:
        self._settings = settings
        self._source = source
        self._printer = printer

    async def perform_health_check(self) -> DiagnosticsReport:
        report = DiagnosticsReport(timestamp=_now())

        try:
            reachable = await self._source.health_check()
            report.api_reachable = reachable
            report.components["api"] = ComponentHealth(
                status="healthy" if reachable else "unhealthy", last_check=_now()
            )
            if not reachable:
                report.errors.append("Commerce API connection failed")
        except Exception as exc:
            report.components["api"] = ComponentHealth(status="unhealthy", error=str(exc), last_check=_now())
            report.errors.append(f"API check failed: {exc}")

        printers = await self._printer.list_printers()
        target = self._printer.printer_name
        report.printer_present = target in printers
        report.components["printer"] = ComponentHealth(
            status="healthy" if report.printer_present else "warning",
            last_check=_now(),
            details={"printer_name": target, "total_printers": len(printers)},
        )
        if not report.printer_present:
            report.errors.append(f"Configured printer '{target}' not found")

        report.components["filesystem"] = self.check_filesystem()
        report.directories_present = report.components["filesystem"].status == "healthy"
        if not report.directories_present:
            report.errors.append("File system issues detected")

        report.components["configuration"] = self.check_configuration()
        report.config_present = report.components["configuration"].status != "unhealthy"
        if report.components["configuration"].status != "healthy":
            report.errors.append("Configuration issues detected")

        overall = "healthy"
        for component in report.components.values():
            overall = _worst(overall, component.status)
        report.overall = overall

        if overall == "healthy":
            logger.info("System health check passed")
        elif overall == "warning":
            logger.warning("System health check completed with warnings")
        else:
            logger.error("System health check failed")
        return report

    def check_filesystem(self) -> ComponentHealth:
        directories = {}
        status = "healthy"
        for directory in self._settings.required_directories:
            path = Path(directory)
            exists = path.is_dir()
            directories[str(path)] = {
                "exists": exists,
                "writable": exists and os.access(path, os.W_OK),
            }
            if not exists:
                status = "unhealthy"
        return ComponentHealth(status=status, last_check=_now(), details={"directories": directories})

    def check_configuration(self) -> ComponentHealth:
        settings = self._settings
        missing = [
            name
            for name in ("commerce_api_base_url", "commerce_api_key", "shop_name", "shop_address", "shop_email")
            if not getattr(settings, name)
        ]
        warnings = []
        if bool(settings.smtp_user) != bool(settings.notification_email):
            warnings.append("Email notifications are only partially configured")
        if settings.template_path is not None and not Path(settings.template_path).exists():
            warnings.append(f"Invoice template {settings.template_path} not found")

        if missing:
            status = "unhealthy"
        elif warnings:
            status = "warning"
        else:
            status = "healthy"
        return ComponentHealth(
            status=status,
            last_check=_now(),
            details={"missing": missing, "warnings": warnings},
        )
