# order_invoicer/health.py
import time
from collections import deque
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from order_invoicer import __version__
from order_invoicer.config import Settings, get_settings
from order_invoicer.dependencies.services import (
    get_dead_letters,
    get_diagnostics,
    get_ledger,
    get_pipeline,
)
from order_invoicer.schemas.diagnostics import DiagnosticsReport
from order_invoicer.services import (
    OrderPipeline,
    ProcessedOrderLedger,
    SystemDiagnostics,
    UnrenderableOrderLog,
)
from order_invoicer.services.exceptions import LedgerError

router = APIRouter(prefix="/api")

STARTED_AT = time.monotonic()
LOG_TAIL_LINES = 50


@router.get("/health")
def health(
    settings: Settings = Depends(get_settings),
    pipeline: OrderPipeline = Depends(get_pipeline),
):
    last = pipeline.last_report
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 1),
        "version": __version__,
        "environment": settings.environment,
        "polling_interval": settings.polling_interval_minutes,
        "pipeline_state": pipeline.state.value,
        "current_order": pipeline.current_order,
        "last_cycle": last.model_dump() if last else None,
    }


@router.get("/health-check", response_model=DiagnosticsReport)
async def health_check(diagnostics: SystemDiagnostics = Depends(get_diagnostics)):
    return await diagnostics.perform_health_check()


@router.get("/orders")
def processed_orders(ledger: ProcessedOrderLedger = Depends(get_ledger)):
    try:
        orders = ledger.processed_ids()
    except LedgerError as exc:
        raise HTTPException(status_code=500, detail="Failed to read processed orders") from exc
    return {"processed_orders": orders, "total_processed": len(orders)}


@router.get("/unrenderable-orders")
def unrenderable_orders(dead_letters: UnrenderableOrderLog = Depends(get_dead_letters)):
    entries = dead_letters.entries()
    return {"orders": entries, "total": len(entries)}


@router.get("/logs")
def recent_logs(settings: Settings = Depends(get_settings)):
    log_file = settings.log_file
    if not log_file.exists():
        return {"logs": []}
    try:
        with log_file.open(encoding="utf-8", errors="replace") as handle:
            tail = deque((line.rstrip("\n") for line in handle if line.strip()), maxlen=LOG_TAIL_LINES)
    except OSError as exc:
        raise HTTPException(status_code=500, detail="Failed to read logs") from exc
    return {"logs": list(reversed(tail))}
