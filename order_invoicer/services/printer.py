from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import List

from order_invoicer.config import Settings
from order_invoicer.services.exceptions import PrintError
from order_invoicer.services.process import CommandRunner, run_command
from order_invoicer.services.results import Failure, Result, Success

logger = logging.getLogger(__name__)

PRINT_DISABLED = "disabled"
PRINT_SUBMITTED = "submitted"


class PrintDispatcher:
    """Sends rendered invoices to a CUPS printer. Best effort, never raises."""

    def __init__(self, settings: Settings, *, runner: CommandRunner = run_command) -> None:
        self._enabled = settings.auto_print
        self._printer_name = settings.printer_name
        self._copies = settings.print_copies
        self._command = shlex.split(settings.print_command)
        self._runner = runner

    @property
    def printer_name(self) -> str:
        return self._printer_name

    async def print(self, path: Path) -> Result[str, PrintError]:
        if not self._enabled:
            logger.info("Auto-printing is disabled. Skipping printing.")
            return Success(PRINT_DISABLED)
        try:
            await self._submit(Path(path))
        except PrintError as exc:
            logger.error("Error printing file %s: %s", path, exc)
            return Failure(exc)
        return Success(PRINT_SUBMITTED)

    async def _submit(self, path: Path) -> None:
        if not path.exists():
            raise PrintError(f"PDF file not found: {path}")
        size = path.stat().st_size
        if size == 0:
            raise PrintError(f"PDF file is empty: {path}")

        logger.info("Printing file: %s (%s bytes)", path, size)
        argv = [*self._command, "-d", self._printer_name, "-n", str(self._copies), str(path)]
        try:
            result = await self._runner(argv)
        except FileNotFoundError as exc:
            raise PrintError(f"Print command not found: {self._command[0]}", cause=exc) from exc
        except Exception as exc:
            raise PrintError(f"Print command failed: {exc}", cause=exc) from exc

        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            if "printer" in detail.lower():
                logger.error(
                    "Check printer name: '%s'. Available printers: %s",
                    self._printer_name,
                    ", ".join(await self.list_printers()) or "none",
                )
            raise PrintError(f"Print command exited with {result.returncode}: {detail}")
        logger.info("Successfully sent %s to printer '%s'", path, self._printer_name)

    async def list_printers(self) -> List[str]:
        try:
            result = await self._runner(["lpstat", "-e"])
        except Exception as exc:
            logger.error("Error listing printers: %s", exc)
            return []
        if result.returncode != 0:
            logger.error("Error listing printers: %s", result.stderr.strip())
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]
