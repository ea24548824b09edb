"""Durable record of processed orders and of orders that keep failing to render.

``ProcessedOrderLedger`` is the only correctness mechanism behind at-most-once
processing: the fetch window overlaps between cycles on purpose, so the same
order is seen again and must short-circuit here.

Both files are rewritten in full on every change through a temporary sibling
and ``os.replace``; a crash leaves either the old or the new document.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, FrozenSet, List

from order_invoicer.services.exceptions import LedgerError

logger = logging.getLogger(__name__)


def _atomic_write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class ProcessedOrderLedger:
    """Persisted set of order numbers whose invoice was fully processed."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._ids: List[str] = []
        self._index: set[str] = set()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> FrozenSet[str]:
        """Read the ledger, treating a missing or corrupt file as empty."""

        ids = self._read()
        if ids is None:
            ids = []
            try:
                _atomic_write_json(self._path, [])
            except OSError as exc:
                raise LedgerError(f"Cannot create ledger file {self._path}", cause=exc) from exc

        self._ids = []
        self._index = set()
        for order_id in ids:
            if order_id not in self._index:
                self._ids.append(order_id)
                self._index.add(order_id)
        logger.debug("Loaded %s processed order numbers", len(self._ids))
        return frozenset(self._index)

    def contains(self, order_id: str) -> bool:
        return order_id in self._index

    def commit(self, order_id: str) -> None:
        """Durably add ``order_id``; committing a known id is a no-op."""

        if order_id in self._index:
            return
        updated = [*self._ids, order_id]
        try:
            _atomic_write_json(self._path, updated)
        except OSError as exc:
            raise LedgerError(
                f"Failed to persist order {order_id} to {self._path}", cause=exc
            ) from exc
        self._ids = updated
        self._index.add(order_id)
        logger.debug("Saved %s processed order numbers", len(self._ids))

    def processed_ids(self) -> List[str]:
        """Return the persisted ids in commit order without touching memory state."""

        ids = self._read()
        return list(dict.fromkeys(ids)) if ids else []

    def _read(self) -> List[str] | None:
        """Return the stored ids, or None when the file is missing or corrupt.

        An existing file that cannot be read raises ``LedgerError``; it is
        never treated as empty, or the next load would overwrite it.
        """

        if not self._path.exists():
            return None
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LedgerError(f"Cannot read ledger file {self._path}", cause=exc) from exc
        except UnicodeDecodeError as exc:
            logger.error("Error reading processed orders file %s: %s", self._path, exc)
            return None
        try:
            data = json.loads(text)
        except ValueError as exc:
            logger.error("Error reading processed orders file %s: %s", self._path, exc)
            return None
        if not isinstance(data, list):
            logger.error("Processed orders file %s is not a JSON array; starting empty", self._path)
            return None
        return [str(item) for item in data if isinstance(item, (str, int))]


class UnrenderableOrderLog:
    """Dead-letter list of orders whose invoice failed to render.

    Entries exist only for visibility. An order that keeps failing until it
    leaves the fetch window is never retried again; this file is the only
    trace of it.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def entries(self) -> Dict[str, Dict[str, Any]]:
        return self._load() or {}

    def _load(self) -> Dict[str, Dict[str, Any]] | None:
        """Return the entries, or None when an existing file cannot be read."""

        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.error("Error reading unrenderable orders file %s: %s", self._path, exc)
            return None
        except UnicodeDecodeError as exc:
            logger.error("Error reading unrenderable orders file %s: %s", self._path, exc)
            return {}
        try:
            data = json.loads(text)
        except ValueError as exc:
            logger.error("Error reading unrenderable orders file %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def record_failure(self, order_id: str, error: Exception) -> None:
        now = datetime.now(timezone.utc).isoformat()
        entries = self._load()
        if entries is None:
            logger.warning("Order %s could not be rendered; unrenderable list not updated", order_id)
            return
        entry = entries.get(order_id) or {"attempts": 0, "first_failed_at": now}
        entry["attempts"] = int(entry.get("attempts", 0)) + 1
        entry["last_failed_at"] = now
        entry["last_error"] = str(error)
        entries[order_id] = entry
        self._save(entries)
        logger.warning(
            "Order %s could not be rendered (%s attempt(s)); kept in unrenderable list",
            order_id,
            entry["attempts"],
        )

    def clear(self, order_id: str) -> None:
        entries = self._load()
        if entries is not None and entries.pop(order_id, None) is not None:
            self._save(entries)

    def _save(self, entries: Dict[str, Dict[str, Any]]) -> None:
        try:
            _atomic_write_json(self._path, entries)
        except OSError as exc:
            logger.error("Failed to update unrenderable orders file %s: %s", self._path, exc)
