# src/storage/deal_history_db.py

"""SQLite-backed ledger of applied deals, newest first and size-bounded."""

import json
import logging
import math
import sqlite3
import threading
import time
import uuid
from pathlib import Path
from typing import Any

from src.config.settings import Settings
from src.models.deal import DealHistoryEntry

logger = logging.getLogger("affilifind.deal_history")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS deal_history (
    seq           INTEGER PRIMARY KEY AUTOINCREMENT,
    id            TEXT    NOT NULL UNIQUE,
    added_at      INTEGER NOT NULL,
    savings_value REAL,
    product_json  TEXT    NOT NULL,
    deal_json     TEXT    NOT NULL,
    source        TEXT
);
"""


def _finite(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def compute_savings_value(
    product: dict[str, Any] | None,
    deal: dict[str, Any] | None,
) -> float | None:
    """Money saved by a deal, rounded half-up to two decimals.

    ``None`` when price or discount is missing or non-finite, or the
    result is not positive.
    """
    if not product or not deal:
        return None
    price = _finite(product.get("price"))
    discount = _finite(deal.get("discountPercent"))
    if price is None or discount is None:
        return None
    savings = price * discount / 100
    if not math.isfinite(savings) or savings <= 0:
        return None
    return math.floor(savings * 100 + 0.5) / 100


class DealHistoryDB:
    """Append-only store of applied deals.

    Entries are immutable once written.  ``append`` is a single
    read-modify-write transaction guarded by a lock, so it stays
    consistent even when called from worker threads.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        limit: int = Settings.DEAL_HISTORY_LIMIT,
    ) -> None:
        path = db_path or Settings.HISTORY_DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._limit = limit
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        logger.debug("DealHistoryDB opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # ── Writing ──────────────────────────────────────────

    def append(
        self,
        record: dict[str, Any] | None,
        now_ms: int | None = None,
    ) -> DealHistoryEntry | None:
        """Prepend an applied deal and trim the ledger to its cap.

        ``record`` carries ``product``, ``deal`` and ``source``.
        Returns the stored entry, or ``None`` for an empty record.
        """
        if not record:
            return None
        product: dict[str, Any] = dict(record.get("product") or {})
        deal: dict[str, Any] = dict(record.get("deal") or {})
        entry = DealHistoryEntry(
            id=uuid.uuid4().hex,
            added_at=now_ms if now_ms is not None else int(time.time() * 1000),
            savings_value=compute_savings_value(product, deal),
            product=product,
            deal=deal,
            source=record.get("source"),
        )

        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO deal_history "
                "(id, added_at, savings_value, product_json, deal_json, source) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    entry.added_at,
                    entry.savings_value,
                    json.dumps(product, ensure_ascii=False),
                    json.dumps(deal, ensure_ascii=False),
                    entry.source,
                ),
            )
            trimmed = self._conn.execute(
                "DELETE FROM deal_history WHERE seq NOT IN ("
                "  SELECT seq FROM deal_history ORDER BY seq DESC LIMIT ?"
                ")",
                (self._limit,),
            ).rowcount

        logger.info(
            "Recorded deal %s (savings=%s, trimmed=%d)",
            entry.id,
            entry.savings_value,
            trimmed,
        )
        return entry

    # ── Reading ──────────────────────────────────────────

    def list(self) -> list[DealHistoryEntry]:
        """All entries, newest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, added_at, savings_value, product_json, "
                "       deal_json, source "
                "FROM deal_history ORDER BY seq DESC",
            ).fetchall()
        return [
            DealHistoryEntry(
                id=r[0],
                added_at=r[1],
                savings_value=r[2],
                product=json.loads(r[3]),
                deal=json.loads(r[4]),
                source=r[5],
            )
            for r in rows
        ]

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM deal_history"
            ).fetchone()
        return int(row[0])
