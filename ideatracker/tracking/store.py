"""SQLite-backed idea store: open ideas, outcomes, symbol profiles and sweep leases."""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

import pytz
import structlog

from ideatracker.core.errors import ConflictingTransition, LeaseUnavailable
from ideatracker.core.models import (
    AssetType,
    Direction,
    IdeaSource,
    MissedEntryOutcome,
    OptionType,
    OutcomeStatus,
    ProgressUpdate,
    Resolution,
    ResolutionReason,
    SymbolProfile,
    TradeIdea,
)

logger = structlog.get_logger()

CREATE_TABLES_SQL = [
    """
    CREATE TABLE IF NOT EXISTS ideas (
        id TEXT PRIMARY KEY,
        symbol TEXT NOT NULL,
        created_at TEXT NOT NULL,
        source TEXT NOT NULL,
        asset_type TEXT NOT NULL,
        direction TEXT NOT NULL,
        entry_price REAL NOT NULL,
        target_price REAL NOT NULL,
        stop_loss REAL NOT NULL,
        confidence_score INTEGER NOT NULL,
        exit_by TEXT,
        quality_signals TEXT DEFAULT '[]',
        catalyst TEXT,
        entry_valid_until TEXT,
        option_type TEXT,
        strike_price REAL,
        expiry_date TEXT,
        contract_symbol TEXT,
        entry_filled_at TEXT,
        highest_price_reached REAL,
        lowest_price_reached REAL,
        last_price REAL,
        last_price_at TEXT,
        missed_entry_outcome TEXT,
        outcome_status TEXT NOT NULL DEFAULT 'open',
        resolution_reason TEXT,
        exit_price REAL,
        exit_date TEXT,
        percent_gain REAL,
        actual_holding_time_minutes INTEGER,
        validated_at TEXT,
        outcome_notes TEXT,
        prediction_accuracy_percent REAL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS symbol_profiles (
        symbol TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sweep_leases (
        name TEXT PRIMARY KEY,
        holder TEXT NOT NULL,
        expires_at REAL NOT NULL
    )
    """,
]

CREATE_INDEX_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_ideas_status ON ideas(outcome_status)",
    "CREATE INDEX IF NOT EXISTS idx_ideas_symbol ON ideas(symbol)",
    "CREATE INDEX IF NOT EXISTS idx_ideas_source ON ideas(source)",
    "CREATE INDEX IF NOT EXISTS idx_ideas_created_at ON ideas(created_at)",
]

IDEA_COLUMNS = (
    "id", "symbol", "created_at", "source", "asset_type", "direction",
    "entry_price", "target_price", "stop_loss", "confidence_score", "exit_by",
    "quality_signals", "catalyst", "entry_valid_until",
    "option_type", "strike_price", "expiry_date", "contract_symbol",
    "entry_filled_at", "highest_price_reached", "lowest_price_reached",
    "last_price", "last_price_at", "missed_entry_outcome",
    "outcome_status", "resolution_reason", "exit_price", "exit_date",
    "percent_gain", "actual_holding_time_minutes", "validated_at",
    "outcome_notes", "prediction_accuracy_percent",
)


def _to_db(value: Any) -> Any:
    """Serialize enums and datetimes for sqlite."""
    if isinstance(value, datetime):
        return value.astimezone(pytz.UTC).isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt


class IdeaStore:
    """SQLite-backed store for trade ideas.

    Shared by the sweep, the manual recorder and the read-only reports. All
    access to the connection is serialized with a re-entrant lock so quote
    worker threads and the scheduler thread can share one store. Terminal
    writes are conditional on the idea still being open.
    """

    def __init__(self, db_path: str = "data/ideas/ideas.db") -> None:
        self._db_path = db_path
        self._log = logger.bind(component="idea_store")
        self._lock = threading.RLock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(db_path, check_same_thread=False, timeout=30.0)
        self._conn.row_factory = sqlite3.Row
        self._init_db()
        self._log.info("idea_store_initialized", db_path=db_path)

    def _init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._lock:
            cursor = self._conn.cursor()
            for sql in CREATE_TABLES_SQL:
                cursor.execute(sql)
            for sql in CREATE_INDEX_SQL:
                cursor.execute(sql)
            self._conn.commit()

    # ── Ideas ─────────────────────────────────────────────────────────

    def add_idea(self, idea: TradeIdea) -> str:
        """Insert a new idea. Returns the idea ID."""
        values = [self._idea_value(idea, col) for col in IDEA_COLUMNS]
        placeholders = ", ".join("?" for _ in IDEA_COLUMNS)

        with self._lock:
            self._conn.execute(
                f"INSERT INTO ideas ({', '.join(IDEA_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
            self._conn.commit()

        self._log.info(
            "idea_added",
            idea_id=idea.id,
            symbol=idea.symbol,
            source=idea.source.value,
            confidence=idea.confidence_score,
        )
        return idea.id

    def get_idea(self, idea_id: str) -> TradeIdea | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM ideas WHERE id = ?", (idea_id,)).fetchone()
        return self._row_to_idea(row) if row else None

    def list_open_ideas(self) -> list[TradeIdea]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM ideas WHERE outcome_status = 'open' ORDER BY created_at"
            ).fetchall()
        return [self._row_to_idea(row) for row in rows]

    def list_closed_ideas(
        self,
        source: IdeaSource | None = None,
        asset_type: AssetType | None = None,
        direction: Direction | None = None,
        symbol: str | None = None,
        since: datetime | None = None,
    ) -> list[TradeIdea]:
        """Query closed ideas with optional filters. ``since`` bounds created_at."""
        conditions = ["outcome_status != 'open'"]
        params: list[Any] = []

        if source:
            conditions.append("source = ?")
            params.append(source.value)
        if asset_type:
            conditions.append("asset_type = ?")
            params.append(asset_type.value)
        if direction:
            conditions.append("direction = ?")
            params.append(direction.value)
        if symbol:
            conditions.append("symbol = ?")
            params.append(symbol)
        if since:
            conditions.append("created_at >= ?")
            params.append(since.astimezone(pytz.UTC).isoformat())

        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM ideas WHERE {' AND '.join(conditions)} ORDER BY created_at",
                params,
            ).fetchall()
        return [self._row_to_idea(row) for row in rows]

    def compare_and_transition(self, idea_id: str, resolution: Resolution) -> bool:
        """Write a terminal outcome only if the idea is still open.

        Returns False when another writer got there first; the stored record
        is left untouched.
        """
        idea = self.get_idea(idea_id)
        if idea is None:
            return False
        resolution.check_asset(idea.asset_type)

        updates: dict[str, Any] = {
            "outcome_status": resolution.status,
            "resolution_reason": resolution.reason,
            "exit_price": resolution.exit_price,
            "exit_date": resolution.exit_date,
            "percent_gain": resolution.percent_gain,
            "actual_holding_time_minutes": resolution.holding_time_minutes,
            "validated_at": resolution.validated_at,
            "outcome_notes": resolution.notes,
            "prediction_accuracy_percent": resolution.prediction_accuracy_percent,
        }
        if resolution.highest_price_reached is not None:
            updates["highest_price_reached"] = resolution.highest_price_reached
        if resolution.lowest_price_reached is not None:
            updates["lowest_price_reached"] = resolution.lowest_price_reached

        changed = self._conditional_update(idea_id, updates, "outcome_status = 'open'")
        if not changed:
            self._log.info("transition_conflict", idea_id=idea_id, status=resolution.status.value)
        return changed

    def transition(self, idea_id: str, resolution: Resolution) -> None:
        """Like compare_and_transition, but a lost race raises ConflictingTransition."""
        if not self.compare_and_transition(idea_id, resolution):
            raise ConflictingTransition(idea_id)

    def update_progress(self, idea_id: str, progress: ProgressUpdate) -> bool:
        updates: dict[str, Any] = {
            "highest_price_reached": progress.highest_price_reached,
            "lowest_price_reached": progress.lowest_price_reached,
            "last_price": progress.last_price,
            "last_price_at": progress.last_price_at,
        }
        if progress.entry_filled_at is not None:
            updates["entry_filled_at"] = progress.entry_filled_at
        if progress.missed_entry_outcome is not None:
            updates["missed_entry_outcome"] = progress.missed_entry_outcome
        return self._conditional_update(idea_id, updates, "outcome_status = 'open'")

    def update_notes(self, idea_id: str, notes: str) -> bool:
        """Replace outcome notes on a closed idea."""
        return self._conditional_update(
            idea_id, {"outcome_notes": notes}, "outcome_status != 'open'"
        )

    def _conditional_update(self, idea_id: str, updates: dict[str, Any], guard: str) -> bool:
        set_clause = ", ".join(f"{k} = ?" for k in updates)
        values = [_to_db(v) for v in updates.values()] + [idea_id]

        with self._lock:
            cursor = self._conn.execute(
                f"UPDATE ideas SET {set_clause} WHERE id = ? AND {guard}",
                values,
            )
            self._conn.commit()
            return cursor.rowcount == 1

    # ── Symbol profiles ───────────────────────────────────────────────

    def upsert_symbol_profile(self, profile: SymbolProfile) -> None:
        data = asdict(profile)
        data["last_trade_at"] = _to_db(profile.last_trade_at)
        data["updated_at"] = _to_db(profile.updated_at)

        with self._lock:
            self._conn.execute(
                """
                INSERT INTO symbol_profiles (symbol, data, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(symbol) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                """,
                (profile.symbol, json.dumps(data), data["updated_at"]),
            )
            self._conn.commit()

    def get_symbol_profile(self, symbol: str) -> SymbolProfile | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM symbol_profiles WHERE symbol = ?", (symbol,)
            ).fetchone()
        if row is None:
            return None

        data = json.loads(row["data"])
        data["last_trade_at"] = _parse_dt(data.get("last_trade_at"))
        data["updated_at"] = _parse_dt(data.get("updated_at"))
        return SymbolProfile(**data)

    def list_symbols(self) -> list[str]:
        """Distinct symbols that have at least one closed idea."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT symbol FROM ideas WHERE outcome_status != 'open' ORDER BY symbol"
            ).fetchall()
        return [row["symbol"] for row in rows]

    # ── Sweep lease ───────────────────────────────────────────────────

    def acquire_lease(
        self, name: str, holder: str, ttl_seconds: float, now: float | None = None
    ) -> bool:
        """Take or renew the named lease. Fails while another holder's lease is live."""
        now = time.time() if now is None else now
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO sweep_leases (name, holder, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET holder = excluded.holder, expires_at = excluded.expires_at
                WHERE sweep_leases.expires_at <= ? OR sweep_leases.holder = excluded.holder
                """,
                (name, holder, now + ttl_seconds, now),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def release_lease(self, name: str, holder: str) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM sweep_leases WHERE name = ? AND holder = ?", (name, holder)
            )
            self._conn.commit()

    def lease_holder(self, name: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT holder FROM sweep_leases WHERE name = ?", (name,)
            ).fetchone()
        return row["holder"] if row else None

    @contextmanager
    def lease(self, name: str, holder: str, ttl_seconds: float) -> Iterator[None]:
        """Hold the named lease for the duration of the block.

        Raises LeaseUnavailable if another holder has it.
        """
        if not self.acquire_lease(name, holder, ttl_seconds):
            raise LeaseUnavailable(name, self.lease_holder(name))
        try:
            yield
        finally:
            self.release_lease(name, holder)

    # ── Row mapping ───────────────────────────────────────────────────

    @staticmethod
    def _idea_value(idea: TradeIdea, column: str) -> Any:
        value = getattr(idea, column)
        if column == "quality_signals":
            return json.dumps(list(value or []))
        return _to_db(value)

    def _row_to_idea(self, row: sqlite3.Row) -> TradeIdea:
        """Convert a database row to a TradeIdea."""
        return TradeIdea(
            id=row["id"],
            symbol=row["symbol"],
            created_at=_parse_dt(row["created_at"]),
            source=IdeaSource(row["source"]),
            asset_type=AssetType(row["asset_type"]),
            direction=Direction(row["direction"]),
            entry_price=row["entry_price"],
            target_price=row["target_price"],
            stop_loss=row["stop_loss"],
            confidence_score=row["confidence_score"],
            exit_by=_parse_dt(row["exit_by"]),
            quality_signals=json.loads(row["quality_signals"]) if row["quality_signals"] else [],
            catalyst=row["catalyst"],
            entry_valid_until=_parse_dt(row["entry_valid_until"]),
            option_type=OptionType(row["option_type"]) if row["option_type"] else None,
            strike_price=row["strike_price"],
            expiry_date=_parse_dt(row["expiry_date"]),
            contract_symbol=row["contract_symbol"],
            entry_filled_at=_parse_dt(row["entry_filled_at"]),
            highest_price_reached=row["highest_price_reached"],
            lowest_price_reached=row["lowest_price_reached"],
            last_price=row["last_price"],
            last_price_at=_parse_dt(row["last_price_at"]),
            missed_entry_outcome=(
                MissedEntryOutcome(row["missed_entry_outcome"]) if row["missed_entry_outcome"] else None
            ),
            outcome_status=OutcomeStatus(row["outcome_status"]),
            resolution_reason=(
                ResolutionReason(row["resolution_reason"]) if row["resolution_reason"] else None
            ),
            exit_price=row["exit_price"],
            exit_date=_parse_dt(row["exit_date"]),
            percent_gain=row["percent_gain"],
            actual_holding_time_minutes=row["actual_holding_time_minutes"],
            validated_at=_parse_dt(row["validated_at"]),
            outcome_notes=row["outcome_notes"],
            prediction_accuracy_percent=row["prediction_accuracy_percent"],
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
