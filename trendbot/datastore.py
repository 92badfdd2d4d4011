"""Minimal SQLite helper for the trading bot.

This module handles three things:
1. Ensuring the SQLite database file exists in the desired location.
2. Creating the base tables (positions, logs).
3. Reading and writing Position records, queryable by symbol and status.

Only the PositionManager writes positions; everything else reads.
"""

from __future__ import annotations

import sqlite3
from dataclasses import astuple
from pathlib import Path
from typing import List, Optional

from .models import Position

_POSITION_COLUMNS = (
    "symbol, side, entry_price, stop_loss, take_profit, quantity, entry_time, status, "
    "id, reason, order_id, exit_time, exit_price, exit_reason, pnl"
)


def _ensure_parent(path: Path) -> None:
    """Create the parent directory for the database file if required."""

    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)


def _row_to_position(row: tuple) -> Position:
    return Position(
        symbol=str(row[0]),
        side=str(row[1]),
        entry_price=float(row[2]),
        stop_loss=float(row[3]),
        take_profit=float(row[4]),
        quantity=float(row[5]),
        entry_time=int(row[6]),
        status=str(row[7]),
        id=int(row[8]),
        reason=row[9] or "",
        order_id=row[10],
        exit_time=None if row[11] is None else int(row[11]),
        exit_price=None if row[12] is None else float(row[12]),
        exit_reason=row[13],
        pnl=None if row[14] is None else float(row[14]),
    )


class SQLiteDataStore:
    """Very small wrapper around sqlite3 connections."""

    def __init__(self, db_path: str | Path = Path("data/trading.db")) -> None:
        self.db_path = Path(db_path)
        _ensure_parent(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        """Return a live sqlite3 connection."""

        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def initialize(self) -> None:
        """Create base tables if they do not already exist."""
        schema = """
        CREATE TABLE IF NOT EXISTS positions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            symbol TEXT NOT NULL,
            side TEXT NOT NULL CHECK (side IN ('BUY', 'SELL')),
            entry_price REAL NOT NULL,
            stop_loss REAL NOT NULL,
            take_profit REAL NOT NULL,
            quantity REAL NOT NULL,
            entry_time INTEGER NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('OPEN', 'CLOSED')),
            reason TEXT DEFAULT '',
            order_id TEXT,
            exit_time INTEGER,
            exit_price REAL,
            exit_reason TEXT,
            pnl REAL
        );

        CREATE INDEX IF NOT EXISTS idx_positions_symbol_status ON positions (symbol, status);

        CREATE TABLE IF NOT EXISTS logs (
            timestamp INTEGER NOT NULL,
            level TEXT NOT NULL,
            module TEXT NOT NULL,
            message TEXT NOT NULL
        );
        """

        with self._connect() as conn:
            conn.executescript(schema)

    def insert_position(self, position: Position) -> int:
        """
        Insert a new position and return its id.

        Args:
            position: Position without an id.

        Returns:
            The id assigned by the database.
        """
        if position.id is not None:
            raise ValueError(f"Position already persisted with id {position.id}")

        sql = (
            "INSERT INTO positions "
            "(symbol, side, entry_price, stop_loss, take_profit, quantity, entry_time, status, "
            "reason, order_id, exit_time, exit_price, exit_reason, pnl) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
        )
        values = astuple(position)
        with self._connect() as conn:
            cursor = conn.execute(sql, values[:8] + values[9:])
            return int(cursor.lastrowid)

    def update_position(self, position: Position) -> bool:
        """
        Overwrite the stored record for ``position.id``.

        Returns:
            True if a row was updated, False if the id is unknown.
        """
        if position.id is None:
            raise ValueError("Cannot update a position without an id")

        sql = (
            "UPDATE positions SET "
            "symbol = ?, side = ?, entry_price = ?, stop_loss = ?, take_profit = ?, "
            "quantity = ?, entry_time = ?, status = ?, reason = ?, order_id = ?, "
            "exit_time = ?, exit_price = ?, exit_reason = ?, pnl = ? "
            "WHERE id = ?"
        )
        values = astuple(position)
        with self._connect() as conn:
            cursor = conn.execute(sql, values[:8] + values[9:] + (position.id,))
            return cursor.rowcount > 0

    def fetch_position(self, position_id: int) -> Optional[Position]:
        query = f"SELECT {_POSITION_COLUMNS} FROM positions WHERE id = ?"
        with self._connect() as conn:
            row = conn.execute(query, (int(position_id),)).fetchone()
        return _row_to_position(row) if row else None

    def fetch_positions(
        self,
        symbol: Optional[str] = None,
        *,
        status: Optional[str] = None,
    ) -> List[Position]:
        """Return positions filtered by symbol and/or status, oldest first."""

        clauses: List[str] = []
        params: List[object] = []

        if symbol is not None:
            clauses.append("symbol = ?")
            params.append(symbol)

        if status is not None:
            clauses.append("status = ?")
            params.append(status)

        query = f"SELECT {_POSITION_COLUMNS} FROM positions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id ASC"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        return [_row_to_position(row) for row in rows]

    def insert_log(self, timestamp_ms: int, level: str, module: str, message: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO logs (timestamp, level, module, message) VALUES (?, ?, ?, ?)",
                (timestamp_ms, level, module, message),
            )
