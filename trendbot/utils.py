from __future__ import annotations

import math
from datetime import datetime
from typing import Any

import pandas as pd

from .config import DEFAULT_PRICE_TICK, PRICE_TICKS
from .errors import InvalidCandleError
from .models import Candle


def to_milliseconds(value: Any) -> int | None:
    """Normalize assorted timestamp-like inputs to epoch milliseconds."""

    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, pd.Timestamp):
        return int(value.value // 1_000_000)

    if isinstance(value, datetime):
        ts = value.timestamp()
        return int(ts * 1000) if ts > 0 else None

    try:
        numeric = float(value)
    except (TypeError, ValueError):
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
        ts = dt.timestamp()
        return int(ts * 1000) if ts > 0 else None

    if math.isnan(numeric) or numeric <= 0:
        return None
    if numeric >= 1_000_000_000_000:
        return int(numeric)
    return int(numeric * 1000)


def now_ms() -> int:
    return to_milliseconds(datetime.now())


def validate_candle(candle: Candle) -> Candle:
    """Raise InvalidCandleError when prices are missing, non-positive or inconsistent."""

    prices = (candle.open, candle.high, candle.low, candle.close)
    for price in prices:
        if price is None or not math.isfinite(price) or price <= 0:
            raise InvalidCandleError(f"{candle.symbol} candle {candle.timestamp} has invalid price {price}")
    if candle.high < max(candle.open, candle.close, candle.low):
        raise InvalidCandleError(f"{candle.symbol} candle {candle.timestamp} high below body")
    if candle.low > min(candle.open, candle.close, candle.high):
        raise InvalidCandleError(f"{candle.symbol} candle {candle.timestamp} low above body")
    if candle.timestamp is None or candle.timestamp <= 0:
        raise InvalidCandleError(f"{candle.symbol} candle has invalid timestamp {candle.timestamp}")
    if candle.volume is not None and candle.volume < 0:
        raise InvalidCandleError(f"{candle.symbol} candle {candle.timestamp} has negative volume")
    return candle


def frame_to_candles(symbol: str, data: pd.DataFrame) -> list[Candle]:
    """Convert a kline DataFrame indexed by epoch-ms timestamp into ordered, validated candles.

    Rows with missing or invalid values, and rows that do not move strictly forward
    in time, are skipped.
    """

    if data is None or data.empty:
        return []
    if not {"open", "high", "low", "close"}.issubset(data.columns):
        return []

    candles: list[Candle] = []
    last_ts = 0
    for ts, row in data.sort_index().iterrows():
        timestamp = to_milliseconds(ts)
        if timestamp is None or timestamp <= last_ts:
            continue
        try:
            candle = validate_candle(
                Candle(
                    symbol=symbol,
                    timestamp=timestamp,
                    open=float(row["open"]),
                    high=float(row["high"]),
                    low=float(row["low"]),
                    close=float(row["close"]),
                    volume=float(row.get("volume", 0.0)),
                )
            )
        except (TypeError, ValueError):
            continue  # Skip invalid rows
        candles.append(candle)
        last_ts = timestamp
    return candles


def price_tick(symbol: str) -> float:
    return PRICE_TICKS.get(symbol.upper(), DEFAULT_PRICE_TICK)


def round_to_tick(symbol: str, price: float) -> float:
    tick = price_tick(symbol)
    return round(round(price / tick) * tick, 10)
