"""Project data models for candles, swing points, trendlines, signals and positions."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal, Optional

from .errors import InvalidSignalError

Side = Literal["BUY", "SELL"]
Status = Literal["OPEN", "CLOSED"]
Trend = Literal["BULLISH", "BEARISH", "NEUTRAL"]

BULLISH: Trend = "BULLISH"
BEARISH: Trend = "BEARISH"
NEUTRAL: Trend = "NEUTRAL"

STOP_LOSS = "stop-loss"
TAKE_PROFIT = "take-profit"
MANUAL = "manual"
RECONCILED = "reconciled"


@dataclass(frozen=True)
class Candle:
    """One OHLCV candle. ``timestamp`` is the candle open time in epoch milliseconds."""

    symbol: str
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass
class TrendState:
    """Running EMA for one symbol. ``ema_value`` stays None until the warm-up completes."""

    ema_value: Optional[float] = None
    seen_count: int = 0
    seed_sum: float = 0.0


@dataclass(frozen=True)
class SwingPoint:
    """A confirmed local extremum.

    Attributes:
        symbol: instrument the point belongs to
        kind: 'HIGH' | 'LOW'
        price: candle high for a swing high, candle low for a swing low
        timestamp: open time of the anchor candle in epoch milliseconds
        position: index of the anchor candle in the symbol's candle stream
    """

    symbol: str
    kind: Literal["HIGH", "LOW"]
    price: float
    timestamp: int
    position: int


@dataclass(frozen=True)
class Trendline:
    """Straight line through swing points, in (candle position, price) space."""

    symbol: str
    role: Literal["SUPPORT", "RESISTANCE"]
    slope: float
    intercept: float
    anchors: tuple[SwingPoint, ...]
    defined_at: int  # timestamp of the newest anchor
    defined_at_position: int

    def value_at(self, position: int) -> float:
        return self.slope * position + self.intercept

    def age(self, position: int) -> int:
        return position - self.defined_at_position

    def is_stale(self, position: int, max_age: int) -> bool:
        return self.age(position) > max_age


def check_side_ordering(side: str, entry_price: float, stop_loss: float, take_profit: float) -> None:
    """Raise InvalidSignalError unless the levels bracket the entry for ``side``."""

    if side == "BUY":
        if not stop_loss < entry_price < take_profit:
            raise InvalidSignalError(
                f"BUY requires stop_loss < entry < take_profit, got {stop_loss} / {entry_price} / {take_profit}"
            )
    elif side == "SELL":
        if not stop_loss > entry_price > take_profit:
            raise InvalidSignalError(
                f"SELL requires stop_loss > entry > take_profit, got {stop_loss} / {entry_price} / {take_profit}"
            )
    else:
        raise InvalidSignalError(f"Unknown side {side!r}")


@dataclass(frozen=True)
class Signal:
    symbol: str
    side: Side
    entry_price: float
    stop_loss: float
    take_profit: float
    reason: str
    generated_at: int

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        check_side_ordering(self.side, self.entry_price, self.stop_loss, self.take_profit)


@dataclass(frozen=True)
class Position:
    """A position record. Only ``closed`` produces a CLOSED copy; records are never edited in place."""

    symbol: str
    side: Side
    entry_price: float
    stop_loss: float
    take_profit: float
    quantity: float
    entry_time: int
    status: Status = "OPEN"
    id: Optional[int] = None
    reason: str = ""
    order_id: Optional[str] = None
    exit_time: Optional[int] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[str] = None
    pnl: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.status == "OPEN"

    @property
    def exit_side(self) -> Side:
        return "SELL" if self.side == "BUY" else "BUY"

    def unrealised_pnl(self, price: float, leverage: float = 1) -> float:
        return compute_pnl(self.side, self.entry_price, price, self.quantity, leverage)

    def is_stop_loss_hit(self, price: float) -> bool:
        if self.side == "BUY":
            return price <= self.stop_loss
        return price >= self.stop_loss

    def is_take_profit_hit(self, price: float) -> bool:
        if self.side == "BUY":
            return price >= self.take_profit
        return price <= self.take_profit

    def closed(
        self,
        exit_price: float,
        exit_reason: str,
        exit_time: int,
        *,
        leverage: float = 1,
        quantity: Optional[float] = None,
    ) -> "Position":
        qty = self.quantity if quantity is None else quantity
        return replace(
            self,
            status="CLOSED",
            quantity=qty,
            exit_price=exit_price,
            exit_reason=exit_reason,
            exit_time=exit_time,
            pnl=compute_pnl(self.side, self.entry_price, exit_price, qty, leverage),
        )


def compute_pnl(side: str, entry_price: float, exit_price: float, quantity: float, leverage: float = 1) -> float:
    pnl = (exit_price - entry_price) * quantity * leverage
    return pnl if side == "BUY" else -pnl


@dataclass(frozen=True)
class OrderAck:
    """Answer of the execution collaborator to an order request."""

    status: Literal["ACCEPTED", "DUPLICATE", "REJECTED", "INSUFFICIENT_BALANCE", "ERROR"]
    order_id: Optional[str] = None
    message: str = ""

    @property
    def accepted(self) -> bool:
        return self.status == "ACCEPTED"

    @property
    def duplicate(self) -> bool:
        return self.status == "DUPLICATE"


@dataclass
class TradeStatistics:
    total_trades: int = 0
    open_trades: int = 0
    closed_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_pnl: float = 0.0

    @property
    def win_rate(self) -> float:
        if not self.closed_trades:
            return 0.0
        return self.winning_trades / self.closed_trades * 100.0
