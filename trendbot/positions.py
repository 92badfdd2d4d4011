"""Position lifecycle: the only writer of position records.

State machine per position: (none) -> OPEN -> CLOSED. CLOSED is terminal.
Every open/close for a symbol runs under that symbol's lock, so the signal
cycle and the monitoring loop can never race on the same record.
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import LEVERAGE, ORDER_QUANTITY
from .datastore import SQLiteDataStore
from .errors import ExchangeError, ExitOrderError, InvalidSignalError, PositionNotFoundError
from .logger import get_logger
from .models import MANUAL, Position, Signal, TradeStatistics, check_side_ordering
from .utils import now_ms, round_to_tick

logger = get_logger(__name__)


@dataclass(frozen=True)
class PositionView:
    """What the local store and the venue each say about one symbol.

    A symbol counts as open if either source reports a position, or if the
    venue could not be asked at all.
    """

    symbol: str
    local: Tuple[Position, ...]
    venue_size: Optional[float]
    venue_error: Optional[str] = None

    @property
    def has_local(self) -> bool:
        return bool(self.local)

    @property
    def has_venue(self) -> bool:
        return bool(self.venue_size)

    @property
    def is_open(self) -> bool:
        return self.has_local or self.has_venue or self.venue_error is not None


class PositionManager:
    def __init__(
        self,
        store: SQLiteDataStore,
        executor: Any,
        notifier: Any = None,
        *,
        quantity: float = ORDER_QUANTITY,
        leverage: float = LEVERAGE,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.executor = executor
        self.notifier = notifier
        self.quantity = float(quantity)
        self.leverage = leverage
        self.clock = clock
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, symbol: str) -> threading.RLock:
        with self._locks_guard:
            return self._locks.setdefault(symbol, threading.RLock())

    def _notify(self, event: str, *args: Any) -> None:
        if self.notifier is None:
            return
        try:
            getattr(self.notifier, event)(*args)
        except Exception as exc:
            logger.error(f"Notification {event} failed: {exc}")

    # Queries ----------------------------------------------------------

    def get(self, position_id: int) -> Position:
        position = self.store.fetch_position(position_id)
        if position is None:
            raise PositionNotFoundError(position_id)
        return position

    def open_positions(self, symbol: Optional[str] = None) -> List[Position]:
        return self.store.fetch_positions(symbol, status="OPEN")

    def position_view(self, symbol: str) -> PositionView:
        local = tuple(self.open_positions(symbol))
        try:
            venue_size = self.executor.get_open_position_size(symbol)
        except ExchangeError as exc:
            logger.warning(f"Venue position check failed for {symbol}: {exc}")
            return PositionView(symbol, local, None, str(exc))
        return PositionView(symbol, local, venue_size)

    def has_open_position(self, symbol: str) -> bool:
        view = self.position_view(symbol)
        logger.info(
            f"Position check for {symbol}: database={'OPEN' if view.has_local else 'NONE'}, "
            f"venue={'UNKNOWN' if view.venue_error else ('OPEN' if view.has_venue else 'NONE')}"
        )
        return view.is_open

    def last_exit_time(self, symbol: str) -> Optional[int]:
        exits = [p.exit_time for p in self.store.fetch_positions(symbol, status="CLOSED") if p.exit_time]
        return max(exits) if exits else None

    def statistics(self, symbol: Optional[str] = None) -> TradeStatistics:
        stats = TradeStatistics()
        for position in self.store.fetch_positions(symbol):
            stats.total_trades += 1
            if position.is_open:
                stats.open_trades += 1
                continue
            stats.closed_trades += 1
            pnl = position.pnl or 0.0
            stats.total_pnl += pnl
            if pnl > 0:
                stats.winning_trades += 1
            elif pnl < 0:
                stats.losing_trades += 1
        return stats

    # Transitions ------------------------------------------------------

    def _rounded_levels(self, signal: Signal) -> Tuple[float, float]:
        stop_loss = round_to_tick(signal.symbol, signal.stop_loss)
        take_profit = round_to_tick(signal.symbol, signal.take_profit)
        try:
            check_side_ordering(signal.side, signal.entry_price, stop_loss, take_profit)
        except InvalidSignalError:
            return signal.stop_loss, signal.take_profit
        return stop_loss, take_profit

    def open(self, signal: Signal, quantity: Optional[float] = None) -> Optional[Position]:
        """
        Open a position for ``signal``.

        Returns:
            The persisted OPEN position, or None when the signal is rejected:
            invalid levels, a position already open (locally or at the venue),
            or an entry order the venue did not accept. Rejected signals are
            dropped, not retried.
        """
        try:
            signal.validate()
        except InvalidSignalError as exc:
            logger.warning(f"Rejecting invalid {signal.symbol} signal: {exc}")
            return None

        symbol = signal.symbol
        qty = float(quantity or self.quantity)
        with self._lock_for(symbol):
            if self.has_open_position(symbol):
                logger.warning(f"DUPLICATE PREVENTION: blocking new {signal.side} order for {symbol}")
                return None

            try:
                ack = self.executor.place_entry_order(symbol, signal.side, qty)
            except ExchangeError as exc:
                logger.error(f"Entry order for {symbol} failed: {exc}")
                self._notify("error", f"Entry order for {symbol} failed: {exc}")
                return None

            if ack.duplicate:
                logger.warning(f"Venue reports duplicate entry order for {symbol}, reading actual size")
                try:
                    venue_size = self.executor.get_open_position_size(symbol)
                except ExchangeError as exc:
                    logger.warning(f"Cannot read venue size for {symbol}: {exc}")
                    venue_size = None
                if venue_size:
                    qty = float(venue_size)
            elif not ack.accepted:
                logger.warning(f"Entry order for {symbol} not accepted: {ack.status} {ack.message}. Signal dropped.")
                self._notify("error", f"{symbol} {signal.side} entry {ack.status}: {ack.message}")
                return None

            stop_loss, take_profit = self._rounded_levels(signal)
            position = Position(
                symbol=symbol,
                side=signal.side,
                entry_price=signal.entry_price,
                stop_loss=stop_loss,
                take_profit=take_profit,
                quantity=qty,
                entry_time=self.clock(),
                reason=signal.reason,
                order_id=ack.order_id,
            )
            try:
                position = replace(position, id=self.store.insert_position(position))
            except sqlite3.Error as exc:
                logger.error(f"Entry order {ack.order_id} for {symbol} filled but not recorded: {exc}")
                self._notify(
                    "error",
                    f"{symbol} {signal.side} entry order {ack.order_id} filled but not recorded ({exc}). "
                    f"Position is not monitored.",
                )
                return None

        logger.info(f"New position opened: #{position.id} {symbol} {position.side} x{qty} @ {position.entry_price}")
        self._notify("position_opened", position)
        return position

    def _resolve_exit_quantity(self, position: Position) -> float:
        try:
            venue_size = self.executor.get_open_position_size(position.symbol)
        except ExchangeError as exc:
            logger.warning(
                f"Cannot read venue size for {position.symbol} ({exc}), using recorded quantity {position.quantity}"
            )
            return position.quantity
        if not venue_size:
            return 0.0
        if abs(venue_size) != position.quantity:
            logger.warning(
                f"{position.symbol} venue size {venue_size} differs from recorded {position.quantity}, exiting venue size"
            )
        return abs(float(venue_size))

    def _confirm_flat(self, position: Position) -> None:
        """Raise ExitOrderError unless the venue now reports no position for the symbol."""
        try:
            venue_size = self.executor.get_open_position_size(position.symbol)
        except ExchangeError as exc:
            raise ExitOrderError(
                f"Duplicate exit for #{position.id} {position.symbol} unconfirmed, venue unreadable: {exc}"
            ) from exc
        if venue_size:
            raise ExitOrderError(
                f"Duplicate exit for #{position.id} {position.symbol} but venue still holds {venue_size}"
            )

    def close(self, position_id: int, exit_price: float, exit_reason: str = MANUAL) -> Position:
        """
        Close a position at ``exit_price``. Closing a CLOSED position returns it unchanged.

        The exit order is sized from the venue's actual position (local quantity
        only if the venue cannot be read). The record is only written once the
        venue acknowledges the exit.

        Raises:
            PositionNotFoundError: unknown id.
            ExitOrderError: the exit was not acknowledged, or a duplicate ack left the
                venue still holding the position; the position stays OPEN.
        """
        symbol = self.get(position_id).symbol
        with self._lock_for(symbol):
            current = self.get(position_id)
            if not current.is_open:
                return current

            exit_qty = self._resolve_exit_quantity(current)
            if exit_qty:
                try:
                    ack = self.executor.place_exit_order(symbol, current.exit_side, exit_qty)
                except ExchangeError as exc:
                    raise ExitOrderError(f"Exit order for #{position_id} {symbol} failed: {exc}") from exc
                if ack.duplicate:
                    logger.warning(f"Venue reports duplicate exit order for {symbol}, reading actual size")
                    self._confirm_flat(current)
                elif not ack.accepted:
                    raise ExitOrderError(f"Exit order for #{position_id} {symbol} {ack.status}: {ack.message}")
            else:
                logger.warning(f"No venue position for {symbol}, closing #{position_id} locally")

            closed = current.closed(
                exit_price,
                exit_reason,
                self.clock(),
                leverage=self.leverage,
                quantity=exit_qty or None,
            )
            self.store.update_position(closed)

        logger.info(f"Position closed: #{closed.id} {symbol} {exit_reason} @ {exit_price}, PnL {closed.pnl:.2f}")
        self._notify("position_closed", closed)
        return closed

    def mark_closed(self, position_id: int, exit_price: float, exit_reason: str) -> Position:
        """Record a position as CLOSED without sending an exit order (the venue is already flat)."""
        symbol = self.get(position_id).symbol
        with self._lock_for(symbol):
            current = self.get(position_id)
            if not current.is_open:
                return current
            closed = current.closed(exit_price, exit_reason, self.clock(), leverage=self.leverage)
            self.store.update_position(closed)
        logger.info(f"Position #{closed.id} {symbol} marked {exit_reason} @ {exit_price}")
        return closed

    def close_all(self, reason: str, price_source: Any) -> List[Position]:
        """Emergency close of every OPEN position at its current mark price."""
        closed: List[Position] = []
        for position in self.open_positions():
            price = price_source.get_mark_price(position.symbol)
            if price is None:
                logger.error(f"No price for {position.symbol}, position #{position.id} left open")
                continue
            try:
                closed.append(self.close(position.id, price, reason))
            except ExitOrderError as exc:
                logger.error(f"Emergency close failed: {exc}")
        return closed
