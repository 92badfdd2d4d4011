from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from .config import LEVERAGE, MAX_WORKERS, STATUS_UPDATE_EVERY
from .errors import ExitOrderError, PositionNotFoundError
from .logger import get_logger
from .models import STOP_LOSS, TAKE_PROFIT, Position
from .notifier import format_open_positions

logger = get_logger(__name__)


def exit_reason_for(position: Position, price: float) -> Optional[str]:
    """Return 'stop-loss', 'take-profit' or None. Stop-loss wins when both are hit."""
    if position.is_stop_loss_hit(price):
        return STOP_LOSS
    if position.is_take_profit_hit(price):
        return TAKE_PROFIT
    return None


class PositionMonitor:
    """
    Checks every OPEN position against the current mark price and closes it on
    stop-loss or take-profit. Symbols are checked independently: a failed
    price fetch or exit order for one symbol is logged and retried next cycle.
    """

    def __init__(
        self,
        manager: Any,
        feed: Any,
        notifier: Any = None,
        *,
        max_workers: int = MAX_WORKERS,
        status_every: int = STATUS_UPDATE_EVERY,
        leverage: float = LEVERAGE,
    ) -> None:
        self.manager = manager
        self.feed = feed
        self.notifier = notifier
        self.max_workers = max_workers
        self.status_every = status_every
        self.leverage = leverage
        self.cycles = 0

    def run_cycle(self) -> List[Position]:
        self.cycles += 1
        positions = self.manager.open_positions()
        if not positions:
            logger.info("No open positions to monitor")
            return []

        by_symbol: Dict[str, List[Position]] = {}
        for position in positions:
            by_symbol.setdefault(position.symbol, []).append(position)
        logger.info(f"SL/TP monitoring cycle #{self.cycles}: {len(positions)} open positions")

        closed: List[Position] = []
        prices: Dict[str, float] = {}
        with ThreadPoolExecutor(min(self.max_workers, len(by_symbol))) as executor:
            futures = {
                symbol: executor.submit(self.check_symbol, symbol, symbol_positions)
                for symbol, symbol_positions in by_symbol.items()
            }
            for symbol, future in futures.items():
                try:
                    price, symbol_closed = future.result()
                except Exception as e:
                    logger.error(f"Error monitoring {symbol}: {e}")
                    continue
                if price is not None:
                    prices[symbol] = price
                closed.extend(symbol_closed)

        if self.notifier is not None and self.status_every and self.cycles % self.status_every == 0:
            still_open = [p for p in positions if p.id not in {c.id for c in closed}]
            if still_open:
                self.notifier.send(
                    format_open_positions("🛡️ *SL/TP Monitoring Status*", still_open, prices, self.leverage)
                )
        return closed

    def check_symbol(self, symbol: str, positions: List[Position]) -> tuple[Optional[float], List[Position]]:
        price = self.feed.get_mark_price(symbol)
        if price is None or price <= 0:
            logger.warning(f"Could not fetch price for {symbol}, retrying next cycle")
            return None, []

        closed: List[Position] = []
        for position in positions:
            reason = exit_reason_for(position, price)
            if reason is None:
                logger.info(
                    f"#{position.id} {symbol} {position.side} price={price:.2f} "
                    f"SL={position.stop_loss:.2f} TP={position.take_profit:.2f} "
                    f"PnL={position.unrealised_pnl(price, self.leverage):.2f}"
                )
                continue
            logger.info(f"#{position.id} {symbol} {reason} hit at {price:.2f}")
            try:
                closed.append(self.manager.close(position.id, price, reason))
            except (ExitOrderError, PositionNotFoundError) as exc:
                logger.error(f"Could not close #{position.id} {symbol}: {exc}")
        return price, closed
