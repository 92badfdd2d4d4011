"""Start-up reconciliation of stored positions against the venue."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ExchangeError
from .logger import get_logger
from .models import RECONCILED, Position

logger = get_logger(__name__)


class ReconciliationPolicy(str, Enum):
    """What to do with a local OPEN record the venue does not know about.

    TRUST_VENUE closes the local record (no exit order, the venue is already flat).
    TRUST_LOCAL keeps it OPEN; the monitoring loop keeps watching it.
    """

    TRUST_VENUE = "trust_venue"
    TRUST_LOCAL = "trust_local"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ReconciliationPolicy":
        if not value:
            raise ValueError("RECONCILIATION_POLICY must be set to 'trust_venue' or 'trust_local'")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown reconciliation policy {value!r}") from None


@dataclass
class ReconciliationSummary:
    policy: ReconciliationPolicy
    confirmed: List[Position] = field(default_factory=list)
    closed: List[Position] = field(default_factory=list)
    kept: List[Position] = field(default_factory=list)
    untracked: Dict[str, float] = field(default_factory=dict)
    venue_error: Optional[str] = None

    def to_message(self) -> str:
        lines = ["🔄 *Startup Position Recovery*", f"⚙️ *Policy:* {self.policy.value}"]
        if self.venue_error:
            lines.append(f"⚠️ Venue positions unavailable ({self.venue_error}); local records kept as-is")
        lines.append(f"✅ *Confirmed open:* {len(self.confirmed)}")
        for p in self.confirmed:
            lines.append(f"• #{p.id} {p.symbol} {p.side} @ ${p.entry_price:.2f} (SL ${p.stop_loss:.2f} / TP ${p.take_profit:.2f})")
        if self.closed:
            lines.append(f"🧹 *Closed (missing at venue):* {len(self.closed)}")
            lines.extend(f"• #{p.id} {p.symbol} {p.side}" for p in self.closed)
        if self.kept:
            lines.append(f"📌 *Kept open (missing at venue):* {len(self.kept)}")
            lines.extend(f"• #{p.id} {p.symbol} {p.side}" for p in self.kept)
        if self.untracked:
            lines.append(f"❓ *Venue positions without a local record:* {len(self.untracked)}")
            lines.extend(f"• {symbol} size {size:g}" for symbol, size in self.untracked.items())
        lines.append("🛡️ All recorded open positions are monitored for SL/TP")
        return "\n".join(lines)


class StartupRecovery:
    def __init__(self, manager: Any, executor: Any, policy: ReconciliationPolicy,
                 feed: Any = None, notifier: Any = None) -> None:
        self.manager = manager
        self.executor = executor
        self.policy = ReconciliationPolicy(policy)
        self.feed = feed
        self.notifier = notifier

    def _exit_price(self, position: Position) -> float:
        if self.feed is not None:
            price = self.feed.get_mark_price(position.symbol)
            if price:
                return float(price)
        return position.entry_price

    def run(self) -> ReconciliationSummary:
        summary = ReconciliationSummary(policy=self.policy)
        local_open = self.manager.open_positions()
        logger.info(f"Recovering {len(local_open)} open positions from the database")

        try:
            venue = self.executor.get_open_positions()
        except ExchangeError as exc:
            logger.error(f"Cannot read venue positions during recovery: {exc}")
            summary.venue_error = str(exc)
            summary.kept.extend(local_open)
            self._publish(summary)
            return summary

        local_symbols = set()
        for position in local_open:
            local_symbols.add(position.symbol)
            if venue.get(position.symbol):
                summary.confirmed.append(position)
                continue

            if self.policy is ReconciliationPolicy.TRUST_VENUE:
                closed = self.manager.mark_closed(position.id, self._exit_price(position), RECONCILED)
                logger.warning(f"#{position.id} {position.symbol} missing at venue, closed locally")
                summary.closed.append(closed)
            else:
                logger.warning(f"#{position.id} {position.symbol} missing at venue, kept open")
                summary.kept.append(position)

        for symbol, size in venue.items():
            if symbol not in local_symbols:
                logger.warning(f"Venue position {symbol} size {size} has no local record")
                summary.untracked[symbol] = size

        self._publish(summary)
        return summary

    def _publish(self, summary: ReconciliationSummary) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send(summary.to_message())
        except Exception as exc:
            logger.error(f"Recovery notification failed: {exc}")
