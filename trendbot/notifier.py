"""Human-readable event delivery to a Telegram chat.

Messages are handed to a single background worker so a slow or failing
delivery never blocks the trading loops.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Iterable, Optional

import requests

from .config import REQUEST_TIMEOUT_S, TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID
from .logger import get_logger
from .models import Position, Signal

logger = get_logger(__name__)


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _fmt_ms(timestamp_ms: Optional[int]) -> str:
    if not timestamp_ms:
        return "-"
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def format_signal(signal: Signal) -> str:
    icon = "🟢" if signal.side == "BUY" else "🔴"
    return (
        f"{icon} *{signal.side} SIGNAL*\n\n"
        f"📊 *Symbol:* {signal.symbol}\n"
        f"💰 *Entry Price:* ${signal.entry_price:.2f}\n"
        f"🛡️ *Stop Loss:* ${signal.stop_loss:.2f}\n"
        f"🎯 *Take Profit:* ${signal.take_profit:.2f}\n"
        f"📝 *Reason:* {signal.reason}\n\n"
        f"⏰ *Candle:* {_fmt_ms(signal.generated_at)}"
    )


def format_opened(position: Position) -> str:
    return (
        f"✅ *POSITION OPENED #{position.id}*\n\n"
        f"📊 *Symbol:* {position.symbol} {position.side} x{position.quantity:g}\n"
        f"💰 *Entry Price:* ${position.entry_price:.2f}\n"
        f"🛡️ *Stop Loss:* ${position.stop_loss:.2f}\n"
        f"🎯 *Take Profit:* ${position.take_profit:.2f}\n\n"
        f"⏰ *Time:* {_fmt_ms(position.entry_time)}"
    )


def format_closed(position: Position) -> str:
    pnl = position.pnl or 0.0
    emoji = "💰" if pnl > 0 else "📉"
    status = "PROFIT" if pnl > 0 else "LOSS"
    return (
        f"{emoji} *EXIT NOTIFICATION #{position.id}*\n\n"
        f"📊 *Symbol:* {position.symbol}\n"
        f"📈 *Side:* {position.side}\n"
        f"💰 *Entry Price:* ${position.entry_price:.2f}\n"
        f"💸 *Exit Price:* ${(position.exit_price or 0.0):.2f}\n"
        f"📝 *Exit Reason:* {position.exit_reason}\n\n"
        f"{emoji} *P&L:* ${pnl:.2f} ({status})\n\n"
        f"⏰ *Time:* {_fmt_ms(position.exit_time)}"
    )


def format_open_positions(
    title: str,
    positions: Iterable[Position],
    prices: Optional[dict] = None,
    leverage: float = 1,
) -> str:
    positions = list(positions)
    lines = [f"{title}\n", f"📊 *Open positions:* {len(positions)}"]
    for p in positions:
        line = f"• #{p.id} {p.symbol} {p.side} @ ${p.entry_price:.2f} (SL ${p.stop_loss:.2f} / TP ${p.take_profit:.2f})"
        price = (prices or {}).get(p.symbol)
        if price is not None:
            line += f" now ${price:.2f}, P&L ${p.unrealised_pnl(price, leverage):.2f}"
        lines.append(line)
    lines.append(f"\n⏰ *Time:* {_now()}")
    return "\n".join(lines)


class TelegramNotifier:
    """Fire-and-forget Telegram Bot API sender.

    Without a token or chat id, messages are only logged.
    """

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(
        self,
        token: Optional[str] = TELEGRAM_BOT_TOKEN,
        chat_id: Optional[str] = TELEGRAM_CHAT_ID,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.token = token
        self.chat_id = chat_id
        self.session = session or requests.Session()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="notifier")

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.chat_id)

    def send(self, text: str) -> Optional[Future]:
        """Queue ``text`` for delivery and return immediately."""
        if not self.enabled:
            logger.info(f"Notification (not delivered, Telegram disabled): {text}")
            return None
        try:
            return self._executor.submit(self._deliver, text)
        except RuntimeError as exc:
            logger.error(f"Notifier is shut down, dropping message: {exc}")
            return None

    def _deliver(self, text: str) -> bool:
        try:
            response = self.session.post(
                self.API_URL.format(token=self.token),
                data={"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"},
                timeout=REQUEST_TIMEOUT_S,
            )
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as exc:
            logger.error(f"Failed to send Telegram notification: {exc}")
            return False

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # Event helpers ----------------------------------------------------

    def signal_found(self, signal: Signal) -> None:
        self.send(format_signal(signal))

    def position_opened(self, position: Position) -> None:
        self.send(format_opened(position))

    def position_closed(self, position: Position) -> None:
        self.send(format_closed(position))

    def error(self, text: str) -> None:
        self.send(f"❌ *Error*\n\n{text}\n\n⏰ *Time:* {_now()}")
