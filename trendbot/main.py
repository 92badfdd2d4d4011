from concurrent.futures import ThreadPoolExecutor
import signal
import threading
from typing import Any, Callable, List, Optional

from trendbot.binance import BinanceClient
from trendbot.config import (
    DB_PATH,
    MAX_WORKERS,
    MONITOR_FREQUENCY_MS,
    RECONCILIATION_POLICY,
    TRADING_FREQUENCY_MS,
    TRADING_SYMBOLS,
)
from trendbot.datastore import SQLiteDataStore
from trendbot.exchange import ExchangeClient
from trendbot.find_signal import SignalGenerator, find_signal
from trendbot.logger import get_logger
from trendbot.monitor import PositionMonitor
from trendbot.notifier import TelegramNotifier, format_open_positions
from trendbot.positions import PositionManager
from trendbot.recovery import ReconciliationPolicy, StartupRecovery
from trendbot.utils import now_ms

logger = get_logger(__name__)


class TradingBot:
    """
    Runs start-up recovery once, then two periodic loops on their own threads:
    signal detection every ``signal_interval_ms`` and SL/TP monitoring every
    ``monitor_interval_ms``. ``stop`` stops scheduling, lets in-flight cycles
    finish and reports what is still open.
    """

    def __init__(
        self,
        symbols: List[str],
        feed: Any,
        executor: Any,
        store: SQLiteDataStore,
        notifier: Any,
        policy: ReconciliationPolicy,
        *,
        generator: Optional[SignalGenerator] = None,
        signal_interval_ms: int = TRADING_FREQUENCY_MS,
        monitor_interval_ms: int = MONITOR_FREQUENCY_MS,
        max_workers: int = MAX_WORKERS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.symbols = list(symbols)
        self.feed = feed
        self.notifier = notifier
        self.manager = PositionManager(store, executor, notifier)
        self.generator = generator or SignalGenerator(self.manager)
        self.generator.position_book = self.manager
        self.monitor = PositionMonitor(self.manager, feed, notifier, max_workers=max_workers)
        self.recovery = StartupRecovery(self.manager, executor, policy, feed=feed, notifier=notifier)
        self.signal_interval_ms = signal_interval_ms
        self.monitor_interval_ms = monitor_interval_ms
        self.max_workers = max_workers
        self.clock = clock
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def run_find_signal(self, symbol: str, execute_time: int) -> None:
        """
        Worker function to run find_signal for a single symbol in a thread.
        """
        try:
            logger.info(f"Starting signal analysis for {symbol}...")
            find_signal(symbol, execute_time, self.generator, self.feed, self.manager, self.notifier)
            logger.info(f"Completed signal analysis for {symbol}.")
        except Exception as e:
            logger.error(f"Error processing {symbol}: {e}")

    def run_signal_cycle(self) -> None:
        execute_time = self.clock()
        logger.info(f"--- Starting new signal cycle at {execute_time} for {self.symbols} ---")
        with ThreadPoolExecutor(min(self.max_workers, max(len(self.symbols), 1))) as executor:
            futures = [executor.submit(self.run_find_signal, symbol, execute_time) for symbol in self.symbols]
            for future in futures:
                try:
                    future.result()
                except Exception as e:
                    logger.error(f"Error in thread: {e}")
        logger.info("--- Signal cycle finished ---")

    def run_monitor_cycle(self) -> None:
        try:
            self.monitor.run_cycle()
        except Exception as e:
            logger.error(f"An error occurred in the monitoring loop: {e}")

    def _loop(self, interval_ms: int, cycle: Callable[[], None]) -> None:
        while not self._stop.is_set():
            cycle()
            self._stop.wait(interval_ms / 1000)

    def start(self) -> None:
        summary = self.recovery.run()
        logger.info(
            f"Recovery done: {len(summary.confirmed)} confirmed, {len(summary.closed)} closed, "
            f"{len(summary.kept)} kept, {len(summary.untracked)} untracked"
        )
        self.notifier.send(
            f"🚀 *Trading bot started*\n\n📊 *Symbols:* {', '.join(self.symbols)}\n"
            f"⏱️ Signals every {self.signal_interval_ms // 1000}s, SL/TP checks every {self.monitor_interval_ms // 1000}s"
        )
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._loop, args=(self.monitor_interval_ms, self.run_monitor_cycle),
                             name="sltp-monitor", daemon=True),
            threading.Thread(target=self._loop, args=(self.signal_interval_ms, self.run_signal_cycle),
                             name="signal-cycle", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._stop.is_set():
            return
        logger.info("Stopping: no new cycles will be scheduled")
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        open_positions = self.manager.open_positions()
        stats = self.manager.statistics()
        self.notifier.send(
            format_open_positions("🛑 *Trading bot stopped, monitoring halted*", open_positions)
            + f"\n📈 Closed trades: {stats.closed_trades}, win rate {stats.win_rate:.1f}%, P&L ${stats.total_pnl:.2f}"
        )

    def wait(self) -> None:
        while not self._stop.wait(1):
            pass


def main_loop():
    """
    Main entry point to run the trading bot until SIGINT/SIGTERM.
    """
    policy = ReconciliationPolicy.parse(RECONCILIATION_POLICY)
    store = SQLiteDataStore(DB_PATH)
    store.initialize()
    notifier = TelegramNotifier()
    bot = TradingBot(TRADING_SYMBOLS, BinanceClient(), ExchangeClient(), store, notifier, policy)

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        bot.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    bot.start()
    bot.wait()
    notifier.close()


if __name__ == "__main__":
    main_loop()
