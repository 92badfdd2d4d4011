import os

os.environ["LOG_TO_DATABASE"] = "0"

import pytest

from trendbot.datastore import SQLiteDataStore
from trendbot.errors import ExchangeError
from trendbot.models import Candle, OrderAck
from trendbot.positions import PositionManager

BASE_TS = 1_700_000_000_000
INTERVAL_MS = 5 * 60 * 1000


def make_candle(index, close, symbol="BTCUSD", spread=0.05):
    return Candle(
        symbol=symbol,
        timestamp=BASE_TS + index * INTERVAL_MS,
        open=close,
        high=close + spread,
        low=close - spread,
        close=close,
        volume=1.0,
    )


def breakout_closes():
    """220 closes: slow uptrend, two descending swing highs (190, 200), close above the line at 210."""
    closes = [100 + 0.1 * i for i in range(186)]
    closes += [119.0, 119.5, 120.0, 120.5, 121.0]
    closes += [120.6, 120.2, 119.8, 119.4, 119.0]
    closes += [119.3, 119.6, 119.9, 120.2, 120.5]
    closes += [120.2, 119.9, 119.6, 119.3, 119.0]
    closes += [119.2, 119.4, 119.6, 119.8]
    closes += [120.5]
    closes += [121.0 + 0.5 * k for k in range(9)]
    assert len(closes) == 220
    return closes


class FakeExchange:
    """In-memory execution venue. Accepted entries open a venue position; accepted or duplicate exits flatten it."""

    def __init__(self):
        self.positions = {}
        self.entry_orders = []
        self.exit_orders = []
        self.entry_ack = OrderAck(status="ACCEPTED", order_id="E-1")
        self.exit_ack = OrderAck(status="ACCEPTED", order_id="X-1")
        self.fail_size_query = False

    def place_entry_order(self, symbol, side, quantity):
        self.entry_orders.append((symbol, side, quantity))
        if self.entry_ack.accepted:
            self.positions[symbol] = quantity
        return self.entry_ack

    def place_exit_order(self, symbol, side, quantity):
        self.exit_orders.append((symbol, side, quantity))
        if self.exit_ack.accepted or self.exit_ack.duplicate:
            self.positions.pop(symbol, None)
        return self.exit_ack

    def get_open_position_size(self, symbol):
        if self.fail_size_query:
            raise ExchangeError("venue unreachable")
        size = self.positions.get(symbol)
        return abs(size) if size else None

    def get_open_positions(self):
        if self.fail_size_query:
            raise ExchangeError("venue unreachable")
        return dict(self.positions)


class FakeFeed:
    def __init__(self, prices=None, candles=None):
        self.prices = {symbol: list(seq) for symbol, seq in (prices or {}).items()}
        self.candles = candles or {}
        self.failing = set()

    def get_mark_price(self, symbol):
        if symbol in self.failing:
            raise ConnectionError(f"price feed down for {symbol}")
        seq = self.prices.get(symbol)
        if not seq:
            return None
        return seq.pop(0) if len(seq) > 1 else seq[0]

    def get_candles(self, symbol, resolution, start_time, end_time):
        return [c for c in self.candles.get(symbol, []) if start_time <= c.timestamp <= end_time]


class RecordingNotifier:
    def __init__(self):
        self.messages = []
        self.events = []

    def send(self, text):
        self.messages.append(text)

    def signal_found(self, signal):
        self.events.append(("signal", signal))

    def position_opened(self, position):
        self.events.append(("opened", position))

    def position_closed(self, position):
        self.events.append(("closed", position))

    def error(self, text):
        self.events.append(("error", text))


class Clock:
    def __init__(self, now=BASE_TS):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def store(tmp_path):
    db = SQLiteDataStore(tmp_path / "trading.db")
    db.initialize()
    return db


@pytest.fixture
def exchange():
    return FakeExchange()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def manager(store, exchange, notifier, clock):
    return PositionManager(store, exchange, notifier, quantity=1.0, leverage=1, clock=clock)
