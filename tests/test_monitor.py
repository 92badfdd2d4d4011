from unittest.mock import MagicMock

from conftest import BASE_TS, FakeFeed
from trendbot.errors import ExitOrderError
from trendbot.models import Position, Signal
from trendbot.monitor import PositionMonitor, exit_reason_for


def _position(**overrides):
    fields = dict(
        symbol="BTCUSD",
        side="BUY",
        entry_price=110.0,
        stop_loss=100.0,
        take_profit=120.0,
        quantity=1.0,
        entry_time=BASE_TS,
        id=1,
    )
    fields.update(overrides)
    return Position(**fields)


def test_stop_loss_closes_once_on_the_breaching_cycle():
    position = _position()
    manager = MagicMock()
    manager.open_positions.return_value = [position]
    feed = FakeFeed(prices={"BTCUSD": [105.0, 99.0]})
    monitor = PositionMonitor(manager, feed, status_every=0)

    assert monitor.run_cycle() == []
    manager.close.assert_not_called()

    monitor.run_cycle()
    manager.close.assert_called_once_with(1, 99.0, "stop-loss")


def test_exit_reasons():
    buy = _position()
    sell = _position(side="SELL", stop_loss=120.0, take_profit=100.0)

    assert exit_reason_for(buy, 100.0) == "stop-loss"
    assert exit_reason_for(buy, 121.0) == "take-profit"
    assert exit_reason_for(buy, 110.0) is None
    assert exit_reason_for(sell, 125.0) == "stop-loss"
    assert exit_reason_for(sell, 99.0) == "take-profit"


def test_stop_loss_wins_when_both_levels_are_hit():
    both = _position(stop_loss=105.0, take_profit=95.0)
    assert exit_reason_for(both, 100.0) == "stop-loss"


def test_failing_symbol_does_not_block_others(manager, exchange):
    btc = manager.open(Signal("BTCUSD", "BUY", 100.0, 99.0, 103.0, "test", BASE_TS))
    eth = manager.open(Signal("ETHUSD", "BUY", 2000.0, 1990.0, 2030.0, "test", BASE_TS))
    feed = FakeFeed(prices={"ETHUSD": [2031.0]})
    feed.failing.add("BTCUSD")
    monitor = PositionMonitor(manager, feed, status_every=0)

    closed = monitor.run_cycle()

    assert [p.id for p in closed] == [eth.id]
    assert closed[0].exit_reason == "take-profit"
    assert [p.id for p in manager.open_positions()] == [btc.id]


def test_failed_exit_is_retried_next_cycle():
    position = _position()
    manager = MagicMock()
    manager.open_positions.return_value = [position]
    manager.close.side_effect = [ExitOrderError("venue busy"), position.closed(99.0, "stop-loss", BASE_TS)]
    monitor = PositionMonitor(manager, FakeFeed(prices={"BTCUSD": [99.0]}), status_every=0)

    assert monitor.run_cycle() == []
    assert len(monitor.run_cycle()) == 1
    assert manager.close.call_count == 2


def test_missing_price_skips_symbol():
    manager = MagicMock()
    manager.open_positions.return_value = [_position()]
    monitor = PositionMonitor(manager, FakeFeed(), status_every=0)

    assert monitor.run_cycle() == []
    manager.close.assert_not_called()


def test_status_update_every_n_cycles(manager, notifier):
    manager.open(Signal("BTCUSD", "BUY", 100.0, 99.0, 103.0, "test", BASE_TS))
    monitor = PositionMonitor(manager, FakeFeed(prices={"BTCUSD": [101.0]}), notifier, status_every=2)

    monitor.run_cycle()
    assert notifier.messages == []
    monitor.run_cycle()

    assert len(notifier.messages) == 1
    assert "SL/TP Monitoring Status" in notifier.messages[0]
    assert "now $101.00" in notifier.messages[0]


def test_status_pnl_uses_leverage(manager, notifier):
    manager.open(Signal("BTCUSD", "BUY", 100.0, 99.0, 103.0, "test", BASE_TS))
    monitor = PositionMonitor(manager, FakeFeed(prices={"BTCUSD": [101.0]}), notifier, status_every=1, leverage=10)

    monitor.run_cycle()

    assert "P&L $10.00" in notifier.messages[0]
