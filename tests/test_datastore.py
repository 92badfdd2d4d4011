import sqlite3

import pytest

from conftest import BASE_TS
from trendbot.models import Position


def _position(symbol, side="BUY"):
    if side == "BUY":
        return Position(symbol, side, 100.0, 99.0, 103.0, 1.0, BASE_TS, reason="test")
    return Position(symbol, side, 100.0, 101.0, 97.0, 1.0, BASE_TS, reason="test")


def test_insert_and_fetch(store):
    position_id = store.insert_position(_position("BTCUSD"))
    stored = store.fetch_position(position_id)

    assert stored.id == position_id
    assert stored.symbol == "BTCUSD"
    assert stored.reason == "test"
    assert stored.is_open
    assert store.fetch_position(position_id + 1) is None


def test_filter_by_symbol_and_status(store):
    btc = store.insert_position(_position("BTCUSD"))
    store.insert_position(_position("ETHUSD", "SELL"))
    closed = store.fetch_position(btc).closed(101.0, "manual", BASE_TS + 1)
    assert store.update_position(closed)
    store.insert_position(_position("BTCUSD"))

    assert len(store.fetch_positions()) == 3
    assert [p.symbol for p in store.fetch_positions(status="OPEN")] == ["ETHUSD", "BTCUSD"]
    assert [p.status for p in store.fetch_positions("BTCUSD")] == ["CLOSED", "OPEN"]
    [closed_btc] = store.fetch_positions("BTCUSD", status="CLOSED")
    assert closed_btc.pnl == pytest.approx(1.0)
    assert closed_btc.exit_time == BASE_TS + 1


def test_insert_rejects_persisted_position(store):
    position_id = store.insert_position(_position("BTCUSD"))
    with pytest.raises(ValueError):
        store.insert_position(store.fetch_position(position_id))


def test_update_unknown_id(store):
    from dataclasses import replace

    assert not store.update_position(replace(_position("BTCUSD"), id=77))


def test_invalid_status_rejected_by_schema(store):
    from dataclasses import replace

    with pytest.raises(sqlite3.IntegrityError):
        store.insert_position(replace(_position("BTCUSD"), status="PENDING"))


def test_insert_log(store):
    store.insert_log(BASE_TS, "INFO", "trendbot.test", "hello")
    with sqlite3.connect(store.db_path) as conn:
        rows = conn.execute("SELECT level, module, message FROM logs").fetchall()
    assert rows == [("INFO", "trendbot.test", "hello")]
