from unittest.mock import MagicMock

import requests

from conftest import BASE_TS
from trendbot.models import Position, Signal
from trendbot.notifier import TelegramNotifier, format_closed, format_opened, format_signal


def test_disabled_notifier_only_logs():
    session = MagicMock()
    notifier = TelegramNotifier(token=None, chat_id=None, session=session)

    assert not notifier.enabled
    assert notifier.send("hello") is None
    session.post.assert_not_called()
    notifier.close()


def test_delivery_posts_markdown_message():
    session = MagicMock()
    notifier = TelegramNotifier(token="abc", chat_id="123", session=session)

    future = notifier.send("hello")
    assert future.result(timeout=5) is True
    notifier.close()

    url = session.post.call_args.args[0]
    data = session.post.call_args.kwargs["data"]
    assert url == "https://api.telegram.org/botabc/sendMessage"
    assert data == {"chat_id": "123", "text": "hello", "parse_mode": "Markdown"}


def test_delivery_failure_is_swallowed():
    session = MagicMock()
    session.post.side_effect = requests.exceptions.ConnectionError("down")
    notifier = TelegramNotifier(token="abc", chat_id="123", session=session)

    assert notifier._deliver("hello") is False
    notifier.close()


def test_send_after_close_is_dropped():
    notifier = TelegramNotifier(token="abc", chat_id="123", session=MagicMock())
    notifier.close()
    assert notifier.send("late") is None


def test_message_formats():
    signal = Signal("BTCUSD", "SELL", 100.0, 100.2, 99.4, "breakdown", BASE_TS)
    assert "🔴 *SELL SIGNAL*" in format_signal(signal)
    assert "$100.20" in format_signal(signal)

    position = Position("BTCUSD", "BUY", 100.0, 99.0, 103.0, 1.0, BASE_TS, id=3)
    assert "POSITION OPENED #3" in format_opened(position)

    closed = position.closed(103.0, "take-profit", BASE_TS + 1)
    text = format_closed(closed)
    assert "EXIT NOTIFICATION #3" in text
    assert "take-profit" in text
    assert "$3.00" in text
