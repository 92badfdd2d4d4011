from unittest.mock import MagicMock

import pytest
import requests

from trendbot.errors import ExchangeError
from trendbot.exchange import ExchangeClient


@pytest.fixture
def client():
    return ExchangeClient(base_url="https://venue.test", api_key="key", secret="secret", session=MagicMock())


def test_missing_credentials(monkeypatch):
    for name in ("EXCHANGE_BASE_URL", "EXCHANGE_API_KEY", "EXCHANGE_SECRET_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("trendbot.exchange.load_dotenv", lambda: None)
    with pytest.raises(ValueError):
        ExchangeClient()


@pytest.mark.parametrize(
    "response, status",
    [
        ({"Success": True, "OrderDetail": {"OrderID": 42}}, "ACCEPTED"),
        ({"Success": False, "ErrMsg": "duplicate order"}, "DUPLICATE"),
        ({"Success": False, "ErrMsg": "Insufficient balance"}, "INSUFFICIENT_BALANCE"),
        ({"Success": False, "ErrMsg": "market closed"}, "REJECTED"),
        (None, "ERROR"),
    ],
)
def test_order_ack_mapping(client, monkeypatch, response, status):
    monkeypatch.setattr(client, "_request", lambda *args, **kwargs: response)
    ack = client.place_entry_order("BTCUSD", "BUY", 1.0)
    assert ack.status == status
    if status == "ACCEPTED":
        assert ack.order_id == "42"


def test_exit_order_is_reduce_only(client, monkeypatch):
    calls = []

    def fake_request(method, path, **kwargs):
        calls.append((method, path, kwargs))
        return {"Success": True, "OrderDetail": {"OrderID": 7}}

    monkeypatch.setattr(client, "_request", fake_request)
    client.place_exit_order("ETHUSD", "SELL", 0.5)

    method, path, kwargs = calls[0]
    assert (method, path) == ("POST", "/v3/place_order")
    assert kwargs["data"]["reduce_only"] == "true"
    assert kwargs["data"]["side"] == "SELL"
    assert kwargs["data"]["type"] == "MARKET"
    assert "price" not in kwargs["data"]
    assert kwargs["auth"] is True


def test_open_positions_and_size(client, monkeypatch):
    response = {
        "Success": True,
        "Positions": {"BTCUSD": {"Size": "-2"}, "ETHUSD": {"Size": 0}, "SOLUSD": {"Size": "oops"}},
    }
    monkeypatch.setattr(client, "_request", lambda *args, **kwargs: response)

    assert client.get_open_positions() == {"BTCUSD": -2.0}
    assert client.get_open_position_size("BTCUSD") == 2.0
    assert client.get_open_position_size("ETHUSD") is None


def test_position_query_failure_raises(client, monkeypatch):
    monkeypatch.setattr(client, "_request", lambda *args, **kwargs: None)
    with pytest.raises(ExchangeError):
        client.get_open_position_size("BTCUSD")


def test_request_retries_on_connection_error(client, monkeypatch):
    monkeypatch.setattr("trendbot.exchange.time.sleep", lambda seconds: None)
    ok = MagicMock()
    ok.json.return_value = {"Success": True}
    client.session.request.side_effect = [requests.exceptions.ConnectionError("reset"), ok]

    assert client._request("GET", "/v3/positions", params={"timestamp": 1}, auth=True) == {"Success": True}
    assert client.session.request.call_count == 2
    headers = client.session.request.call_args.kwargs["headers"]
    assert headers["API-KEY"] == "key"
    assert len(headers["MSG-SIGNATURE"]) == 64


def test_request_gives_up_after_retries(client, monkeypatch):
    monkeypatch.setattr("trendbot.exchange.time.sleep", lambda seconds: None)
    client.session.request.side_effect = requests.exceptions.Timeout("slow")

    assert client._request("GET", "/v3/positions") is None
    assert client.session.request.call_count == 3
