from __future__ import annotations

import hashlib
import hmac
import os
import time
from typing import Any, Dict, Optional

import requests
from dotenv import load_dotenv

from .config import BACK_OFF_FACTOR, REQUEST_TIMEOUT_S, RETRIES
from .errors import ExchangeError
from .logger import get_logger
from .models import OrderAck

logger = get_logger(__name__)


def _classify_failure(message: str) -> str:
    text = (message or "").lower()
    if "duplicate" in text or "already exists" in text:
        return "DUPLICATE"
    if "insufficient" in text or "balance" in text:
        return "INSUFFICIENT_BALANCE"
    return "REJECTED"


class ExchangeClient:
    """Thin signed REST client for the derivatives venue that executes orders."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        secret: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        load_dotenv()

        self.base_url = base_url or os.getenv("EXCHANGE_BASE_URL")
        self.api_key = api_key or os.getenv("EXCHANGE_API_KEY")
        self.secret = secret or os.getenv("EXCHANGE_SECRET_KEY")

        if not all([self.base_url, self.api_key, self.secret]):
            raise ValueError("Missing required environment variables. Please check your .env file.")

        self.session = session or requests.Session()

    def _request(self, method: str, path: str, *, params: Optional[Dict[str, Any]] = None,
                data: Optional[Dict[str, Any]] = None, auth: bool = False) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        payload = params if params is not None else data
        headers = {}

        if auth and payload is not None:
            signature = self._generate_signature(payload)
            headers = {
                "API-KEY": self.api_key,
                "MSG-SIGNATURE": signature,
            }

        retry = 0
        while retry < RETRIES:
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    params=params,
                    data=data,
                    headers=headers if headers else None,
                    timeout=REQUEST_TIMEOUT_S,
                )
                response.raise_for_status()  # Raise exception for HTTP errors (4xx, 5xx)
                return response.json()

            except requests.exceptions.HTTPError as exc:
                # Handle 429 Too Many Requests
                if exc.response is not None and exc.response.status_code == 429:
                    retry += 1
                    retry_after = exc.response.headers.get("Retry-After")
                    wait_time = int(retry_after) if retry_after else BACK_OFF_FACTOR ** retry
                    logger.warning(f"Rate limit exceeded (429). Retrying in {wait_time} seconds... (Attempt {retry}/{RETRIES})")
                    time.sleep(wait_time)
                else:
                    # Venue answered with a client/server error; the body usually says why
                    logger.error(f"HTTPError on {path}: {exc}. No retry.")
                    try:
                        return exc.response.json()
                    except (AttributeError, ValueError):
                        return None

            except requests.exceptions.RequestException as exc:
                # Handle generic request errors with retries
                retry += 1
                wait_time = BACK_OFF_FACTOR ** retry
                logger.warning(f"RequestException on {path}: {exc}. Retrying in {wait_time} seconds... (Attempt {retry}/{RETRIES})")
                time.sleep(wait_time)

        logger.error(f"Max retries reached for {path}.")
        return None

    def _generate_signature(self, params: Dict[str, Any]) -> str:
        query_string = "&".join([f"{k}={params[k]}" for k in sorted(params.keys())])
        secret_bytes = self.secret.encode("utf-8")
        message = query_string.encode("utf-8")
        return hmac.new(secret_bytes, message, hashlib.sha256).hexdigest()

    @staticmethod
    def _timestamp_ms() -> int:
        return int(time.time() * 1000)

    @staticmethod
    def _to_ack(response: Optional[Dict[str, Any]]) -> OrderAck:
        if response is None:
            return OrderAck(status="ERROR", message="no response from venue")
        if response.get("Success"):
            detail = response.get("OrderDetail") or {}
            order_id = detail.get("OrderID")
            return OrderAck(status="ACCEPTED", order_id=None if order_id is None else str(order_id))
        message = str(response.get("ErrMsg", ""))
        return OrderAck(status=_classify_failure(message), message=message)

    # Order endpoints --------------------------------------------------

    def place_order(self, symbol: str, side: str, qty: float, *, reduce_only: bool = False) -> OrderAck:
        """Place a market order and map the venue answer onto an OrderAck."""
        payload: Dict[str, Any] = {
            "timestamp": self._timestamp_ms(),
            "symbol": symbol,
            "side": side,
            "quantity": qty,
            "type": "MARKET",
        }
        if reduce_only:
            payload["reduce_only"] = "true"

        ack = self._to_ack(self._request("POST", "/v3/place_order", data=payload, auth=True))
        logger.info(f"{side} {qty} {symbol} (reduce_only={reduce_only}) -> {ack.status} {ack.message}")
        return ack

    def place_entry_order(self, symbol: str, side: str, quantity: float) -> OrderAck:
        return self.place_order(symbol, side, quantity)

    def place_exit_order(self, symbol: str, side: str, quantity: float) -> OrderAck:
        """Place a reduce-only market order. ``side`` is the order side, opposite to the position."""
        return self.place_order(symbol, side, quantity, reduce_only=True)

    # Position endpoints -----------------------------------------------

    def get_open_positions(self) -> Dict[str, float]:
        """Return ``{symbol: signed size}`` for every non-zero venue position.

        Raises:
            ExchangeError: when the venue cannot be queried.
        """
        params = {"timestamp": self._timestamp_ms()}
        response = self._request("GET", "/v3/positions", params=params, auth=True)
        if not response or not response.get("Success"):
            raise ExchangeError(f"Cannot read venue positions: {response}")

        positions: Dict[str, float] = {}
        for symbol, detail in (response.get("Positions") or {}).items():
            try:
                size = float(detail.get("Size", 0))
            except (TypeError, ValueError, AttributeError):
                continue
            if size:
                positions[symbol] = size
        return positions

    def get_open_position_size(self, symbol: str) -> Optional[float]:
        """Absolute venue size for ``symbol``, or None when flat."""
        size = self.get_open_positions().get(symbol)
        return abs(size) if size else None
