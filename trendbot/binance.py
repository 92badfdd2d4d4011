from __future__ import annotations

from typing import Optional, Dict, Any, List

import pandas as pd
import requests

from .config import REQUEST_TIMEOUT_S
from .logger import get_logger
from .models import Candle
from .utils import frame_to_candles

logger = get_logger(__name__)


class BinanceClient:
    """Candle feed backed by the Binance public market-data API."""

    # API Endpoints
    BASE_URL = "https://api.binance.us"
    KLINES_PATH = "/api/v3/klines"
    PRICE_PATH = "/api/v3/ticker/price"

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        quote_asset: str = "USDT",
    ) -> None:
        self.base_url = base_url or self.BASE_URL
        self.session = session or requests.Session()
        self.quote_asset = quote_asset

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None
    ) -> Optional[Any]:
        """Make HTTP request to Binance API."""
        url = f"{self.base_url}{path}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                timeout=REQUEST_TIMEOUT_S,
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as exc:
            logger.error(f"Error calling {path}: {exc}")
            return None

    def market_symbol(self, symbol: str) -> str:
        """Map a venue symbol such as 'BTCUSD' onto the Binance pair 'BTCUSDT'."""
        base = symbol.upper()
        if base.endswith("USD"):
            base = base[:-3]
        return f"{base}{self.quote_asset}"

    def get_historical_klines(
        self,
        symbol: str,
        interval: str,
        start_time: Optional[int],
        end_time: Optional[int],
        limit: int = 1000
    ) -> pd.DataFrame:
        """
        Fetch historical klines/candlestick data.

        Args:
            symbol: Trading pair (e.g., 'BTCUSD')
            interval: Kline interval ('1m','3m','5m','15m','30m','1h','2h','4h','6h','8h','12h','1d','3d','1w','1M')
            start_time: Start time as epoch milliseconds (optional)
            end_time: End time as epoch milliseconds (optional)
            limit: Number of klines to fetch (max 1000)

        Returns:
            DataFrame indexed by epoch-millisecond open time with columns open, high, low, close, volume.
        """
        params: Dict[str, Any] = {
            "symbol": self.market_symbol(symbol),
            "interval": interval,
            "limit": limit
        }
        if start_time is not None:
            params["startTime"] = int(start_time)
        if end_time is not None:
            params["endTime"] = int(end_time)

        result = self._request("GET", self.KLINES_PATH, params=params)

        if not result:
            return pd.DataFrame()

        df = pd.DataFrame(result, columns=[
            'timestamp', 'open', 'high', 'low', 'close', 'volume',
            'close_time', 'quote_volume', 'trades', 'taker_buy_base',
            'taker_buy_quote', 'ignore'
        ])

        # Convert types
        df['timestamp'] = (
            pd.to_numeric(df['timestamp'], errors='coerce')
            .fillna(0)
            .astype('int64')
        )
        for col in ['open', 'high', 'low', 'close', 'volume']:
            df[col] = pd.to_numeric(df[col], errors='coerce')

        return df.set_index('timestamp')[['open', 'high', 'low', 'close', 'volume']]

    def get_candles(self, symbol: str, resolution: str, start_time: int, end_time: int) -> List[Candle]:
        """Return validated candles in ascending timestamp order; malformed rows are dropped."""
        frames = []
        cursor = int(start_time)
        while cursor <= end_time:
            df = self.get_historical_klines(symbol, resolution, cursor, end_time)
            if df.empty:
                break
            frames.append(df)
            last = int(df.index.max())
            if len(df) < 1000 or last < cursor:
                break
            cursor = last + 1

        if not frames:
            return []
        data = pd.concat(frames)
        data = data[~data.index.duplicated(keep="last")]
        return frame_to_candles(symbol, data)

    def get_mark_price(self, symbol: str) -> Optional[float]:
        result = self._request("GET", self.PRICE_PATH, params={"symbol": self.market_symbol(symbol)})
        if not result or "price" not in result:
            return None
        try:
            price = float(result["price"])
        except (TypeError, ValueError):
            return None
        return price if price > 0 else None
