# Configurations for the trendline breakout bot
import os

from dotenv import load_dotenv

load_dotenv()

TRADING_FREQUENCY_MS = 5 * 60 * 1000  # frequency of signal detection cycles in milliseconds
MONITOR_FREQUENCY_MS = 10 * 1000  # frequency of stop-loss/take-profit checks in milliseconds
CANDLE_RESOLUTION = "5m"  # candle interval requested from the feed, must match TRADING_FREQUENCY_MS
TRADING_SYMBOLS = [s.strip() for s in os.getenv("TRADING_SYMBOLS", "BTCUSD,ETHUSD").split(",") if s.strip()]
MAX_WORKERS = 10  # number of symbols processed concurrently in a cycle
RETRIES = 3  # number of retries for API requests
BACK_OFF_FACTOR = 2  # exponential backoff factor for retries in seconds
REQUEST_TIMEOUT_S = 10  # timeout for every HTTP call


# Configuration for the Trend Filter
EMA_PERIOD = 200  # number of candles in the EMA warm-up and smoothing period

# Configuration for Swing Point Detection
SWING_WINDOW = 5  # number of candles compared before and after a swing point

# Configuration for Trendlines
TRENDLINE_POINTS = 3  # most recent swing points used for a line (least squares when more than 2)
TRENDLINE_MAX_AGE = 50  # candles after the newest anchor point before a line is stale

# Configuration for Signals
STOP_LOSS_PERCENTAGE = 0.002  # stop-loss distance from entry
RISK_REWARD_RATIO = 3.0  # take-profit distance as a multiple of the stop-loss distance
PULLBACK_TOLERANCE = 0.001  # maximum distance from a broken line for a pullback entry
PULLBACK_WINDOW = 10  # candles after a breakout during which a pullback entry is allowed
COOLDOWN_CANDLES = 5  # candles to wait after a position closes before a new signal

# Configuration for Positions
ORDER_QUANTITY = 1.0  # contracts per entry order
LEVERAGE = 1  # multiplier applied to realised PnL
PRICE_TICKS = {"BTCUSD": 0.5, "ETHUSD": 0.05}
DEFAULT_PRICE_TICK = 0.01
STATUS_UPDATE_EVERY = 30  # monitoring cycles between status notifications

# Reconciliation policy for start-up: "trust_venue" or "trust_local". Required, no default.
RECONCILIATION_POLICY = os.getenv("RECONCILIATION_POLICY")

# Storage and logging
DB_PATH = os.getenv("TRADING_DB_PATH", "data/trading.db")
LOG_TO_DATABASE = os.getenv("LOG_TO_DATABASE", "1") == "1"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Notifications
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")
