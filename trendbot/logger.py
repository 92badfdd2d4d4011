import logging
from typing import Optional

from .config import DB_PATH, LOG_LEVEL, LOG_TO_DATABASE
from .datastore import SQLiteDataStore
from .utils import now_ms

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(message)s'


class DatabaseHandler(logging.Handler):
    """
    Logging handler that appends every record to the ``logs`` table,
    traceback included when the record carries one.
    """
    def __init__(self, db_path: str):
        super().__init__()
        self.db_store = SQLiteDataStore(db_path)
        self.db_store.initialize()

    def emit(self, record: logging.LogRecord):
        try:
            message = record.getMessage()
            if record.exc_info:
                message = f"{message}\n{logging.Formatter().formatException(record.exc_info)}"
            self.db_store.insert_log(
                timestamp_ms=now_ms(),
                level=record.levelname,
                module=record.name,
                message=message,
            )
        except Exception:
            self.handleError(record)


_root: Optional[logging.Logger] = None


def get_logger(name: str, db_path: str = DB_PATH) -> logging.Logger:
    """
    Return a child of the ``trendbot`` logger, configuring the parent on first use:
    console output always, the SQLite ``logs`` table when LOG_TO_DATABASE is on.
    """
    global _root
    if _root is None:
        _root = logging.getLogger("trendbot")
        _root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
        _root.propagate = False

        if not any(isinstance(h, logging.StreamHandler) for h in _root.handlers):
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            _root.addHandler(console_handler)

        if LOG_TO_DATABASE and not any(isinstance(h, DatabaseHandler) for h in _root.handlers):
            _root.addHandler(DatabaseHandler(db_path))

    if name == "__main__" or not name.startswith("trendbot"):
        name = f"trendbot.{name}"
    return logging.getLogger(name)
