import logging
import sqlite3

from trendbot.logger import DatabaseHandler, get_logger


def test_module_loggers_are_children_of_trendbot():
    assert get_logger("trendbot.positions").parent.name == "trendbot"
    assert get_logger("__main__").name == "trendbot.__main__"
    assert logging.getLogger("trendbot").propagate is False


def test_database_handler_writes_records(tmp_path):
    db_path = tmp_path / "logs.db"
    logger = logging.getLogger("trendbot-test-db")
    logger.propagate = False
    handler = DatabaseHandler(str(db_path))
    logger.addHandler(handler)
    try:
        logger.warning("venue %s slow", "BTCUSD")
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logger.exception("cycle failed")
    finally:
        logger.removeHandler(handler)

    with sqlite3.connect(db_path) as conn:
        rows = conn.execute("SELECT level, module, message FROM logs").fetchall()
    assert rows[0] == ("WARNING", "trendbot-test-db", "venue BTCUSD slow")
    assert rows[1][0] == "ERROR"
    assert "RuntimeError: boom" in rows[1][2]
