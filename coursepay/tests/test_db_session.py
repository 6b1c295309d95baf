"""
Engine configuration tests.
"""

from coursepay.app.core.config import settings
from coursepay.app.db.session import engine_options


def test_server_database_gets_pool_sizing():
    options = engine_options("postgresql+asyncpg://user:password@db:5432/coursepay_db")

    assert options["pool_size"] == settings.db_pool_size
    assert options["max_overflow"] == settings.db_max_overflow
    assert options["pool_pre_ping"] is True


def test_sqlite_uses_driver_pool_defaults():
    options = engine_options("sqlite+aiosqlite:///./coursepay.db")

    assert options == {"echo": settings.db_echo}
