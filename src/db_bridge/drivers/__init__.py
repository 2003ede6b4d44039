"""Engine drivers for PostgreSQL, MySQL and SQLite.

Usage:
    from db_bridge.drivers import DatabaseDriver, SQLiteDriver

    driver: DatabaseDriver = SQLiteDriver(config)
"""

from db_bridge.drivers.base import DatabaseDriver, HealthResult, SqlAlchemyDriver
from db_bridge.drivers.mysql import MySQLDriver
from db_bridge.drivers.postgres import PostgresDriver
from db_bridge.drivers.sqlite import SQLiteDriver

__all__ = [
    "DatabaseDriver",
    "HealthResult",
    "SqlAlchemyDriver",
    "PostgresDriver",
    "MySQLDriver",
    "SQLiteDriver",
]
