"""Database connection management and database preparation helpers."""

from __future__ import annotations

import logging
import os
import sqlite3

logger = logging.getLogger(__name__)


def extract_database_name(driver_args: str) -> tuple[str, str]:
    """Split driver args into the database name and the args without it.

    Raises ValueError when a ``?`` comes before the ``/``.
    """
    name_index = driver_args.find("/")
    params_index = driver_args.find("?")

    if name_index > 0 and params_index > name_index:
        return (driver_args[name_index + 1:params_index],
                driver_args[:name_index + 1] + driver_args[params_index:])
    if name_index < 0:
        return "", driver_args
    if name_index > 0 and params_index < 0:
        return driver_args[name_index + 1:], driver_args[:name_index + 1]
    raise ValueError("invalid mysql driver args")


def create_database_statement(database_name: str) -> str:
    """The statement that creates the database if it is missing."""
    return ("CREATE DATABASE IF NOT EXISTS `" + database_name +
            "` DEFAULT CHARACTER SET utf8mb4 DEFAULT COLLATE utf8mb4_unicode_ci;")


class DataSourceManager:
    """Owns the connection to the application database."""

    def __init__(self, database: str):
        self.database = database
        self._connection: sqlite3.Connection | None = None

    def start(self) -> None:
        """Open and check the connection; errors from the driver propagate."""
        conn = sqlite3.connect(self.database, check_same_thread=False)
        try:
            conn.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            conn.close()
            raise
        if os.environ.get("GIN_MODE") == "debug":
            conn.set_trace_callback(logger.debug)
        self._connection = conn

    def stop(self) -> None:
        if self._connection is not None:
            try:
                self._connection.close()
            except sqlite3.Error as err:
                logger.warning("failed to close DB: %s", err)
            self._connection = None

    def connection(self) -> sqlite3.Connection | None:
        """The open connection, or None when not started."""
        return self._connection