"""Pooled SQLite connections shared by the learner state store."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator, List

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Thread-safe pool handing out at most ``max_connections`` SQLite connections."""

    def __init__(self, database: str, max_connections: int = 5, timeout: float = 30.0):
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self.database = database
        self.max_connections = max_connections
        self.timeout = timeout
        self._idle: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._opened: List[sqlite3.Connection] = []

    def _open(self) -> sqlite3.Connection:
        # Connections migrate between worker threads once returned to the pool.
        conn = sqlite3.connect(self.database, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @property
    def size(self) -> int:
        return len(self._opened)

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection; uncommitted work is rolled back on return."""
        connection = None
        try:
            connection = self._idle.get(block=False)
        except Empty:
            with self._lock:
                if len(self._opened) < self.max_connections:
                    connection = self._open()
                    self._opened.append(connection)
                    logger.debug("Opened SQLite connection %d for %s", len(self._opened), self.database)
            if connection is None:
                connection = self._idle.get(block=True, timeout=self.timeout)

        try:
            yield connection
        finally:
            try:
                connection.rollback()
                self._idle.put(connection)
            except sqlite3.Error as exc:
                logger.error("Discarding broken SQLite connection: %s", exc)
                with self._lock:
                    if connection in self._opened:
                        self._opened.remove(connection)
                connection.close()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._opened:
                conn.close()
            self._opened.clear()
            while True:
                try:
                    self._idle.get(block=False)
                except Empty:
                    break
