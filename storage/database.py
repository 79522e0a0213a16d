"""SQLite connection management and the pluggable SQL engine registry."""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, Union

from core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 5000


class SqlEngine(Protocol):
    """Opens DB-API connections to a database file.

    The engine is picked once from configuration and handed to the storage
    adapters; nothing below this layer chooses a driver on its own.
    """

    name: str

    def connect(self, path: str, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS, readonly: bool = False) -> Any:
        ...


class SqliteEngine:
    """Engine backed by the standard library ``sqlite3`` driver."""

    name = "sqlite"

    def connect(self, path: str, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS, readonly: bool = False) -> sqlite3.Connection:
        if readonly:
            conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True, timeout=busy_timeout_ms / 1000)
        else:
            conn = sqlite3.connect(path, timeout=busy_timeout_ms / 1000)
        # Transactions are issued explicitly by Database.transaction().
        conn.isolation_level = None
        conn.row_factory = sqlite3.Row
        if not readonly:
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn


ENGINES: Dict[str, SqlEngine] = {
    SqliteEngine.name: SqliteEngine(),
}


def get_engine(name: str = "sqlite") -> SqlEngine:
    try:
        return ENGINES[name]
    except KeyError:
        raise ConfigError(f"Unknown database engine '{name}'. Supported engines: {', '.join(sorted(ENGINES))}") from None


class Database:
    """Handle on one open SQLite database file."""

    def __init__(
        self,
        db_path: Union[str, Path] = "qmetrics.db",
        engine: Optional[SqlEngine] = None,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        readonly: bool = False,
    ):
        self.db_path = str(db_path)
        self.engine = engine or get_engine()
        self.busy_timeout_ms = busy_timeout_ms
        self.readonly = readonly
        self._conn: Optional[Any] = None

    @property
    def conn(self):
        if self._conn is None:
            if not self.readonly:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = self.engine.connect(self.db_path, self.busy_timeout_ms, self.readonly)
            logger.debug(f"Opened database {self.db_path} with engine {self.engine.name}")
        return self._conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Run the enclosed statements in one write transaction.

        ``BEGIN IMMEDIATE`` takes the write lock up front; any exception rolls
        everything back before it propagates.
        """
        conn = self.conn
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def execute(self, query: str, params: Optional[Sequence[Any]] = None):
        if params:
            return self.conn.execute(query, params)
        return self.conn.execute(query)

    def fetchall(self, query: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        rows = self.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def fetchone(self, query: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        row = self.execute(query, params).fetchone()
        if row:
            return dict(row)
        return None

    def table_columns(self, table: str) -> List[str]:
        return [row["name"] for row in self.fetchall(f"PRAGMA table_info({table})")]

    def checkpoint(self) -> None:
        """Fold the write-ahead log back into the main file."""
        if self._conn is not None and not self.readonly:
            self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")

    def integrity_check(self) -> str:
        row = self.fetchone("PRAGMA integrity_check")
        return next(iter(row.values())) if row else "unknown"
