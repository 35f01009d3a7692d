"""In-memory SQLite sandboxes the learner practices against.

Each sample database (hospital, university, company) is built from a bundled
seed script into its own ``:memory:`` connection. Learner queries are checked
against a small keyword denylist, executed inside a transaction that is
always rolled back, and returned as a :class:`QueryResult`. Results are
graded with :func:`compare_results`, which ignores row order.
"""
from __future__ import annotations

import json
import logging
import math
import re
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from config import settings

if TYPE_CHECKING:
    from question_bank import Question


logger = logging.getLogger(__name__)


DATABASE_NAMES = ("hospital", "university", "company")

MAX_QUERY_LENGTH = 10000
DENYLISTED_KEYWORDS = ("DROP", "DELETE", "ALTER", "TRUNCATE", "PRAGMA", "ATTACH", "DETACH")

UNSAFE_QUERY_MESSAGE = "Invalid or unsafe SQL query. Only SELECT queries are allowed."
NOT_INITIALISED_MESSAGE = "Database not initialized"
TIMEOUT_MESSAGE = "Query timed out"

_DENYLIST_PATTERN = re.compile(r"(?:%s)\b" % "|".join(DENYLISTED_KEYWORDS), re.IGNORECASE)
_LEADING_COMMENT_PATTERN = re.compile(r"\A(?:\s+|--[^\n]*(?:\n|\Z)|/\*.*?\*/)+", re.DOTALL)

_ENGINE_LOCK = threading.Lock()
_SEED_SCRIPTS: Dict[Path, Dict[str, str]] = {}


class SandboxError(Exception):
    """Base class for sandbox failures."""


class DatabaseInitError(SandboxError):
    pass


class UnknownDatabaseError(SandboxError):
    pass


@dataclass
class QueryResult:
    columns: List[str] = field(default_factory=list)
    rows: List[List[Any]] = field(default_factory=list)
    error: Optional[str] = None

    def __post_init__(self) -> None:
        width = len(self.columns)
        for row in self.rows:
            if len(row) != width:
                raise ValueError(f"Row has {len(row)} values but result has {width} columns")

    @classmethod
    def failure(cls, message: str) -> "QueryResult":
        return cls(error=message)

    @property
    def ok(self) -> bool:
        return self.error is None


# ----------------------
# Engine initialisation
# ----------------------
def init_engine(databases_dir: Optional[Path] = None) -> Dict[str, str]:
    """Load the seed scripts for every sample database.

    The scripts are read once per directory and shared by every session.
    Concurrent callers wait on the same lock, so only one of them touches
    the disk. A failure leaves nothing cached and the next call retries.
    """
    directory = Path(databases_dir or settings.databases_dir)
    cached = _SEED_SCRIPTS.get(directory)
    if cached is not None:
        return cached

    with _ENGINE_LOCK:
        cached = _SEED_SCRIPTS.get(directory)
        if cached is not None:
            return cached

        scripts: Dict[str, str] = {}
        for name in DATABASE_NAMES:
            path = directory / f"{name}.sql"
            try:
                scripts[name] = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise DatabaseInitError(f"Failed to initialize SQL engine: {exc}") from exc

        _SEED_SCRIPTS[directory] = scripts
        logger.info(
            "Loaded %d seed scripts from %s (SQLite %s)",
            len(scripts),
            directory,
            sqlite3.sqlite_version,
        )
        return scripts


def reset_engine() -> None:
    """Forget every cached seed script."""

    with _ENGINE_LOCK:
        _SEED_SCRIPTS.clear()


def create_sandbox(name: str, databases_dir: Optional[Path] = None) -> sqlite3.Connection:
    """
    Creates an in-memory SQLite database for one sample database.

    The connection runs in autocommit mode so that query execution can wrap
    each learner statement in its own transaction.

    Returns:
        conn: sqlite3.Connection object
    """
    if name not in DATABASE_NAMES:
        raise UnknownDatabaseError(f"Unknown database: {name}")

    script = init_engine(databases_dir)[name]
    conn = sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None)
    try:
        conn.executescript(script)
    except sqlite3.Error as exc:
        conn.close()
        raise DatabaseInitError(f"Failed to initialize {name} database: {exc}") from exc
    return conn


# ----------------------
# Validation & grading
# ----------------------
def validate_query(sql: Any) -> bool:
    if not isinstance(sql, str):
        return False
    if len(sql) > MAX_QUERY_LENGTH:
        return False

    statement = _LEADING_COMMENT_PATTERN.sub("", sql).strip()
    if not statement:
        return False
    return _DENYLIST_PATTERN.match(statement) is None


def _canonical_cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return int(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def _row_key(row: List[Any]) -> str:
    return json.dumps([_canonical_cell(value) for value in row], default=str)


def compare_results(user_result: QueryResult, expected_result: QueryResult) -> bool:
    """Return True when both results hold the same rows, in any order.

    Column names are ignored; only the column count has to match. ``None``
    and NaN count as the same missing value.
    """
    if user_result.error or expected_result.error:
        return False
    if len(user_result.columns) != len(expected_result.columns):
        return False
    if len(user_result.rows) != len(expected_result.rows):
        return False

    try:
        user_rows = sorted(_row_key(row) for row in user_result.rows)
        expected_rows = sorted(_row_key(row) for row in expected_result.rows)
    except (TypeError, ValueError):
        logger.exception("Error comparing results")
        return False

    return user_rows == expected_rows


# ----------------------
# Sample database registry
# ----------------------
class SampleDatabases:
    """The sample databases of one learner session.

    Connections are created on first use and kept until :meth:`close`.
    """

    def __init__(
        self,
        databases_dir: Optional[Path] = None,
        timeout_ms: Optional[int] = None,
        default_database: Optional[str] = None,
    ) -> None:
        self.databases_dir = Path(databases_dir or settings.databases_dir)
        self.timeout_ms = settings.query_timeout_ms if timeout_ms is None else timeout_ms
        self.current_database = default_database or settings.default_database
        self._connections: Dict[str, Optional[sqlite3.Connection]] = {
            name: None for name in DATABASE_NAMES
        }

    @staticmethod
    def available_databases() -> List[Dict[str, str]]:
        return [{"id": name, "name": name.capitalize()} for name in DATABASE_NAMES]

    def init_database(self, name: Optional[str] = None) -> sqlite3.Connection:
        name = name or self.current_database
        conn = self._connection(name)
        self.current_database = name
        return conn

    def switch_database(self, name: str) -> None:
        self.init_database(name)

    def is_ready(self) -> bool:
        return self._connections.get(self.current_database) is not None

    def close(self) -> None:
        for name, conn in self._connections.items():
            if conn is not None:
                conn.close()
                self._connections[name] = None

    def _connection(self, name: str) -> sqlite3.Connection:
        if name not in self._connections:
            raise UnknownDatabaseError(f"Unknown database: {name}")

        conn = self._connections[name]
        if conn is None:
            conn = create_sandbox(name, self.databases_dir)
            self._connections[name] = conn
            logger.debug("Initialised %s sample database", name)
        return conn

    # ----------------------
    # Query execution
    # ----------------------
    def execute_query(self, sql: str) -> QueryResult:
        conn = self._connections.get(self.current_database)
        if conn is None:
            return QueryResult.failure(NOT_INITIALISED_MESSAGE)
        if not validate_query(sql):
            return QueryResult.failure(UNSAFE_QUERY_MESSAGE)
        return self._run(conn, sql)

    def execute_query_on_db(self, sql: str, name: str) -> QueryResult:
        if not validate_query(sql):
            return QueryResult.failure(UNSAFE_QUERY_MESSAGE)
        try:
            conn = self._connection(name)
        except SandboxError as exc:
            logger.warning("Cannot run query on %s: %s", name, exc)
            return QueryResult.failure(str(exc))
        return self._run(conn, sql)

    def expected_result(self, question: "Question") -> QueryResult:
        return self.execute_query_on_db(question.expected_query, question.database)

    def _run(self, conn: sqlite3.Connection, sql: str) -> QueryResult:
        deadline = time.perf_counter() + self.timeout_ms / 1000.0

        def progress_handler() -> int:
            return 1 if time.perf_counter() > deadline else 0

        conn.set_progress_handler(progress_handler, 10000)
        try:
            conn.execute("BEGIN")
            cur = conn.execute(sql)
            if not cur.description:
                return QueryResult()
            columns = [d[0] for d in cur.description]
            rows = [list(row) for row in cur.fetchall()]
            return QueryResult(columns=columns, rows=rows)

        except sqlite3.OperationalError as exc:
            msg = str(exc)
            if "interrupted" in msg.lower():
                msg = TIMEOUT_MESSAGE
            return QueryResult.failure(msg)

        except (sqlite3.Error, sqlite3.Warning) as exc:
            return QueryResult.failure(str(exc) or "Unknown error occurred")

        except ValueError as exc:
            # Text sqlite3 cannot encode, e.g. lone surrogates.
            return QueryResult.failure(f"Query text could not be encoded: {exc}")

        finally:
            conn.set_progress_handler(None, 0)
            if conn.in_transaction:
                conn.rollback()

    # ----------------------
    # Schema introspection
    # ----------------------
    def get_table_names(self) -> List[str]:
        conn = self._connections.get(self.current_database)
        if conn is None:
            return []
        try:
            cur = conn.execute(
                "SELECT name FROM sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            return [row[0] for row in cur.fetchall() if isinstance(row[0], str) and row[0]]
        except sqlite3.Error:
            logger.exception("Error getting table names")
            return []

    def get_table_schema(self, table_name: Optional[str]) -> List[Dict[str, Any]]:
        conn = self._connections.get(self.current_database)
        if conn is None or not table_name:
            return []
        if table_name not in self.get_table_names():
            return []

        quoted = '"%s"' % table_name.replace('"', '""')
        try:
            cur = conn.execute(f"PRAGMA table_info({quoted})")
            return [
                {
                    "name": row[1],
                    "type": row[2],
                    "nullable": row[3] == 0,
                    "pk": row[5] > 0,
                }
                for row in cur.fetchall()
            ]
        except sqlite3.Error:
            logger.exception("Error getting schema for table %s", table_name)
            return []
