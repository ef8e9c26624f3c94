"""
core/db.py -- SQLAlchemy engine factory shared by every store.

Both UserStore and LibraryStore need the same SQLite treatment: the
check_same_thread flag for FastAPI's threadpool, WAL journal mode set per
connection, and an existing parent directory for file-backed databases.
Non-SQLite URLs pass straight through to create_engine().

Layer rule: core/ is the kernel. No imports from api/, auth/, library/, cache/.
"""

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _ensure_sqlite_dir(db_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    prefix = "sqlite:///"
    if not db_url.startswith(prefix):
        return
    path = db_url[len(prefix) :]
    if not path or path == ":memory:" or path.startswith("file:"):
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def make_engine(db_url: str) -> Engine:
    """Return an Engine for db_url with SQLite-specific setup applied."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # Route handlers run in a threadpool; one connection may be touched
        # from several threads over its pooled lifetime.
        connect_args["check_same_thread"] = False
        _ensure_sqlite_dir(db_url)
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine
