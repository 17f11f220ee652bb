import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Set, TypeVar

from db_pool import SQLiteConnectionPool
from schemas import AttemptRecord, ClueRecord, PuzzleRecord

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

_T = TypeVar("_T")


class StoreFailure(RuntimeError):
    """The backing store could not complete an operation."""


class PuzzleNotFound(LookupError):
    """No puzzle is stored under the requested date."""


def configure(path: str, max_connections: int = 10) -> None:
    """Point the module at a different database file."""
    global DB_PATH, _pool
    _pool.close_all()
    DB_PATH = path
    _pool = SQLiteConnectionPool(path, max_connections=max_connections)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        logger.error("Store operation %s failed: %s", operation, exc, exc_info=True)
        raise StoreFailure(f"{operation} failed: {exc}") from exc


def _exec(sql: str, params: Iterable = ()):
    with _conn() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _conn() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _store_errors("init"), _conn() as con:
        con.executescript(
            """
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS puzzles (
              puzzle_date     TEXT PRIMARY KEY,
              clues           TEXT NOT NULL,
              marked_complete INTEGER NOT NULL DEFAULT 0,
              saved_at        TEXT,
              updated_at      TEXT
            );

            CREATE TABLE IF NOT EXISTS attempts (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              puzzle_date TEXT NOT NULL,
              clue_id     TEXT NOT NULL,
              timestamp   INTEGER NOT NULL,
              correct     INTEGER NOT NULL CHECK (correct IN (0, 1))
            );

            CREATE INDEX IF NOT EXISTS idx_attempts_clue ON attempts(puzzle_date, clue_id);
            """
        )
        con.commit()


# -------------- puzzles --------------
def _row_to_puzzle(row: sqlite3.Row) -> PuzzleRecord:
    return PuzzleRecord(
        puzzle_date=row["puzzle_date"],
        clues=[ClueRecord.model_validate(clue) for clue in json.loads(row["clues"] or "[]")],
        marked_complete=bool(row["marked_complete"]),
        saved_at=row["saved_at"],
        updated_at=row["updated_at"],
    )


def _dump_clues(clues: Sequence[ClueRecord]) -> str:
    return json.dumps([clue.to_payload() for clue in clues])


def list_puzzle_dates() -> Set[str]:
    with _store_errors("list_puzzle_dates"):
        rows = _query("SELECT puzzle_date FROM puzzles")
    return {row["puzzle_date"] for row in rows}


def get_puzzle(puzzle_date: str) -> Optional[PuzzleRecord]:
    with _store_errors("get_puzzle"):
        rows = _query("SELECT * FROM puzzles WHERE puzzle_date = ?", [puzzle_date])
    if not rows:
        return None
    return _row_to_puzzle(rows[0])


def save_puzzle(puzzle_date: str, clues: Sequence[ClueRecord], saved_at: Optional[str] = None) -> PuzzleRecord:
    """Store ``clues`` under ``puzzle_date``, replacing any previous clue list.

    The completion flag survives a re-save of the same puzzle.
    """
    saved_at = saved_at or utc_now_iso()
    with _store_errors("save_puzzle"):
        _exec(
            """
            INSERT INTO puzzles (puzzle_date, clues, saved_at)
            VALUES (?, ?, ?)
            ON CONFLICT(puzzle_date) DO UPDATE SET
                clues = excluded.clues,
                saved_at = excluded.saved_at
            """,
            [puzzle_date, _dump_clues(clues), saved_at],
        )
    logger.info("Saved puzzle %s with %d clues", puzzle_date, len(clues))
    record = get_puzzle(puzzle_date)
    if record is None:
        raise StoreFailure(f"puzzle {puzzle_date} missing after save")
    return record


def modify_puzzle(puzzle_date: str, mutate: Callable[[PuzzleRecord], _T], updated_at: Optional[str] = None) -> _T:
    """Apply ``mutate`` to the stored puzzle inside one write transaction.

    ``mutate`` edits the record in place; whatever it returns is passed
    through. An exception raised by ``mutate`` rolls the transaction back.
    """
    with _store_errors("modify_puzzle"), _conn() as con:
        con.execute("BEGIN IMMEDIATE")
        row = con.execute("SELECT * FROM puzzles WHERE puzzle_date = ?", [puzzle_date]).fetchone()
        if row is None:
            raise PuzzleNotFound(puzzle_date)
        record = _row_to_puzzle(row)
        result = mutate(record)
        record.updated_at = updated_at or utc_now_iso()
        con.execute(
            """
            UPDATE puzzles
            SET clues = ?, marked_complete = ?, updated_at = ?
            WHERE puzzle_date = ?
            """,
            [_dump_clues(record.clues), int(record.marked_complete), record.updated_at, puzzle_date],
        )
        con.commit()
    return result


# -------------- attempts --------------
def get_attempts(puzzle_date: str, clue_id: str) -> List[AttemptRecord]:
    """Attempt log for one clue in insertion order; unknown clues have an empty log."""
    with _store_errors("get_attempts"):
        rows = _query(
            "SELECT timestamp, correct FROM attempts WHERE puzzle_date = ? AND clue_id = ? ORDER BY id",
            [puzzle_date, clue_id],
        )
    return [AttemptRecord(timestamp=row["timestamp"], correct=bool(row["correct"])) for row in rows]


def append_attempt(puzzle_date: str, clue_id: str, record: AttemptRecord) -> None:
    # One INSERT per attempt: concurrent submissions for the same clue cannot
    # overwrite each other.
    with _store_errors("append_attempt"):
        _exec(
            "INSERT INTO attempts (puzzle_date, clue_id, timestamp, correct) VALUES (?, ?, ?, ?)",
            [puzzle_date, clue_id, record.timestamp, int(record.correct)],
        )
