"""Index logs: records of sources that must be (re)indexed in the search engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

_ZERO_TIMESTAMP = "0001-01-01 00:00:00.000000"

_COLUMNS = "id, source_type, source_id, source_desc, deletion, obsolete, timestamp, indexed_time"


@dataclass
class IndexLog:
    source_type: str = ""
    source_id: int = 0
    source_desc: str = ""
    deletion: bool = False


@dataclass
class IndexLogRecord(IndexLog):
    id: int = 0
    obsolete: bool = False
    timestamp: datetime | None = None
    indexed_time: datetime | None = None


def _format_ts(value: datetime | None) -> str:
    if value is None:
        return _ZERO_TIMESTAMP
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.isoformat(sep=" ", timespec="microseconds")


def _parse_ts(text: str | None) -> datetime | None:
    if text is None or text == _ZERO_TIMESTAMP:
        return None
    return datetime.fromisoformat(text)


def _from_row(row) -> IndexLogRecord:
    id_, source_type, source_id, source_desc, deletion, obsolete, ts, indexed = row
    return IndexLogRecord(
        id=id_,
        source_type=source_type,
        source_id=source_id,
        source_desc=source_desc,
        deletion=bool(deletion),
        obsolete=bool(obsolete),
        timestamp=_parse_ts(ts),
        indexed_time=_parse_ts(indexed),
    )


def migrate(db) -> None:
    """Create the index_logs table if it does not exist."""
    db.execute(
        "CREATE TABLE IF NOT EXISTS index_logs ("
        "id INTEGER PRIMARY KEY, source_type TEXT, source_id INTEGER, source_desc TEXT, "
        "deletion INTEGER NOT NULL DEFAULT 0, obsolete INTEGER NOT NULL DEFAULT 0, "
        "timestamp TEXT, indexed_time TEXT)"
    )
    db.execute("CREATE INDEX IF NOT EXISTS for_search ON index_logs (source_type, source_id)")


def list_index_logs(db) -> list[IndexLogRecord]:
    """All index logs ordered by id."""
    rows = db.execute(f"SELECT {_COLUMNS} FROM index_logs ORDER BY id").fetchall()
    return [_from_row(row) for row in rows]


def persist_index_log(record: IndexLogRecord, tx) -> None:
    """Obsolete pending logs of the same source, then insert ``record``."""
    tx.execute(
        "UPDATE index_logs SET obsolete = 1 "
        "WHERE source_type LIKE ? AND source_id = ? AND indexed_time <= ?",
        (record.source_type, record.source_id, _ZERO_TIMESTAMP),
    )
    tx.execute(
        f"INSERT INTO index_logs ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (
            record.id,
            record.source_type,
            record.source_id,
            record.source_desc,
            int(record.deletion),
            int(record.obsolete),
            _format_ts(record.timestamp),
            _format_ts(record.indexed_time),
        ),
    )


def create_index_log(id, source_type, source_id, source_desc, deletion, timestamp, tx,
                     persist=persist_index_log) -> IndexLogRecord:
    """Build an index log record and persist it within ``tx``."""
    record = IndexLogRecord(
        id=id,
        source_type=source_type,
        source_id=source_id,
        source_desc=source_desc,
        deletion=deletion,
        timestamp=timestamp,
    )
    persist(record, tx)
    return record


def finish_index_log(id: int, db) -> None:
    """Mark the log as indexed now and no longer obsolete."""
    with db:
        db.execute(
            "UPDATE index_logs SET indexed_time = ?, obsolete = 0 WHERE id = ?",
            (_format_ts(datetime.now()), id),
        )


def obsolete_index_log(id: int, db) -> None:
    """Mark the log as obsolete."""
    with db:
        db.execute("UPDATE index_logs SET obsolete = 1 WHERE id = ?", (id,))


def load_pending_index_logs(page: int, size: int, db) -> list[IndexLogRecord]:
    """One page of logs that are neither indexed nor obsolete."""
    offset = max((page - 1) * size, 0)
    rows = db.execute(
        f"SELECT {_COLUMNS} FROM index_logs WHERE indexed_time <= ? AND obsolete != ? "
        "ORDER BY id LIMIT ? OFFSET ?",
        (_ZERO_TIMESTAMP, 1, size, offset),
    ).fetchall()
    return [_from_row(row) for row in rows]