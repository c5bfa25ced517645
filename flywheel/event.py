"""Domain events: their records, storage and dispatch to handlers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable

from flywheel import indexlog
from flywheel.idgen import IdWorker
from flywheel.session import Identity

logger = logging.getLogger(__name__)

_ZERO_TIMESTAMP = "0001-01-01 00:00:00.000000"


class EventCategory(str, Enum):
    CREATED = "CREATED"
    DELETED = "DELETED"
    PROPERTY_UPDATED = "PROPERTY_UPDATED"
    RELATION_UPDATED = "RELATION_UPDATED"
    EXTENSION_UPDATED = "EXTENSION_UPDATED"


@dataclass
class UpdatedProperty:
    property_name: str = ""
    property_desc: str = ""
    old_value: str = ""
    old_value_desc: str = ""
    new_value: str = ""
    new_value_desc: str = ""


@dataclass
class UpdatedRelation:
    property_name: str = ""
    property_desc: str = ""
    target_type: str = ""
    target_type_desc: str = ""
    old_target_id: str = ""
    old_target_desc: str = ""
    new_target_id: str = ""
    new_target_desc: str = ""


@dataclass
class Event:
    source_id: int = 0
    source_type: str = ""
    source_desc: str = ""
    creator_id: int = 0
    creator_name: str = ""
    event_category: EventCategory | str = ""
    updated_properties: list | None = field(default_factory=list)
    updated_relations: list | None = field(default_factory=list)


@dataclass
class EventRecord(Event):
    id: int = 0
    timestamp: datetime | None = None


@dataclass
class EventHandleResult:
    success: bool = False
    message: str = ""
    handler_identifier: str = ""


EventHandler = Callable[[EventRecord], "EventHandleResult | None"]

event_handlers: list[EventHandler] = []

_id_worker = IdWorker()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def encode_updates(items) -> str:
    """Encode updated properties or relations as a JSON text column value."""
    if items is None:
        return "null"
    return json.dumps([{_camel(f.name): getattr(item, f.name) for f in fields(item)} for item in items])


def _decode(value, cls) -> list | None:
    if isinstance(value, (bytes, bytearray)):
        value = value.decode()
    elif not isinstance(value, str):
        raise TypeError(f"type is neither string nor []byte: {type(value).__name__} {value!r}")
    data = json.loads(value)
    if data is None:
        return None
    names = {_camel(f.name).lower(): f.name for f in fields(cls)}
    items = []
    for obj in data:
        kwargs = {names[key.lower()]: val for key, val in obj.items() if key.lower() in names}
        items.append(cls(**kwargs))
    return items


def decode_updated_properties(value) -> list[UpdatedProperty] | None:
    return _decode(value, UpdatedProperty)


def decode_updated_relations(value) -> list[UpdatedRelation] | None:
    return _decode(value, UpdatedRelation)


def invoke_handlers(record: EventRecord, handlers: Iterable[EventHandler] | None = None) -> list[EventHandleResult]:
    """Pass ``record`` to every handler and collect the results of those that handled it."""
    results = []
    for handler in event_handlers if handlers is None else handlers:
        logger.debug("pre handle event %s", record)
        result = handler(record)
        if result is None:
            continue
        results.append(result)
        if result.success:
            logger.info("post handle event. %s", result)
        else:
            logger.error("post handler error. %s", result)
    return results


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


def _category(value: str) -> EventCategory | str:
    try:
        return EventCategory(value)
    except ValueError:
        return value


def migrate(db) -> None:
    """Create the events table if it does not exist."""
    db.execute(
        "CREATE TABLE IF NOT EXISTS events ("
        "id INTEGER PRIMARY KEY, source_id INTEGER, source_type TEXT, source_desc TEXT, "
        "creator_id INTEGER, creator_name TEXT, event_category TEXT, "
        "updated_properties TEXT, updated_relations TEXT, timestamp TEXT)"
    )


def persist_event(record: EventRecord, tx) -> None:
    """Store ``record`` and its index log within ``tx``."""
    indexlog.create_index_log(
        record.id, record.source_type, record.source_id, record.source_desc,
        record.event_category == EventCategory.DELETED, record.timestamp, tx,
    )
    category = record.event_category
    tx.execute(
        "INSERT INTO events (id, source_id, source_type, source_desc, creator_id, creator_name, "
        "event_category, updated_properties, updated_relations, timestamp) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            record.id,
            record.source_id,
            record.source_type,
            record.source_desc,
            record.creator_id,
            record.creator_name,
            category.value if isinstance(category, EventCategory) else category,
            encode_updates(record.updated_properties),
            encode_updates(record.updated_relations),
            _format_ts(record.timestamp),
        ),
    )


def list_events(db) -> list[EventRecord]:
    """All stored events ordered by id."""
    rows = db.execute(
        "SELECT id, source_id, source_type, source_desc, creator_id, creator_name, "
        "event_category, updated_properties, updated_relations, timestamp FROM events ORDER BY id"
    ).fetchall()
    return [
        EventRecord(
            id=row[0],
            source_id=row[1],
            source_type=row[2],
            source_desc=row[3],
            creator_id=row[4],
            creator_name=row[5],
            event_category=_category(row[6]),
            updated_properties=decode_updated_properties(row[7]),
            updated_relations=decode_updated_relations(row[8]),
            timestamp=_parse_ts(row[9]),
        )
        for row in rows
    ]


def create_event(source_type, source_id, source_desc, category, updated_properties, updated_relations,
                 identity: Identity, timestamp, tx, persist=persist_event) -> EventRecord:
    """Build an event record with a fresh id and persist it within ``tx``."""
    record = EventRecord(
        id=_id_worker.next_id(),
        source_type=source_type,
        source_id=source_id,
        source_desc=source_desc,
        event_category=category,
        updated_properties=updated_properties,
        updated_relations=updated_relations,
        creator_id=identity.id,
        creator_name=identity.name,
        timestamp=timestamp,
    )
    persist(record, tx)
    return record