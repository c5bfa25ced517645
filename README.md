# flywheel

Building blocks for keeping a search index of work items in step with the
records stored in a database: change events, index logs that track what still
needs indexing, batch synchronisation, search queries and request tracing.

The package is pure Python with no third-party runtime dependencies.

## Modules

- `flywheel.idgen` – `IdWorker`, a thread-safe generator of time-ordered
  64-bit ids (39 bits of time in 10 ms units, 8 bits of sequence, 16 bits of
  machine id), and `next_id(worker)`.
- `flywheel.misc` – `ErrorBody` and `PagedBody` response bodies with
  `to_dict()`, the `COMMON_INTERNAL_SERVER_ERROR` message code, and
  `parse_id(value)`, which parses an unsigned 64-bit decimal id and raises
  `ValueError` otherwise.
- `flywheel.session` – `Session`, `Identity` and `Permissions`.
  `Permissions.has_role(role)` checks membership, `Session.clone()` returns a
  shallow copy and `Session.visible_projects()` reads project ids out of
  permissions of the form `role_<projectId>`.
- `flywheel.indexlog` – `IndexLog` and `IndexLogRecord`, stored in an
  `index_logs` table: `migrate`, `create_index_log`, `persist_index_log`,
  `finish_index_log`, `obsolete_index_log`, paged `load_pending_index_logs`
  and `list_index_logs`. Persisting a new log for a source marks its older,
  not yet indexed logs as obsolete.
- `flywheel.event` – `EventCategory`, `Event`, `EventRecord`,
  `UpdatedProperty` and `UpdatedRelation`, stored in an `events` table.
  `encode_updates`, `decode_updated_properties` and `decode_updated_relations`
  convert the JSON text columns; `create_event` gives a record a fresh id and
  persists it; `persist_event` writes the event together with its index log;
  `invoke_handlers(record, handlers=None)` runs every handler (by default those
  in the module-level `event_handlers` list) and collects the
  `EventHandleResult`s of the ones that did not return `None`.
- `flywheel.persistence` – `extract_database_name` splits a MySQL driver
  argument string into the database name and the server-level arguments,
  `create_database_statement` builds the `CREATE DATABASE IF NOT EXISTS`
  statement, and `DataSourceManager` opens, checks and closes an SQLite
  connection (`start`, `stop`, `connection`).
- `flywheel.indices` – `WorkIndexer` indexes work details (plain dicts with an
  `id`), raising `BatchActionError` for the ones that failed; runs a full
  synchronisation page by page; recovers pending index logs, obsoleting logs
  whose work raises `RecordNotFoundError`; and, through `handle_event`,
  updates the index for `WORK` events. `schedule_new_sync_run` starts a full
  synchronisation on a background thread and returns `False` while one is
  already running. Only sessions holding `system:admin` may schedule a run,
  and only `system:admin` or `system:recovery` may recover index logs;
  others get `ForbiddenError`. A failing page is logged and the next page is
  tried.
- `flywheel.indices_rest` – `IndicesRestApi`, a WSGI application answering
  `POST /v1/index-requests` and rate-limited
  `POST /v1/pending-index-log-recovery`, and `RateLimiter`, a token bucket.
- `flywheel.search` – `WorkQuery`, `ArchiveState`, `build_search_body` and
  `search_works`, which returns nothing for a session without visible
  projects and otherwise filters on them.
- `flywheel.tracing` – an in-process `Tracer` that keeps finished `Span`s,
  propagates trace context through an `uber-trace-id` header, and a
  `TracingMiddleware` that records one server span per WSGI request, joined to
  the caller's trace when the request carries one. `tracer_settings()`
  returns the tracer configuration read from `JAEGER_ENDPOINT`.

## Examples

Splitting MySQL driver arguments:

```python
from flywheel.persistence import extract_database_name

name, server_args = extract_database_name(
    "user:password@(localhost:3306)/dbname?charset=utf8mb4"
)
# name == "dbname"
# server_args == "user:password@(localhost:3306)/?charset=utf8mb4"
```

Limiting how often an operation may run:

```python
from flywheel.indices_rest import RateLimiter

limiter = RateLimiter(60.0, 1)
limiter.allow()   # True
limiter.allow()   # False until a minute has passed
```

Storing an event with its index log:

```python
import sqlite3
from datetime import datetime

from flywheel import event, indexlog
from flywheel.session import Identity

db = sqlite3.connect(":memory:")
event.migrate(db)
indexlog.migrate(db)
record = event.create_event("WORK", 1234, "work1234", event.EventCategory.CREATED,
                            [], [], Identity(id=333, name="user333"), datetime.now(), db)
indexlog.load_pending_index_logs(1, 10, db)  # the new log, still pending
```

## What it does not do

- There is no command and no server runner; `IndicesRestApi` and
  `TracingMiddleware` are WSGI callables to be mounted in a server of your
  choice.
- There is no search-engine client and no storage of works, checklists or
  work details. `WorkIndexer` and `search_works` take these operations as
  plain callables.
- `create_database_statement` only builds the SQL text; nothing here connects
  to a MySQL server.
- The `Tracer` keeps finished spans in memory and sends them nowhere.