"""Keeping the search index of works in step with the stored works."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from flywheel.event import EventCategory, EventHandleResult, EventRecord
from flywheel.session import Identity, Permissions, Session

logger = logging.getLogger(__name__)

SYSTEM_ADMIN_PERMISSION = "system:admin"
SYSTEM_VIEW_PERMISSION = "system:view"
SYSTEM_RECOVERY_PERMISSION = "system:recovery"

WORK_INDEX_NAME = "works"
WORK_INDEX_EVENT_HANDLER_NAME = "workIndexr"
SYNC_BATCH_SIZE = 500

INDEX_ROBOT = Session(
    identity=Identity(id=10, name="index-robot"),
    perms=Permissions([SYSTEM_VIEW_PERMISSION]),
)


class ForbiddenError(PermissionError):
    """The session lacks the permission the operation needs."""

    def __init__(self, message: str = "forbidden"):
        super().__init__(message)


class RecordNotFoundError(LookupError):
    """The requested record does not exist."""

    def __init__(self, message: str = "record not found"):
        super().__init__(message)


class BatchActionError(Exception):
    """Failures of some items of a batch, keyed by item id."""

    def __init__(self, errors: Mapping[int, BaseException]):
        self.errors = dict(errors)
        super().__init__(self.errors)

    def __str__(self) -> str:
        inner = " ".join(f"{key}:{err}" for key, err in sorted(self.errors.items()))
        return f"map[{inner}]"


@dataclass
class WorkDocument:
    """A work detail as stored in the search index."""

    work: dict

    @property
    def id(self) -> int:
        return self.work.get("id", 0)

    @property
    def identifier(self) -> str:
        return self.work.get("identifier", "")

    def to_dict(self) -> dict:
        return dict(self.work)


class WorkIndexer:
    """Indexes work details through the given collaborators.

    Work details are JSON-like dicts holding at least an ``id``.
    """

    def __init__(
        self,
        index: Callable[[str, int, WorkDocument, Session], Any],
        delete_document: Callable[[str, int, Session], Any],
        load_works: Callable[[int, int], list],
        append_checklists: Callable[[list, Session], Any],
        extend_works: Callable[[list, Session], list],
        detail_work: Callable[[str, Session], dict],
        load_pending_logs: Callable[[int, int], list],
        obsolete_log: Callable[[int], Any],
        finish_log: Callable[[int], Any],
        index_name: str = WORK_INDEX_NAME,
        batch_size: int = SYNC_BATCH_SIZE,
    ):
        self._index = index
        self._delete_document = delete_document
        self._load_works = load_works
        self._append_checklists = append_checklists
        self._extend_works = extend_works
        self._detail_work = detail_work
        self._load_pending_logs = load_pending_logs
        self._obsolete_log = obsolete_log
        self._finish_log = finish_log
        self.index_name = index_name
        self.batch_size = batch_size
        self._lock = threading.Lock()
        self._running = False

    def index_works(self, works: Iterable[dict], session: Session) -> None:
        """Index every work; raises BatchActionError naming those that failed."""
        errors: dict[int, BaseException] = {}
        for doc in (WorkDocument(work) for work in works):
            try:
                self._index(self.index_name, doc.id, doc, session)
            except Exception as err:
                errors[doc.id] = err
                logger.warning("index work %s %s %s", doc.id, doc.identifier, err)
            else:
                logger.info("index work %s %s successfully", doc.id, doc.identifier)
        if errors:
            raise BatchActionError(errors)

    def schedule_new_sync_run(self, session: Session) -> bool:
        """Start a full sync in the background; False if one is already running."""
        if not session.perms.has_role(SYSTEM_ADMIN_PERMISSION):
            raise ForbiddenError()
        with self._lock:
            if self._running:
                return False
            self._running = True

        def run() -> None:
            try:
                self.full_sync()
            except Exception:
                logger.exception("indices full sync failed")
            finally:
                with self._lock:
                    self._running = False

        threading.Thread(target=run, name="indices-full-sync", daemon=True).start()
        return True

    def full_sync(self) -> None:
        """Index all works page by page; a failing page is logged and skipped."""
        page = 1
        while True:
            try:
                works = self._load_works(page, self.batch_size)
            except Exception as err:
                logger.warning("indices fully sync: error on retrieve works(page = %d, pageSize = %d): %s",
                               page, self.batch_size, err)
                page += 1
                continue

            if not works:
                logger.info("indices fully sync: there are no more work to index")
                return

            details = [dict(work) for work in works]
            try:
                self._append_checklists(details, INDEX_ROBOT)
            except Exception as err:
                logger.warning("indices fully sync: error on append checklist(page = %d, pageSize = %d): %s",
                               page, self.batch_size, err)
                page += 1
                continue

            try:
                details = self._extend_works(details, INDEX_ROBOT)
            except Exception as err:
                logger.warning("indices fully sync: error on detail works(page = %d, pageSize = %d): %s",
                               page, self.batch_size, err)
                page += 1
                continue

            try:
                self.index_works(details, Session())
            except BatchActionError as err:
                logger.warning("indices fully sync: error on index works(page = %d, pageSize = %d): %s",
                               page, self.batch_size, err)
            page += 1

    def indexlog_recovery_routine(self, session: Session) -> None:
        """Index the works of all pending index logs, obsoleting logs of missing works."""
        perms = session.perms
        if not perms.has_role(SYSTEM_RECOVERY_PERMISSION) and not perms.has_role(SYSTEM_ADMIN_PERMISSION):
            raise ForbiddenError()

        page = 1
        while True:
            try:
                logs = self._load_pending_logs(page, self.batch_size)
            except Exception as err:
                logger.warning("pending index log sync: error on retrieve index logs(page = %d, pageSize = %d): %s",
                               page, self.batch_size, err)
                page += 1
                continue

            if not logs:
                logger.info("pending index log sync: there are no more index log to index")
                return

            details = []
            for log in logs:
                try:
                    details.append(self._detail_work(str(log.source_id), INDEX_ROBOT))
                except RecordNotFoundError:
                    try:
                        self._obsolete_log(log.id)
                    except Exception as err:
                        logger.warning("pending index log sync: failed to obsolete index log %s, %s", log.id, err)
                except Exception as err:
                    logger.warning("pending index log sync: failed to detail work %s, %s", log.id, err)

            try:
                self.index_works(details, session)
            except BatchActionError as err:
                logger.warning("pending index log sync: error on index works(page = %d, pageSize = %d): %s",
                               page, self.batch_size, err)
            page += 1

    def handle_event(self, record: EventRecord) -> EventHandleResult | None:
        """Bring the index up to date with a work event; None for other sources."""
        if record.source_type != "WORK":
            return None

        def failure(message: str) -> EventHandleResult:
            return EventHandleResult(message=message, handler_identifier=WORK_INDEX_EVENT_HANDLER_NAME)

        if record.event_category == EventCategory.DELETED:
            try:
                self._delete_document(self.index_name, record.source_id, Session())
            except Exception as err:
                return failure(f"delete work index {record.source_id}, {err}")
        else:
            try:
                detail = self._detail_work(str(record.source_id), INDEX_ROBOT)
            except Exception as err:
                return failure(f"detail work {record.source_id} which will be indexed, {err}")
            try:
                self.index_works([detail], Session())
            except Exception as err:
                return failure(f"index work {record.source_id}, {err}")

        try:
            self._finish_log(record.id)
        except Exception as err:
            return failure(f"error on finish index log {record.id} of work {record.source_desc}, {err}")
        return EventHandleResult(success=True, handler_identifier=WORK_INDEX_EVENT_HANDLER_NAME)