import time

import pytest

from flywheel.event import EventCategory, EventHandleResult, EventRecord
from flywheel.indexlog import IndexLogRecord
from flywheel.indices import (
    SYSTEM_ADMIN_PERMISSION,
    SYSTEM_RECOVERY_PERMISSION,
    SYSTEM_VIEW_PERMISSION,
    WORK_INDEX_EVENT_HANDLER_NAME,
    BatchActionError,
    ForbiddenError,
    RecordNotFoundError,
    WorkDocument,
    WorkIndexer,
)
from flywheel.session import Session


def _fail(message):
    def raiser(*args):
        raise RuntimeError(message)

    return raiser


def _indexer(**overrides):
    collaborators = dict(
        index=lambda name, id_, doc, s: None,
        delete_document=lambda name, id_, s: None,
        load_works=lambda page, size: [],
        append_checklists=lambda details, s: None,
        extend_works=lambda details, s: details,
        detail_work=lambda identifier, s: {"id": int(identifier)},
        load_pending_logs=lambda page, size: [],
        obsolete_log=lambda id_: None,
        finish_log=lambda id_: None,
    )
    options = {key: overrides.pop(key) for key in ("index_name", "batch_size") if key in overrides}
    collaborators.update(overrides)
    return WorkIndexer(**collaborators, **options)


def _paged_works(total):
    def load(page, size):
        start = size * (page - 1)
        return [{"id": i + 1} for i in range(max(start, 0), min(start + size, total))]

    return load


def _paged_logs(total):
    def load(page, size):
        start = size * (page - 1)
        return [IndexLogRecord(id=i + 1, source_id=i + 1) for i in range(max(start, 0), min(start + size, total))]

    return load


def _add_checklists(details, s):
    for d in details:
        d["checkList"] = [{"name": "checkitem"}]


def _add_state(details, s):
    for d in details:
        d["state"] = {"name": "test"}
    return details


def _recorder(docs):
    def index(name, id_, doc, s):
        docs.append((name, id_, doc))

    return index


def _expected(ids):
    return [
        ("works", i, WorkDocument({"id": i, "checkList": [{"name": "checkitem"}], "state": {"name": "test"}}))
        for i in ids
    ]


def test_schedule_requires_system_admin():
    indexer = _indexer()
    with pytest.raises(ForbiddenError):
        indexer.schedule_new_sync_run(Session(perms=[SYSTEM_VIEW_PERMISSION]))


def test_schedule_runs_one_sync_at_a_time():
    calls = []

    def slow_load(page, size):
        calls.append(page)
        time.sleep(0.1)
        return []

    indexer = _indexer(load_works=slow_load)
    admin = Session(perms=[SYSTEM_ADMIN_PERMISSION])
    assert indexer.schedule_new_sync_run(admin) is True
    assert indexer.schedule_new_sync_run(admin) is False
    time.sleep(0.2)
    assert indexer.schedule_new_sync_run(admin) is True
    time.sleep(0.2)
    assert calls == [1, 1]


def test_index_works_stores_and_updates_documents():
    store = {}

    def index(name, id_, doc, s):
        store[(name, id_)] = doc.to_dict()

    indexer = _indexer(index=index, index_name="works_test")
    work = {"id": 1, "name": "test", "identifier": "DEM-1", "orderInState": 1}
    indexer.index_works([work], Session())
    assert store[("works_test", 1)] == work

    updated = {"id": 1, "name": "test-updated", "identifier": "DEM-1", "orderInState": 2}
    indexer.index_works([updated], Session())
    assert store == {("works_test", 1): updated}


def test_index_works_collects_failures():
    def index(name, id_, doc, s):
        if id_ == 2:
            raise RuntimeError("boom")

    indexer = _indexer(index=index)
    with pytest.raises(BatchActionError) as info:
        indexer.index_works([{"id": 1}, {"id": 2}], Session())
    assert str(info.value) == "map[2:boom]"
    assert list(info.value.errors) == [2]


def test_handle_event_ignores_other_sources():
    assert _indexer().handle_event(EventRecord(source_type="NOT_WORK")) is None


def test_handle_delete_event_success():
    indexer = _indexer()
    ev = EventRecord(source_type="WORK", source_id=100, event_category=EventCategory.DELETED)
    assert indexer.handle_event(ev) == EventHandleResult(
        success=True, handler_identifier=WORK_INDEX_EVENT_HANDLER_NAME)


def test_handle_delete_event_failure():
    indexer = _indexer(delete_document=_fail("error on delete document"))
    ev = EventRecord(source_type="WORK", source_id=100, event_category=EventCategory.DELETED)
    assert indexer.handle_event(ev) == EventHandleResult(
        success=False, handler_identifier=WORK_INDEX_EVENT_HANDLER_NAME,
        message="delete work index 100, error on delete document")


def test_handle_create_event_success_finishes_log():
    finished = []
    indexer = _indexer(detail_work=lambda identifier, s: {}, finish_log=finished.append)
    ev = EventRecord(id=123, source_type="WORK", source_id=100, event_category=EventCategory.CREATED)
    assert indexer.handle_event(ev) == EventHandleResult(
        success=True, handler_identifier=WORK_INDEX_EVENT_HANDLER_NAME)
    assert finished == [123]


def test_handle_create_event_detail_failure():
    indexer = _indexer(detail_work=_fail("error on detail work"))
    ev = EventRecord(source_type="WORK", source_id=100, event_category=EventCategory.CREATED)
    assert indexer.handle_event(ev) == EventHandleResult(
        success=False, handler_identifier=WORK_INDEX_EVENT_HANDLER_NAME,
        message="detail work 100 which will be indexed, error on detail work")


def test_handle_create_event_index_failure():
    indexer = _indexer(index=_fail("error on index document"))
    ev = EventRecord(source_type="WORK", source_id=100, event_category=EventCategory.CREATED)
    assert indexer.handle_event(ev) == EventHandleResult(
        success=False, handler_identifier=WORK_INDEX_EVENT_HANDLER_NAME,
        message="index work 100, map[100:error on index document]")


def test_handle_create_event_finish_failure():
    indexer = _indexer(finish_log=_fail("error on finish index log"))
    ev = EventRecord(id=100, source_type="WORK", source_desc="work1000", source_id=1000,
                     event_category=EventCategory.CREATED)
    assert indexer.handle_event(ev) == EventHandleResult(
        success=False, handler_identifier=WORK_INDEX_EVENT_HANDLER_NAME,
        message="error on finish index log 100 of work work1000, error on finish index log")


def test_full_sync_indexes_all_works():
    docs = []
    indexer = _indexer(index=_recorder(docs), load_works=_paged_works(5),
                       append_checklists=_add_checklists, extend_works=_add_state, batch_size=2)
    assert indexer.full_sync() is None
    assert docs == _expected([1, 2, 3, 4, 5])


def test_full_sync_skips_page_when_load_fails():
    docs = []
    paged = _paged_works(5)

    def load(page, size):
        if page == 2:
            raise RuntimeError("error on load works")
        return paged(page, size)

    indexer = _indexer(index=_recorder(docs), load_works=load,
                       append_checklists=_add_checklists, extend_works=_add_state, batch_size=2)
    indexer.full_sync()
    assert docs == _expected([1, 2, 5])


def test_full_sync_skips_page_when_append_checklists_fails():
    docs = []

    def append(details, s):
        for d in details:
            if (d["id"] - 1) // 2 == 1:
                raise RuntimeError("error on append check lists")
            d["checkList"] = [{"name": "checkitem"}]

    indexer = _indexer(index=_recorder(docs), load_works=_paged_works(5),
                       append_checklists=append, extend_works=_add_state, batch_size=2)
    indexer.full_sync()
    assert docs == _expected([1, 2, 5])


def test_full_sync_skips_page_when_extend_fails():
    docs = []

    def extend(details, s):
        for d in details:
            if (d["id"] - 1) // 2 == 1:
                raise RuntimeError("error on extend work details")
            d["state"] = {"name": "test"}
        return details

    indexer = _indexer(index=_recorder(docs), load_works=_paged_works(5),
                       append_checklists=_add_checklists, extend_works=extend, batch_size=2)
    indexer.full_sync()
    assert docs == _expected([1, 2, 5])


def test_full_sync_continues_when_index_fails():
    docs = []

    def index(name, id_, doc, s):
        if (id_ - 1) // 2 == 1:
            raise RuntimeError("error on load works")
        docs.append((name, id_, doc))

    indexer = _indexer(index=index, load_works=_paged_works(5),
                       append_checklists=_add_checklists, extend_works=_add_state, batch_size=2)
    indexer.full_sync()
    assert docs == _expected([1, 2, 5])


def test_recovery_requires_permission():
    with pytest.raises(ForbiddenError):
        _indexer().indexlog_recovery_routine(Session(perms=[SYSTEM_VIEW_PERMISSION]))


def test_recovery_indexes_pending_logs_and_obsoletes_missing_works():
    docs = []
    obsoleted = []

    def detail(identifier, s):
        if identifier == "3":
            raise RecordNotFoundError()
        return {"id": int(identifier), "state": {"name": "test"}}

    indexer = _indexer(index=_recorder(docs), load_pending_logs=_paged_logs(5), detail_work=detail,
                       obsolete_log=obsoleted.append, batch_size=2)
    indexer.indexlog_recovery_routine(Session(perms=[SYSTEM_RECOVERY_PERMISSION]))
    assert docs == [("works", i, WorkDocument({"id": i, "state": {"name": "test"}})) for i in (1, 2, 4, 5)]
    assert obsoleted == [3]


def test_recovery_continues_past_failures():
    docs = []
    paged = _paged_logs(7)

    def load(page, size):
        if page == 1:
            raise RuntimeError("error on load pending index logs")
        return paged(page, size)

    def detail(identifier, s):
        if identifier == "3":
            raise RecordNotFoundError()
        if identifier == "4":
            raise RuntimeError("error on detail work")
        return {"id": int(identifier), "state": {"name": "test"}}

    def index(name, id_, doc, s):
        if (id_ - 1) // 2 == 2:
            raise RuntimeError("error on load works")
        docs.append((name, id_, doc))

    indexer = _indexer(index=index, load_pending_logs=load, detail_work=detail,
                       obsolete_log=_fail("error on obsolete index log"), batch_size=2)
    indexer.indexlog_recovery_routine(Session(perms=[SYSTEM_ADMIN_PERMISSION]))
    assert docs == [("works", 7, WorkDocument({"id": 7, "state": {"name": "test"}}))]