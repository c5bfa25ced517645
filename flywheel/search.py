"""Searching indexed works."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from flywheel.indices import WORK_INDEX_NAME
from flywheel.session import Session

SEARCH_SIZE = 10000


class ArchiveState(str, Enum):
    ON = "ON"
    OFF = "OFF"
    ALL = "ALL"


@dataclass
class WorkQuery:
    project_id: int = 0
    name: str = ""
    state_categories: list = field(default_factory=list)
    archive_state: ArchiveState | str = ""


def build_search_body(query: WorkQuery, visible_projects: list[int]) -> dict:
    """The search request body selecting the works ``query`` asks for."""
    filters: list[dict] = [
        {"term": {"projectId": query.project_id}},
        {"terms": {"projectId": list(visible_projects)}},
    ]
    if query.name:
        filters.append({"match": {"name": {"query": query.name, "operator": "AND"}}})
    if query.state_categories:
        filters.append({"terms": {"stateCategory": list(query.state_categories)}})

    if query.archive_state == ArchiveState.ON:
        filters.append({"exists": {"field": "archivedTime"}})
    elif query.archive_state != ArchiveState.ALL:
        filters.append({"bool": {"must_not": {"exists": {"field": "archivedTime"}}}})

    return {
        "size": SEARCH_SIZE,
        "query": {"bool": {"filter": filters}},
        "sort": [{"orderInState": {"order": "asc"}}],
    }


def search_works(query: WorkQuery, session: Session,
                 search: Callable[[str, dict, Session], dict],
                 extend_works: Callable[[list, Session], list],
                 index_name: str = WORK_INDEX_NAME) -> list[dict]:
    """Search works in projects visible to ``session`` and extend them."""
    visible = session.visible_projects()
    if not visible:
        return []

    response = search(index_name, build_search_body(query, visible), session)
    details = []
    for hit in response["hits"]["hits"]:
        source = hit["_source"]
        if isinstance(source, (bytes, bytearray)):
            source = source.decode()
        if isinstance(source, str):
            try:
                source = json.loads(source)
            except json.JSONDecodeError:
                raise ValueError(source) from None
        details.append(source)
    return extend_works(details, session)