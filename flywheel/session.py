"""The authenticated session of a request."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flywheel.misc import parse_id


class Permissions(list):
    """The permission codes granted to a session."""

    def has_role(self, role: str) -> bool:
        return role in self


@dataclass
class Identity:
    id: int = 0
    name: str = ""
    nickname: str = ""


@dataclass
class Session:
    token: str = ""
    identity: Identity = field(default_factory=Identity)
    perms: Permissions = field(default_factory=Permissions)
    project_roles: list = field(default_factory=list)
    signing_time: datetime | None = None
    context: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.perms, Permissions):
            self.perms = Permissions(self.perms or [])

    def clone(self) -> "Session":
        """Return a shallow copy of this session."""
        return copy.copy(self)

    def visible_projects(self) -> list[int]:
        """Project ids named by permissions of the form ``<role>_<projectId>``."""
        projects = []
        for perm in self.perms:
            parts = perm.split("_")
            if len(parts) != 2:
                continue
            try:
                projects.append(parse_id(parts[1]))
            except ValueError:
                continue
        return projects