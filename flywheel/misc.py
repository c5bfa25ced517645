"""Response bodies, message codes and identifier parsing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

COMMON_INTERNAL_SERVER_ERROR = "common.internal_server_error"


@dataclass
class ErrorBody:
    code: str
    message: str
    data: Any = None

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "data": self.data}


@dataclass
class PagedBody:
    items: Any
    total: int

    def to_dict(self) -> dict:
        return {"data": self.items, "total": self.total}


def parse_id(value) -> int:
    """Parse an unsigned 64-bit decimal identifier; raises ValueError."""
    text = str(value)
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f'strconv.ParseUint: parsing "{text}": invalid syntax')
    if int(text) >= 1 << 64:
        raise ValueError(f'strconv.ParseUint: parsing "{text}": value out of range')
    return int(text)