"""Time-ordered 64-bit identifiers: 39 bits of time, 8 of sequence, 16 of machine id."""

from __future__ import annotations

import os
import socket
import threading
import time
from datetime import datetime, timedelta, timezone

_SEQUENCE_BITS = 8
_MACHINE_BITS = 16
_TIME_LIMIT = 1 << 39
_UNIT_NS = 10_000_000
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _default_machine_id() -> int:
    try:
        octets = [int(p) for p in socket.gethostbyname(socket.gethostname()).split(".")]
        return (octets[2] << 8) | octets[3]
    except (OSError, ValueError, IndexError):
        return os.getpid() & 0xFFFF


class IdWorker:
    """Generates unique, increasing identifiers; safe to share between threads."""

    def __init__(self, machine_id: int | None = None, start_time: datetime | None = None):
        start_time = (start_time or datetime(2014, 9, 1, tzinfo=timezone.utc)).astimezone()
        if start_time > datetime.now(timezone.utc):
            raise ValueError("start time is ahead of now")
        machine_id = _default_machine_id() if machine_id is None else machine_id
        if not 0 <= machine_id < 1 << _MACHINE_BITS:
            raise ValueError(f"machine id {machine_id} does not fit in {_MACHINE_BITS} bits")
        self.machine_id = machine_id
        self._start = (start_time - _EPOCH) // timedelta(milliseconds=10)
        self._elapsed = 0
        self._sequence = (1 << _SEQUENCE_BITS) - 1
        self._lock = threading.Lock()

    def next_id(self) -> int:
        """Return the next identifier; raises OverflowError past the time limit."""
        with self._lock:
            current = time.time_ns() // _UNIT_NS - self._start
            if self._elapsed < current:
                self._elapsed, self._sequence = current, 0
            else:
                self._sequence = (self._sequence + 1) % (1 << _SEQUENCE_BITS)
                if self._sequence == 0:
                    self._elapsed += 1
                    pause = (self._elapsed - current) * _UNIT_NS - time.time_ns() % _UNIT_NS
                    if pause > 0:
                        time.sleep(pause / 1e9)
            if self._elapsed >= _TIME_LIMIT:
                raise OverflowError("over the time limit")
            return (self._elapsed << (_SEQUENCE_BITS + _MACHINE_BITS)) | (
                self._sequence << _MACHINE_BITS) | self.machine_id


def next_id(worker: IdWorker) -> int:
    """Return the next identifier of ``worker``."""
    return worker.next_id()