"""HTTP endpoints that start index synchronisation and index log recovery."""

from __future__ import annotations

import json
import threading
import time
from http import HTTPStatus

from flywheel.indices import SYSTEM_RECOVERY_PERMISSION, ForbiddenError
from flywheel.misc import COMMON_INTERNAL_SERVER_ERROR, ErrorBody
from flywheel.session import Identity, Permissions, Session

PATH_INDEX_REQUESTS = "/v1/index-requests"
PATH_PENDING_INDEX_RECOVERY = "/v1/pending-index-log-recovery"
SESSION_ENVIRON_KEY = "flywheel.session"

ANONYMOUS_RECOVERY_INVOKER = Session(
    identity=Identity(id=11, name="anonymous-invoker"),
    perms=Permissions([SYSTEM_RECOVERY_PERMISSION]),
)


class RateLimiter:
    """Token bucket: one token every ``interval`` seconds, holding at most ``burst``."""

    def __init__(self, interval: float, burst: int = 1):
        self.interval = interval
        self.burst = burst
        self._tokens = float(burst)
        self._last = time.monotonic()
        self._lock = threading.Lock()

    def allow(self) -> bool:
        if self.interval <= 0:
            return True
        with self._lock:
            now = time.monotonic()
            self._tokens = min(self.burst, self._tokens + (now - self._last) / self.interval)
            self._last = now
            if self._tokens < 1:
                return False
            self._tokens -= 1
            return True


class IndicesRestApi:
    """WSGI application serving the index request endpoints."""

    def __init__(self, schedule_sync, recover_index_logs, limiter: RateLimiter | None = None):
        self._schedule_sync = schedule_sync
        self._recover_index_logs = recover_index_logs
        self.limiter = limiter or RateLimiter(60.0, 1)

    def handle_index_request(self, session: Session) -> tuple[int, dict]:
        return HTTPStatus.OK, {"result": self._schedule_sync(session)}

    def handle_pending_index_recovery(self) -> tuple[int, dict]:
        if not self.limiter.allow():
            return HTTPStatus.OK, {"result": "request rate limited"}
        self._recover_index_logs(ANONYMOUS_RECOVERY_INVOKER)
        return HTTPStatus.CREATED, {"result": "started"}

    def __call__(self, environ, start_response):
        path = environ.get("PATH_INFO", "")
        if environ.get("REQUEST_METHOD", "GET").upper() != "POST" or path not in (
                PATH_INDEX_REQUESTS, PATH_PENDING_INDEX_RECOVERY):
            return _respond(start_response, HTTPStatus.NOT_FOUND, b"404 page not found", "text/plain")
        try:
            if path == PATH_INDEX_REQUESTS:
                status, body = self.handle_index_request(environ.get(SESSION_ENVIRON_KEY) or Session())
            else:
                status, body = self.handle_pending_index_recovery()
        except ForbiddenError as err:
            status, body = HTTPStatus.FORBIDDEN, ErrorBody("common.forbidden", str(err)).to_dict()
        except Exception as err:
            status, body = HTTPStatus.INTERNAL_SERVER_ERROR, ErrorBody(
                COMMON_INTERNAL_SERVER_ERROR, str(err)).to_dict()
        return _respond(start_response, status, json.dumps(body).encode(), "application/json")


def _respond(start_response, status: int, payload: bytes, content_type: str):
    code = HTTPStatus(status)
    start_response(f"{code.value} {code.phrase}",
                   [("Content-Type", content_type), ("Content-Length", str(len(payload)))])
    return [payload]