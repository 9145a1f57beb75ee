from __future__ import annotations

"""Error code taxonomy for per-item harvest failures.

Codes appear in the ``error_code`` field of structured log events and in the
per-phase telemetry so a run's operation log explains why an ID was dropped.
"""


class ErrorCode:
    NOT_FOUND = "not_found"
    INVALID_CONTENT = "invalid_content"
    NETWORK = "network_error"
    HTTP_4XX = "http_4xx"
    HTTP_5XX = "http_5xx"
    IO_WRITE = "io_write"
    STORE_WRITE = "store_write"
    INTERNAL = "internal_error"


def classify_http_status(status: int | None) -> str:
    if status is None:
        return ErrorCode.INTERNAL
    if status == 404:
        return ErrorCode.NOT_FOUND
    if 400 <= status < 500:
        return ErrorCode.HTTP_4XX
    if status >= 500:
        return ErrorCode.HTTP_5XX
    return ErrorCode.INTERNAL


__all__ = ["ErrorCode", "classify_http_status"]
