from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.retryable = retryable


class AttendanceError(ApiError):
    status_code = 400
    code = "ATTENDANCE_ERROR"
    retryable = False

    def __init__(self, message: str):
        super().__init__(
            type(self).status_code,
            type(self).code,
            message,
            retryable=type(self).retryable,
        )


class ConfigNotFound(AttendanceError):
    status_code = 404
    code = "CONFIG_NOT_FOUND"

    def __init__(self, branch_id: int):
        super().__init__(f"Branch {branch_id} has no schedule configuration.")
        self.branch_id = branch_id


class BranchNotFound(AttendanceError):
    status_code = 404
    code = "BRANCH_NOT_FOUND"

    def __init__(self, branch_id: int):
        super().__init__(f"Branch {branch_id} not found.")
        self.branch_id = branch_id


class UnknownRole(AttendanceError):
    status_code = 403
    code = "UNKNOWN_ROLE"

    def __init__(self, role: object):
        super().__init__(f"Unrecognized role: {role!r}.")
        self.role = role


class ScopeForbidden(AttendanceError):
    status_code = 403
    code = "FORBIDDEN"


class InvalidSortField(AttendanceError):
    status_code = 422
    code = "INVALID_SORT_FIELD"

    def __init__(self, field: str, allowed: tuple[str, ...]):
        super().__init__(f"Cannot sort by {field!r}. Allowed fields: {', '.join(allowed)}.")
        self.field = field


class InvalidSortDirection(AttendanceError):
    status_code = 422
    code = "INVALID_SORT_DIRECTION"

    def __init__(self, direction: str):
        super().__init__(f"Sort direction must be 'asc' or 'desc', got {direction!r}.")
        self.direction = direction


class InvalidDateRange(AttendanceError):
    status_code = 422
    code = "INVALID_DATE_RANGE"


class UpstreamTimeout(AttendanceError):
    status_code = 504
    code = "UPSTREAM_TIMEOUT"
    retryable = True

    def __init__(self, source: str, timeout_seconds: float):
        super().__init__(f"{source} did not answer within {timeout_seconds:g} seconds.")
        self.source = source
        self.timeout_seconds = timeout_seconds


class UpstreamUnavailable(AttendanceError):
    status_code = 503
    code = "UPSTREAM_UNAVAILABLE"
    retryable = True

    def __init__(self, source: str, detail: str):
        super().__init__(f"{source} is unavailable: {detail}")
        self.source = source


class AggregationCancelled(AttendanceError):
    status_code = 499
    code = "REQUEST_CANCELLED"
    retryable = True

    def __init__(self) -> None:
        super().__init__("Aggregation was cancelled by the caller.")


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    retryable: bool = False,
) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
