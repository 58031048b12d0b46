"""Domain errors shared by the services, the HTTP layer and the client.

Services raise these; `gamefeed.main` renders them as ``{"detail", "code"}``
JSON bodies and the client maps the status codes back to the same classes.
"""

from __future__ import annotations


class EngineError(Exception):
    status_code: int = 400
    code: str = "error"
    detail: str = "Request failed"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class Unauthorized(EngineError):
    status_code = 401
    code = "unauthorized"
    detail = "Not authenticated"


class ValidationError(EngineError):
    status_code = 400
    code = "validation_error"
    detail = "Invalid request"


class Conflict(EngineError):
    status_code = 409
    code = "conflict"
    detail = "Conflicting write"


class DuplicateEdge(Conflict):
    code = "duplicate_edge"
    detail = "A friend relationship already exists between these users"


class NotFound(EngineError):
    status_code = 404
    code = "not_found"
    detail = "Not found"


class Forbidden(EngineError):
    status_code = 403
    code = "forbidden"
    detail = "Not allowed"


class NotRecipient(Forbidden):
    code = "not_recipient"
    detail = "Only the recipient can accept a friend request"


class CooldownActive(EngineError):
    status_code = 429
    code = "cooldown_active"
    detail = "Activity posted too recently"

    def __init__(self, detail: str | None = None, retry_after: int = 0) -> None:
        super().__init__(detail)
        self.retry_after = retry_after


class TransientStoreError(EngineError):
    status_code = 503
    code = "transient_store_error"
    detail = "Store temporarily unavailable"


_BY_CODE: dict[str, type[EngineError]] = {
    cls.code: cls
    for cls in (
        Unauthorized,
        ValidationError,
        Conflict,
        DuplicateEdge,
        NotFound,
        Forbidden,
        NotRecipient,
        CooldownActive,
        TransientStoreError,
    )
}

_BY_STATUS: dict[int, type[EngineError]] = {
    401: Unauthorized,
    400: ValidationError,
    422: ValidationError,
    409: Conflict,
    404: NotFound,
    403: Forbidden,
    429: CooldownActive,
    503: TransientStoreError,
}


def error_for(status_code: int, code: str | None = None, detail: str | None = None) -> EngineError:
    """Rebuild a domain error from an HTTP status (and optional error code)."""
    cls = _BY_CODE.get(code or "") or _BY_STATUS.get(status_code)
    if cls is None:
        cls = TransientStoreError if status_code >= 500 else ValidationError
    return cls(detail)
