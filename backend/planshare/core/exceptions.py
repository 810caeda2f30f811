"""RFC 7807 Problem Details error handling and the collaboration error taxonomy."""

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


class ProblemDetailError(Exception):
    """Raise for RFC 7807 problem+json responses."""

    def __init__(
        self,
        status: int,
        title: str,
        detail: str,
        error_type: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        super().__init__(detail)
        self.status = status
        self.title = title
        self.detail = detail
        self.error_type = error_type or "about:blank"
        self.extra = extra or {}


class CollaborationError(ProblemDetailError):
    """Base for domain failures. Subclasses pin ``kind``, status and title."""

    kind = "error"
    status_code = 400
    default_title = "Error"

    def __init__(self, detail: str, **extra: Any):
        super().__init__(
            status=self.status_code,
            title=self.default_title,
            detail=detail,
            extra={"kind": self.kind, **extra},
        )


class Unauthenticated(CollaborationError):
    kind = "unauthenticated"
    status_code = 401
    default_title = "Unauthenticated"


class Forbidden(CollaborationError):
    kind = "forbidden"
    status_code = 403
    default_title = "Forbidden"


class NotFound(CollaborationError):
    kind = "not_found"
    status_code = 404
    default_title = "Not Found"


class VersionConflict(CollaborationError):
    """Stale ``expected_version``. The caller must re-fetch before retrying."""

    kind = "version_conflict"
    status_code = 409
    default_title = "Version Conflict"

    def __init__(self, detail: str, current_version: int | None = None):
        super().__init__(detail, current_version=current_version)
        self.current_version = current_version


class InvalidOrExpiredToken(CollaborationError):
    kind = "invalid_or_expired_token"
    status_code = 410
    default_title = "Invalid Or Expired Token"


class AlreadyMember(CollaborationError):
    kind = "already_member"
    status_code = 409
    default_title = "Already Member"


class AlreadyInvited(CollaborationError):
    kind = "already_invited"
    status_code = 409
    default_title = "Already Invited"


class InvalidRole(CollaborationError):
    kind = "invalid_role"
    status_code = 422
    default_title = "Invalid Role"


class InvalidOperation(CollaborationError):
    kind = "invalid_operation"
    status_code = 400
    default_title = "Invalid Operation"


class ConstraintViolation(CollaborationError):
    kind = "constraint_violation"
    status_code = 409
    default_title = "Constraint Violation"


async def problem_detail_handler(request: Request, exc: ProblemDetailError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status,
        content={
            "type": exc.error_type,
            "title": exc.title,
            "status": exc.status,
            "detail": exc.detail,
            "instance": str(request.url.path),
            **exc.extra,
        },
        media_type="application/problem+json",
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "type": "about:blank",
            "title": exc.detail if isinstance(exc.detail, str) else "Error",
            "status": exc.status_code,
            "detail": exc.detail,
            "instance": str(request.url.path),
        },
        media_type="application/problem+json",
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "type": "about:blank",
            "title": "Validation Error",
            "status": 422,
            "detail": jsonable_errors(exc),
            "instance": str(request.url.path),
        },
        media_type="application/problem+json",
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    # pydantic puts the raised ValueError under ctx["error"], which json can't encode
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        errors.append(err)
    return errors
