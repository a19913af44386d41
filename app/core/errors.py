"""
Exception handlers shared by every router.

Domain errors carry their own HTTP status and render as ``{"success": false, "error": ...}``,
the shape the admin console expects for rejected user/role operations.
"""
from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from app.features.admin_users.exceptions import AdminUserError
from app.utils import get_logger


log = get_logger(__name__)


async def request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """400 with a ``{field: message}`` map; nested locations are dotted (``userIds.0``)."""
    fields: dict[str, str] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        fields[".".join(loc) or "root"] = error.get("msg", "Invalid value")
    log.info("Request validation error %s", fields)
    return JSONResponse(status_code=400, content=jsonable_encoder(fields))


async def admin_user_error_handler(_request: Request, exc: AdminUserError) -> JSONResponse:
    log.info("Admin request rejected (%s): %s", type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse({"success": False, "error": "You are going too fast"}, status_code=429)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(AdminUserError, admin_user_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
