"""Error envelopes for failures raised outside the endpoint bodies.

Request validation failures answer 400 with one code per offending field:

    {"error": {"birthDate": "INVALID", "email": "REQUIRED"}}

Anything unhandled answers 500 ``{"error": {"code": "INTERNAL_SERVER_ERROR"}}``.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from birthdays.core.logging import get_logger

logger = get_logger(__name__)

REQUIRED = "REQUIRED"
INVALID = "INVALID"
INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


def validation_error_fields(errors: list[dict]) -> dict[str, str]:
    """Map validation errors to ``{field: REQUIRED | INVALID}``.

    The field is the last element of the error location, which for request
    bodies is the field's API name (``firstName``, not ``first_name``). The
    first error reported for a field wins.
    """
    fields: dict[str, str] = {}
    for error in errors:
        loc = error.get("loc") or ("body",)
        code = REQUIRED if error.get("type") == "missing" else INVALID
        fields.setdefault(str(loc[-1]), code)
    return fields


def setup_error_handlers(app: FastAPI) -> None:
    """Register the validation and catch-all handlers on ``app``."""

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = validation_error_fields(exc.errors())
        logger.bind(path=request.url.path, fields=fields).info("request_rejected")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": fields},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.bind(path=request.url.path, error=str(exc)).exception("request_failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": {"code": INTERNAL_SERVER_ERROR}},
        )
