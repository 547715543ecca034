"""Error taxonomy and the uniform response envelope.

Every operation answers with the same envelope, whether it is called directly
or through an HTTP route:

    {"success": true, "data": ..., "status": 201}
    {"success": false, "error": {"message": ..., "details": {...}}, "status": 400}
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

import pydantic
from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import settings
from log import get_logger

logger = get_logger(__name__)

FieldErrors = Dict[str, List[str]]
ResponseType = Literal["api", "server"]


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    UNCLASSIFIED = "unclassified"

    @property
    def status_code(self) -> int:
        return {
            ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
            ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
            ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
            ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
            ErrorKind.UNCLASSIFIED: status.HTTP_500_INTERNAL_SERVER_ERROR,
        }[self]


class RequestError(Exception):
    """An expected failure with a known kind and HTTP status."""

    kind = ErrorKind.UNCLASSIFIED

    def __init__(self, message: str, details: Optional[FieldErrors] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return self.kind.status_code


class ValidationError(RequestError):
    kind = ErrorKind.VALIDATION

    def __init__(self, field_errors: FieldErrors):
        super().__init__(self.format_field_errors(field_errors), field_errors)

    @staticmethod
    def format_field_errors(errors: FieldErrors) -> str:
        parts = []
        for field, messages in errors.items():
            if messages and messages[0] == "required":
                parts.append(f"{field[:1].upper()}{field[1:]} is required")
            else:
                parts.append(" and ".join(messages))
        return ", ".join(parts)


class NotFoundError(RequestError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")


class ForbiddenError(RequestError):
    kind = ErrorKind.FORBIDDEN

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class UnauthorizedError(RequestError):
    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


# Response envelope

class ErrorBody(BaseModel):
    message: str
    details: Optional[FieldErrors] = None


class ActionResponse(BaseModel):
    success: bool
    data: Any = None
    error: Optional[ErrorBody] = None
    status: Optional[int] = None


def success(data: Any = None, status_code: int = status.HTTP_200_OK) -> ActionResponse:
    return ActionResponse(success=True, data=data, status=status_code)


def failure(status_code: int, message: str, details: Optional[FieldErrors] = None) -> ActionResponse:
    return ActionResponse(
        success=False,
        error=ErrorBody(message=message, details=details),
        status=status_code,
    )


def to_json_response(response: ActionResponse) -> JSONResponse:
    # Only the envelope's own empty keys are dropped; nulls inside data are kept
    content: Dict[str, Any] = {"success": response.success}
    if response.data is not None:
        content["data"] = response.data
    if response.error is not None:
        content["error"] = response.error.model_dump(exclude_none=True)
    if response.status is not None:
        content["status"] = response.status
    return JSONResponse(
        status_code=response.status or status.HTTP_200_OK,
        content=jsonable_encoder(content),
    )


def field_errors_from_pydantic(errors: List[Dict[str, Any]]) -> FieldErrors:
    """Flatten pydantic error dicts into {field: [messages]}.

    The field is the first location segment that is not a request section
    (body/query/path), so nested errors are reported on their top-level field.
    """
    result: FieldErrors = {}
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = loc[0] if loc else "root"
        message = "required" if error.get("type") == "missing" else error.get("msg", "Invalid value")
        result.setdefault(field, []).append(message)
    return result


def handle_error(
    error: BaseException, response_type: ResponseType = "server"
) -> Union[ActionResponse, JSONResponse]:
    """Log an error and format it as a failed envelope."""
    if isinstance(error, RequestError):
        logger.error(
            f"{response_type.upper()} Error: {error.message}",
            extra={"kind": error.kind.value, "status": error.status_code},
        )
        response = failure(error.status_code, error.message, error.details)
    elif isinstance(error, pydantic.ValidationError):
        validation_error = ValidationError(field_errors_from_pydantic(error.errors()))
        logger.error(f"Validation Error: {validation_error.message}")
        response = failure(validation_error.status_code, validation_error.message, validation_error.details)
    else:
        logger.exception("Unhandled error", exc_info=error)
        message = str(error) or "An unexpected error occurred"
        if settings.ENV == "prod":
            message = "An unexpected error occurred"
        response = failure(ErrorKind.UNCLASSIFIED.status_code, message)

    if response_type == "api":
        return to_json_response(response)
    return response


# FastAPI exception handlers

async def request_error_handler(request: Request, exc: RequestError) -> JSONResponse:
    return handle_error(exc, "api")


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return handle_error(ValidationError(field_errors_from_pydantic(list(exc.errors()))), "api")


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return handle_error(exc, "api")
