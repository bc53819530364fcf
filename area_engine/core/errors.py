"""
Custom exception hierarchy for the AREA engine.

Rule: every HTTP error has a machine-readable `code` string so clients
can branch on it without parsing English messages.

Validation errors (unknown action/reaction, bad config, unlinked provider)
surface synchronously from `bind`. ProviderUnavailableError is absorbed by
detectors and ExecutionFailureError is recorded in the execution log; they
only reach HTTP when raised outside the detection loop.
"""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class AreaException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class UnknownActionError(AreaException):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "UNKNOWN_ACTION"

    def __init__(self, action_name: str):
        super().__init__(
            message=f"Action '{action_name}' not found.",
            details={"action": action_name},
        )


class UnknownReactionError(AreaException):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "UNKNOWN_REACTION"

    def __init__(self, reaction_name: str):
        super().__init__(
            message=f"Reaction '{reaction_name}' not found.",
            details={"reaction": reaction_name},
        )


class InvalidConfigError(AreaException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_CONFIG"

    def __init__(self, item: str, field: str, reason: str):
        super().__init__(
            message=f"Invalid field '{field}' for '{item}': {reason}.",
            details={"item": item, "field": field, "reason": reason},
        )
        self.field = field


class ProviderNotLinkedError(AreaException):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "PROVIDER_NOT_LINKED"

    def __init__(self, provider: str, reason: str = "not linked"):
        super().__init__(
            message=(
                f"You must link your {provider} account before using this "
                f"action or reaction ({reason})."
            ),
            details={"provider": provider, "reason": reason},
        )
        self.provider = provider


class ProviderUnavailableError(AreaException):
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str, reason: str):
        super().__init__(
            message=f"Provider {provider} is temporarily unavailable: {reason}.",
            details={"provider": provider, "reason": reason},
        )
        self.provider = provider


class ExecutionFailureError(AreaException):
    http_status = status.HTTP_502_BAD_GATEWAY
    code = "EXECUTION_FAILURE"

    def __init__(self, reaction: str, reason: str):
        super().__init__(
            message=f"Reaction '{reaction}' failed: {reason}.",
            details={"reaction": reaction, "reason": reason},
        )


class InvalidBindingIdError(AreaException):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "INVALID_AREA_ID"

    def __init__(self, binding_id: str):
        super().__init__(
            message="Invalid area id format (expected a UUID).",
            details={"area_id": binding_id},
        )


class BindingNotFoundError(AreaException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "AREA_NOT_FOUND"

    def __init__(self, binding_id: str):
        super().__init__(
            message=f"Area {binding_id} not found.",
            details={"area_id": binding_id},
        )


class DuplicateBindingError(AreaException):
    http_status = status.HTTP_409_CONFLICT
    code = "AREA_CONFLICT"

    def __init__(self, action_name: str, resource: str, existing_id: str):
        super().__init__(
            message=(
                f"An active area already watches '{resource}' with '{action_name}'; "
                "deactivate it first."
            ),
            details={"action": action_name, "resource": resource, "existing_area_id": existing_id},
        )


class BindingOwnershipError(AreaException):
    http_status = status.HTTP_403_FORBIDDEN
    code = "AREA_FORBIDDEN"

    def __init__(self, binding_id: str):
        super().__init__(
            message="You do not own this area.",
            details={"area_id": binding_id},
        )


class NoPlaceholdersError(AreaException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "NO_PLACEHOLDERS"

    def __init__(self, action_name: str):
        super().__init__(
            message=f"No placeholders available for action '{action_name}'.",
            details={"action": action_name},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def area_exception_handler(request: Request, exc: AreaException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
