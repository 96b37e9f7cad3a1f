"""Translate service errors into HTTP responses."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status
from loguru import logger

from giftbridge_api.services.errors import (
    INVENTORY_CONFLICT_REASONS,
    ConflictError,
    GiftBridgeError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)


def error_detail(exc: GiftBridgeError) -> dict[str, Any]:
    detail: dict[str, Any] = {"error": exc.message}
    if isinstance(exc, ValidationError):
        detail["errors"] = [error.as_dict() for error in exc.errors]
    if isinstance(exc, ConflictError):
        detail["reason"] = exc.reason.value
    return detail


def status_code_for(exc: GiftBridgeError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConflictError):
        if exc.reason in INVENTORY_CONFLICT_REASONS:
            return 422
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(exc: GiftBridgeError) -> HTTPException:
    code = status_code_for(exc)
    if isinstance(exc, PersistenceError) or code >= 500:
        logger.error("Request failed in persistence layer", operation=exc.operation, error=exc.message)
        return HTTPException(status_code=code, detail={"error": "Internal server error"})
    return HTTPException(status_code=code, detail=error_detail(exc))


__all__ = ["error_detail", "status_code_for", "to_http_exception"]
