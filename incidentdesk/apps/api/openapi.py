from __future__ import annotations

from typing import Any

from incidentdesk.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response("Bad request", "VALIDATION_ERROR", "Title is required"),
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Authentication required"),
    403: _response(
        "Forbidden",
        "FEATURE_NOT_ENABLED",
        "Feature not enabled for organization plan",
        details={"feature_key": "problemManagement", "upgrade_available": True},
    ),
    404: _response("Not found", "NOT_FOUND", "Incident not found"),
    409: _response("Conflict", "CONFLICT", "User already exists in this organization"),
    422: _response("Request validation failed", "REQUEST_VALIDATION_ERROR", "Validation error"),
    500: _response("Internal error", "INTERNAL_ERROR", "Internal server error"),
}
