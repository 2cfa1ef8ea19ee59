"""
Error taxonomy shared by services and routers.

Services raise these; the app-level handler in main.py renders them as
``{"error": message}`` JSON with the carried status code.
"""

from __future__ import annotations

from typing import Optional


class LeadRabbitError(Exception):
    """Base class for failures that map onto an HTTP status."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.code = code

    def to_payload(self) -> dict:
        payload = {"error": self.message}
        if self.code:
            payload["code"] = self.code
        return payload


class Unauthorized(LeadRabbitError):
    status_code = 401


class Forbidden(LeadRabbitError):
    status_code = 403


class NotFound(LeadRabbitError):
    """Resource absent, or not owned by the caller."""

    status_code = 404


class ValidationError(LeadRabbitError):
    status_code = 400


class UpstreamError(LeadRabbitError):
    """External provider unreachable or rejected the call."""

    status_code = 502


class DatabaseUnavailable(LeadRabbitError):
    status_code = 503
