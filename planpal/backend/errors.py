"""Error types raised by the fan-out engine and mapped by the transport layers."""

from __future__ import annotations


class PlannerError(Exception):
    status_code = 400
    reason = "invalid"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidPayloadError(PlannerError):
    status_code = 400
    reason = "invalid_payload"


class NotFoundError(PlannerError):
    status_code = 404
    reason = "not_found"


class ForbiddenError(PlannerError):
    status_code = 403
    reason = "forbidden"
