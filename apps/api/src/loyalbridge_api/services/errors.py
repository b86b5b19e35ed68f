"""Domain exceptions shared by the loyalty workflows and upstream clients."""

from __future__ import annotations

from typing import Any


class LoyaltyError(RuntimeError):
    """Base error carrying the HTTP status and machine-readable code to render."""

    status_code: int = 400
    code: str = "loyalty_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class LoyaltyValidationError(LoyaltyError):
    code = "validation_failed"


class InsufficientPointsError(LoyaltyError):
    code = "insufficient_points"

    def __init__(self, *, balance: int, required: int) -> None:
        super().__init__(
            "Insufficient points",
            details={"balance": balance, "required": required},
        )
        self.balance = balance
        self.required = required


class LoyaltyNotFoundError(LoyaltyError):
    status_code = 404
    code = "not_found"


class UpstreamError(LoyaltyError):
    """Square or Shopify answered with an error, or an unusable body."""

    code = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        service: str,
        upstream_status: int | None = None,
        body: str | None = None,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        if status_code is None:
            if upstream_status == 404:
                status_code = 404
            elif upstream_status is not None and upstream_status >= 500:
                status_code = 502
        super().__init__(message, code=code, status_code=status_code)
        self.service = service
        self.upstream_status = upstream_status
        self.body = body


class UpstreamTimeoutError(UpstreamError):
    status_code = 503
    code = "upstream_timeout"

    def as_payload(self) -> dict[str, Any]:
        payload = super().as_payload()
        payload["retryable"] = True
        return payload


__all__ = [
    "InsufficientPointsError",
    "LoyaltyError",
    "LoyaltyNotFoundError",
    "LoyaltyValidationError",
    "UpstreamError",
    "UpstreamTimeoutError",
]
