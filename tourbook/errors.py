from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class AppError(Exception):
    code: str
    message: str
    status_code: int
    field: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        payload = {"code": self.code, "message": self.message}
        if self.field:
            payload["field"] = self.field
        return payload


class BadRequestError(AppError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(code="BAD_REQUEST", message=message, status_code=400, field=field)


class NotFoundError(AppError):
    def __init__(self, message: str):
        super().__init__(code="NOT_FOUND", message=message, status_code=404)


class ForbiddenError(AppError):
    def __init__(self, message: str):
        super().__init__(code="FORBIDDEN", message=message, status_code=403)


class TourInactiveError(AppError):
    def __init__(self, message: str):
        super().__init__(code="INACTIVE", message=message, status_code=400)


class InvalidTransitionError(AppError):
    def __init__(self, message: str):
        super().__init__(code="INVALID_TRANSITION", message=message, status_code=409)


class InvalidStateError(AppError):
    def __init__(self, message: str):
        super().__init__(code="INVALID_STATE", message=message, status_code=400)


class AlreadyPaidError(AppError):
    def __init__(self, message: str = "booking already paid"):
        super().__init__(code="ALREADY_PAID", message=message, status_code=409)


class DuplicateError(AppError):
    def __init__(self, message: str):
        super().__init__(code="DUPLICATE", message=message, status_code=409)


class PaymentDeclinedError(AppError):
    def __init__(self, message: str):
        super().__init__(code="DECLINED", message=message, status_code=402)


class PaymentFailedError(AppError):
    def __init__(self, message: str):
        super().__init__(code="PAYMENT_FAILED", message=message, status_code=502)
