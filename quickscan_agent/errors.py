from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """An error with a user-facing message and an HTTP status."""

    status_code = 500

    def __init__(self, error: str, **extra: Any) -> None:
        super().__init__(error)
        self.error = error
        self.extra = extra

    def payload(self) -> dict[str, Any]:
        return {"error": self.error, **self.extra}


class InvalidInput(ServiceError):
    status_code = 400


class SiteUnreachable(ServiceError):
    status_code = 400


class NotFound(ServiceError):
    status_code = 404


class QuotaExceeded(ServiceError):
    status_code = 429

    def __init__(self, kind: str, current: int, maximum: int, contact_email: str) -> None:
        noun = "scans" if kind == "scan" else "expanded reports"
        super().__init__(
            "Limit reached",
            message=(
                f"You have reached your limit of {maximum} free {noun}. "
                f"Want more free credits? Email {contact_email} with your request."
            ),
            limitReached=True,
            limitType=kind,
            maxLimit=maximum,
            currentCount=current,
        )
        self.kind = kind
        self.current = current
        self.maximum = maximum


class PersistenceFailed(ServiceError):
    status_code = 500
