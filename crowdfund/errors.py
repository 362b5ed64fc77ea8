from __future__ import annotations

from typing import Any, Dict, List, Optional


class ApiError(Exception):
    """An error that renders as the JSON error envelope with the given status."""

    def __init__(self, message: str, status: int = 400, *, details: Optional[List[str]] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        self.status = int(status)
        self.extra: Dict[str, Any] = dict(extra)
        if details:
            self.extra["details"] = list(details)


class InvalidTransition(ApiError):
    """A lifecycle transition that the current state does not allow."""

    def __init__(self, kind: str, current: str, target: str):
        super().__init__(
            f"Cannot move {kind} from '{current}' to '{target}'",
            409,
            current_status=current,
            requested_status=target,
        )


class PaymentError(ApiError):
    def __init__(self, detail: str = ""):
        extra = {"detail": detail} if detail else {}
        super().__init__("Payment processing failed", 400, **extra)
