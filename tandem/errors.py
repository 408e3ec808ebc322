"""Exception types raised by the partnership lifecycle."""

from __future__ import annotations

from typing import Optional


class TandemError(Exception):
    """Base exception for all partnership lifecycle errors."""

    status_code = 400


class InvalidArgument(TandemError, ValueError):
    """Raised when caller input is malformed (missing ids, bad dates, metric out of range)."""

    status_code = 400


class InvalidState(TandemError):
    """Raised when a transition is not legal from the current status."""

    status_code = 409

    def __init__(self, message: str, current: Optional[str] = None):
        self.current = current
        super().__init__(message)


class ConflictError(TandemError):
    """Raised when approval would break the one‑active‑partnership rule."""

    status_code = 409

    def __init__(self, field: str, value: str, existing_id: Optional[str] = None):
        """
        Args:
            field: ``"course"`` or ``"project"``.
            value: The course or project id already engaged.
            existing_id: Id of the active partnership holding it, if known.
        """
        self.field = field
        self.value = value
        self.existing_id = existing_id
        super().__init__(f"This {field} is already in an active partnership")


class PermissionDenied(TandemError):
    """Raised when the acting user is not the party allowed to perform an action."""

    status_code = 403

    def __init__(self, user_id: str, action: str):
        self.user_id = user_id
        self.action = action
        super().__init__(f"User {user_id} is not allowed to {action} this partnership")


class NotFound(TandemError):
    """Raised when a partnership id does not exist."""

    status_code = 404

    def __init__(self, partnership_id: str):
        self.partnership_id = partnership_id
        super().__init__(f"Partnership '{partnership_id}' not found")


def http_status(exc: BaseException) -> int:
    """HTTP status an outer API layer should answer with for *exc*."""
    if isinstance(exc, TandemError):
        return exc.status_code
    return 500
