from __future__ import annotations


class BillSplitError(Exception):
    pass


class ValidationError(BillSplitError, ValueError):
    """A write was rejected; nothing was persisted."""


class NotFoundError(BillSplitError, LookupError):
    pass


class ConflictError(BillSplitError):
    """Another write holds the event; the caller may retry."""

    retryable = True


class InvariantViolation(BillSplitError):
    """Derived money does not net to zero.

    Signals a ledger or arithmetic bug. It is logged where it is detected and
    must never be caught and corrected silently.
    """

    def __init__(self, message: str, *, event_id: int | None = None, residue: int | None = None) -> None:
        super().__init__(message)
        self.event_id = event_id
        self.residue = residue
