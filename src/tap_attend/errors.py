"""Typed failures raised along the scan pipeline.

Each exception maps to one user-visible outcome kind. Components raise them
at their own boundary and the dispatcher turns them into ``Outcome`` values,
so none of them ever escapes ``ScanDispatcher.handle_scan``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .directory import PersonRecord
    from .ledger import AttendanceStatus


class ScanError(Exception):
    """Base class for every failure reported back to the presentation layer."""

    kind = "error"

    def __init__(
        self,
        message: str,
        *,
        credential_id: Optional[str] = None,
        person: Optional["PersonRecord"] = None,
        status: Optional["AttendanceStatus"] = None,
    ) -> None:
        super().__init__(message)
        self.credential_id = credential_id
        self.person = person
        self.status = status


class InvalidFormat(ScanError):
    kind = "invalid-format"


class NotFound(ScanError):
    kind = "not-found"


class TransitionRejected(ScanError):
    """The requested check-in/check-out conflicts with the current status."""


class AlreadyCheckedIn(TransitionRejected):
    kind = "already-checked-in"


class AlreadyCheckedOut(TransitionRejected):
    kind = "already-checked-out"


class NoActiveSession(TransitionRejected):
    kind = "no-active-session"


class LedgerWriteFailure(ScanError):
    kind = "ledger-write-failure"


class DeviceError(ScanError):
    kind = "device-error"
