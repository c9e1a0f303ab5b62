"""Per-person check-in/check-out guard."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Dict

from .directory import PersonRecord
from .errors import AlreadyCheckedIn, AlreadyCheckedOut, LedgerWriteFailure, NoActiveSession
from .frames import ScanSource
from .ledger import AttendanceRecord, AttendanceStatus, AttendanceType, LedgerGateway
from .utils.logger import get_logger

LOGGER = get_logger("attendance")


class AttendanceStateMachine:
    """Decide whether a transition is legal and append it to the ledger.

    ``Unknown`` and ``CheckedOut`` both allow a check-in; only ``CheckedIn``
    allows a check-out. The status read and the append run under one lock per
    person, so two concurrent requests for the same person cannot both pass
    the check.
    """

    def __init__(self, ledger: LedgerGateway, clock: Callable[[], datetime] = datetime.now) -> None:
        self._ledger = ledger
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, person_id: str) -> asyncio.Lock:
        lock = self._locks.get(person_id)
        if lock is None:
            lock = self._locks[person_id] = asyncio.Lock()
        return lock

    async def request_transition(
        self,
        person: PersonRecord,
        requested: AttendanceType,
        method: ScanSource = ScanSource.DEVICE,
    ) -> AttendanceRecord:
        """Append the requested transition for ``person`` and return the record.

        Raises ``AlreadyCheckedIn``, ``AlreadyCheckedOut`` or ``NoActiveSession``
        when the current status forbids it, and ``LedgerWriteFailure`` when the
        ledger cannot be read or written. The lock is released in every case.
        """
        async with self._lock_for(person.person_id):
            status = await self._ledger.get_current_status(person.person_id)
            self._check(person, requested, status)
            record = AttendanceRecord(
                person_id=person.person_id,
                display_name=person.display_name,
                timestamp=self._clock(),
                type=requested,
                method=method,
            )
            try:
                await self._ledger.append(record)
            except LedgerWriteFailure as exc:
                exc.person = person
                exc.credential_id = person.credential_id
                exc.status = status
                raise
            LOGGER.debug("Appended %s for %s (was %s)", requested.value, person.person_id, status.value)
            return record

    @staticmethod
    def _check(person: PersonRecord, requested: AttendanceType, status: AttendanceStatus) -> None:
        if requested is AttendanceType.CHECK_IN:
            if status is AttendanceStatus.CHECKED_IN:
                raise AlreadyCheckedIn(
                    f"{person.display_name} is already checked in. Please check out first.",
                    person=person,
                    status=status,
                )
            return
        if status is AttendanceStatus.CHECKED_OUT:
            raise AlreadyCheckedOut(
                f"{person.display_name} is not currently checked in.",
                person=person,
                status=status,
            )
        if status is AttendanceStatus.UNKNOWN:
            raise NoActiveSession(
                f"{person.display_name} has no active check-in record.",
                person=person,
                status=status,
            )
