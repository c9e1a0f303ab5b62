"""Per-scan orchestration: normalize, resolve, transition, report."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Union

from .attendance import AttendanceStateMachine
from .directory import PersonRecord
from .errors import InvalidFormat, NotFound, ScanError
from .frames import FrameNormalizer, RawFrame, ScanEvent, ScanSource
from .ledger import AttendanceRecord, AttendanceStatus, AttendanceType
from .resolver import IdentityResolver
from .utils.logger import get_logger

LOGGER = get_logger("dispatcher")


class ScanMode(str, Enum):
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"
    REGISTER = "register"
    GENERAL = "general"

    @property
    def transition(self) -> Optional[AttendanceType]:
        if self is ScanMode.CHECK_IN:
            return AttendanceType.CHECK_IN
        if self is ScanMode.CHECK_OUT:
            return AttendanceType.CHECK_OUT
        return None


class OutcomeKind(str, Enum):
    ACCEPTED = "accepted"
    DETECTED = "detected"
    INVALID_FORMAT = "invalid-format"
    NOT_FOUND = "not-found"
    ALREADY_CHECKED_IN = "already-checked-in"
    ALREADY_CHECKED_OUT = "already-checked-out"
    NO_ACTIVE_SESSION = "no-active-session"
    LEDGER_WRITE_FAILURE = "ledger-write-failure"
    DEVICE_ERROR = "device-error"


_TITLES = {
    OutcomeKind.DETECTED: "Card Read Successfully",
    OutcomeKind.INVALID_FORMAT: "Invalid Card Format",
    OutcomeKind.NOT_FOUND: "Student Not Found",
    OutcomeKind.ALREADY_CHECKED_IN: "Already Checked In",
    OutcomeKind.ALREADY_CHECKED_OUT: "Already Checked Out",
    OutcomeKind.NO_ACTIVE_SESSION: "No Check-in Record",
    OutcomeKind.LEDGER_WRITE_FAILURE: "Error",
    OutcomeKind.DEVICE_ERROR: "Card Reader Error",
}


@dataclass(frozen=True)
class Outcome:
    """What happened to one scan, handed to the presentation layer as-is."""

    kind: OutcomeKind
    source: ScanSource
    message: str
    card_id: Optional[str] = None
    person: Optional[PersonRecord] = None
    record: Optional[AttendanceRecord] = None
    status: Optional[AttendanceStatus] = None
    at: datetime = field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.kind in (OutcomeKind.ACCEPTED, OutcomeKind.DETECTED)

    @property
    def title(self) -> str:
        if self.kind is OutcomeKind.ACCEPTED and self.record is not None:
            return "Welcome!" if self.record.type is AttendanceType.CHECK_IN else "Goodbye!"
        return _TITLES.get(self.kind, "Done")

    @classmethod
    def from_error(cls, exc: ScanError, source: ScanSource, card_id: Optional[str]) -> "Outcome":
        return cls(
            kind=OutcomeKind(exc.kind),
            source=source,
            message=str(exc),
            card_id=exc.credential_id or card_id,
            person=exc.person,
            status=exc.status,
        )


OutcomeListener = Callable[[Outcome], Any]


class ScanDispatcher:
    """Single entry point for device frames and manually typed ids.

    Both origins run the same pipeline, which stops at the first rejection:
    ``FrameNormalizer`` -> ``IdentityResolver`` -> ``AttendanceStateMachine``.
    In ``register`` and ``general`` mode the pipeline ends after
    normalization and reports the card id.
    """

    def __init__(
        self,
        normalizer: FrameNormalizer,
        resolver: IdentityResolver,
        state_machine: AttendanceStateMachine,
        *,
        mode: ScanMode = ScanMode.CHECK_IN,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._normalizer = normalizer
        self._resolver = resolver
        self._state_machine = state_machine
        self._clock = clock
        self._listeners: List[OutcomeListener] = []
        self.mode = mode
        self.last_scan_at: Optional[datetime] = None

    def add_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    async def handle_frame(self, frame: RawFrame) -> Outcome:
        return await self.handle_scan(frame)

    async def submit_manual_id(self, text: str) -> Outcome:
        return await self.handle_scan(text, ScanSource.MANUAL)

    async def handle_scan(
        self,
        frame: Union[RawFrame, str],
        source: ScanSource = ScanSource.MANUAL,
    ) -> Outcome:
        if isinstance(frame, RawFrame):
            source = frame.source
        card_id: Optional[str] = None
        try:
            card_id = self._normalizer.normalize(frame, source)
            event = ScanEvent(card_id=card_id, timestamp=self._clock(), source=source)
            self.last_scan_at = event.timestamp
            outcome = await self._process(event)
        except InvalidFormat as exc:
            outcome = Outcome.from_error(exc, source, card_id)
            if source is ScanSource.DEVICE:
                LOGGER.debug("Ignoring device frame: %s", exc)
                return outcome
        except ScanError as exc:
            outcome = Outcome.from_error(exc, source, card_id)
        self.publish(outcome)
        return outcome

    async def _process(self, event: ScanEvent) -> Outcome:
        requested = self.mode.transition
        if requested is None:
            return Outcome(
                kind=OutcomeKind.DETECTED,
                source=event.source,
                message=f"Card UID: {event.card_id}",
                card_id=event.card_id,
                at=event.timestamp,
            )

        person = await self._resolver.resolve(event.card_id)
        if person is None:
            raise NotFound(
                "Card not registered. Please register first or use manual entry.",
                credential_id=event.card_id,
            )
        try:
            record = await self._state_machine.request_transition(person, requested, event.source)
        except ScanError as exc:
            exc.person = exc.person or person
            exc.credential_id = event.card_id
            raise
        verb = "checked in" if requested is AttendanceType.CHECK_IN else "checked out"
        return Outcome(
            kind=OutcomeKind.ACCEPTED,
            source=event.source,
            message=f"{person.display_name} {verb} successfully via {event.source.value}",
            card_id=event.card_id,
            person=person,
            record=record,
            status=AttendanceStatus.CHECKED_IN
            if requested is AttendanceType.CHECK_IN
            else AttendanceStatus.CHECKED_OUT,
            at=record.timestamp,
        )

    def publish(self, outcome: Outcome) -> None:
        """Log ``outcome`` and hand it to every listener."""
        who = outcome.person.display_name if outcome.person else outcome.card_id or "?"
        if outcome.ok:
            LOGGER.info("%s: %s", outcome.title, outcome.message, layer="success")
        elif outcome.kind is OutcomeKind.LEDGER_WRITE_FAILURE:
            LOGGER.error("Ledger write failed for %s: %s", who, outcome.message)
        elif outcome.kind is OutcomeKind.DEVICE_ERROR:
            LOGGER.debug("Reporting reader failure: %s", outcome.message)
        else:
            LOGGER.log(logging.INFO, "%s (%s): %s", outcome.title, who, outcome.message, layer="reject")
        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Outcome listener %r failed", listener)
