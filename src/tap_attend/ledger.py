"""Attendance records, status derivation and ledger gateways."""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from .errors import LedgerWriteFailure
from .frames import ScanSource
from .utils.logger import get_logger

LOGGER = get_logger("ledger")


class AttendanceType(str, Enum):
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"


class AttendanceStatus(str, Enum):
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"
    UNKNOWN = "unknown"


_STATUS_BY_TYPE = {
    AttendanceType.CHECK_IN: AttendanceStatus.CHECKED_IN,
    AttendanceType.CHECK_OUT: AttendanceStatus.CHECKED_OUT,
}


@dataclass(frozen=True)
class AttendanceRecord:
    """A single ledger line. Never mutated once appended."""

    person_id: str
    display_name: str
    timestamp: datetime
    type: AttendanceType
    method: ScanSource

    def to_dict(self) -> Dict[str, Any]:
        return {
            "personId": self.person_id,
            "displayName": self.display_name,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type.value,
            "method": self.method.value,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AttendanceRecord":
        if not isinstance(payload, dict):
            raise ValueError(f"Attendance record must be an object, not {type(payload).__name__}")
        try:
            return cls(
                person_id=str(payload["personId"]),
                display_name=str(payload["displayName"]),
                timestamp=datetime.fromisoformat(payload["timestamp"]),
                type=AttendanceType(payload["type"]),
                method=ScanSource(payload["method"]),
            )
        except KeyError as exc:
            raise ValueError(f"Attendance record missing field: {exc.args[0]}") from exc
        except TypeError as exc:
            raise ValueError(f"Attendance record has a field of the wrong type: {exc}") from exc


def compute_status(records: Iterable[AttendanceRecord], person_id: str) -> AttendanceStatus:
    """Derive a person's status from the latest record in ledger order."""
    latest: Optional[AttendanceRecord] = None
    for record in records:
        if record.person_id == person_id:
            latest = record
    if latest is None:
        return AttendanceStatus.UNKNOWN
    return _STATUS_BY_TYPE[latest.type]


class LedgerGateway(Protocol):
    async def get_current_status(self, person_id: str) -> AttendanceStatus:
        """Return the status derived from the person's latest record."""

    async def append(self, record: AttendanceRecord) -> None:
        """Durably append ``record`` or raise ``LedgerWriteFailure``."""


class MemoryLedger:
    """Process-local ledger, used for dry runs and tests."""

    def __init__(self, records: Iterable[AttendanceRecord] = ()) -> None:
        self._records: List[AttendanceRecord] = list(records)

    @property
    def records(self) -> List[AttendanceRecord]:
        return list(self._records)

    def history(self, person_id: str) -> List[AttendanceRecord]:
        return [record for record in self._records if record.person_id == person_id]

    async def get_current_status(self, person_id: str) -> AttendanceStatus:
        return compute_status(self._records, person_id)

    async def append(self, record: AttendanceRecord) -> None:
        self._records.append(record)


class JsonlLedger:
    """Append-only JSON-lines ledger file.

    Each append is flushed and fsynced before it is acknowledged. The latest
    status per person is cached and rebuilt whenever the file's size or
    modification time no longer matches what this instance last saw, so
    records appended by another process (``tap-attend manual`` next to a
    running kiosk) are picked up on the next status query. Reads and appends
    from one instance are serialized.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._latest: Optional[Dict[str, AttendanceStatus]] = None
        self._seen: Optional[Tuple[int, int]] = None
        self._lock = asyncio.Lock()

    def read_records(self) -> List[AttendanceRecord]:
        if not self.path.exists():
            return []
        records = []
        with self.path.open("rb") as handle:
            for line_no, raw in enumerate(handle, 1):
                try:
                    line = raw.decode("utf-8").strip()
                    if not line:
                        continue
                    records.append(AttendanceRecord.from_dict(json.loads(line)))
                except ValueError as exc:
                    LOGGER.warning("Skipping malformed ledger line %d in %s: %s", line_no, self.path, exc)
        return records

    def history(self, person_id: str) -> List[AttendanceRecord]:
        return [record for record in self.read_records() if record.person_id == person_id]

    async def get_current_status(self, person_id: str) -> AttendanceStatus:
        async with self._lock:
            try:
                stamp = await asyncio.to_thread(self._stamp)
                if self._latest is None or stamp != self._seen:
                    self._latest, self._seen = await asyncio.to_thread(self._load)
            except (OSError, ValueError) as exc:
                raise LedgerWriteFailure(f"Cannot read ledger {self.path}: {exc}") from exc
            return self._latest.get(person_id, AttendanceStatus.UNKNOWN)

    async def append(self, record: AttendanceRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        async with self._lock:
            try:
                before, after = await asyncio.to_thread(self._write_line, line)
            except OSError as exc:
                raise LedgerWriteFailure(f"Cannot append to ledger {self.path}: {exc}") from exc
            if self._latest is not None and before == self._seen:
                self._latest[record.person_id] = _STATUS_BY_TYPE[record.type]
                self._seen = after
            else:
                # never loaded, or the file changed on disk since the last load
                self._latest = None

    def _stamp(self) -> Optional[Tuple[int, int]]:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def _load(self) -> Tuple[Dict[str, AttendanceStatus], Optional[Tuple[int, int]]]:
        stamp = self._stamp()
        latest: Dict[str, AttendanceStatus] = {}
        for record in self.read_records():
            latest[record.person_id] = _STATUS_BY_TYPE[record.type]
        return latest, stamp

    def _write_line(self, line: str) -> Tuple[Optional[Tuple[int, int]], Optional[Tuple[int, int]]]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        before = self._stamp()
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
            handle.flush()
            os.fsync(handle.fileno())
        return before, self._stamp()
