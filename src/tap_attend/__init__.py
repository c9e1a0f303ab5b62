"""Card-reader attendance kiosk: scan ingestion and attendance-state pipeline."""

from .attendance import AttendanceStateMachine
from .device import ConnectionState, DeviceSessionManager, SerialTransport
from .directory import HttpDirectory, LocalDirectory, PersonRecord
from .dispatcher import Outcome, OutcomeKind, ScanDispatcher, ScanMode
from .frames import FrameNormalizer, RawFrame, ScanEvent, ScanSource
from .kiosk import Kiosk, build_kiosk
from .ledger import AttendanceRecord, AttendanceStatus, AttendanceType, JsonlLedger, MemoryLedger, compute_status
from .resolver import IdentityResolver

__all__ = [
    "AttendanceRecord",
    "AttendanceStateMachine",
    "AttendanceStatus",
    "AttendanceType",
    "ConnectionState",
    "DeviceSessionManager",
    "FrameNormalizer",
    "HttpDirectory",
    "IdentityResolver",
    "JsonlLedger",
    "Kiosk",
    "LocalDirectory",
    "MemoryLedger",
    "Outcome",
    "OutcomeKind",
    "PersonRecord",
    "RawFrame",
    "ScanDispatcher",
    "ScanEvent",
    "ScanMode",
    "ScanSource",
    "SerialTransport",
    "build_kiosk",
    "compute_status",
]
