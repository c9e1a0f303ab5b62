"""Wiring of the scan pipeline and the operations exposed to presentation code."""

from __future__ import annotations

from typing import Optional, Union

from .attendance import AttendanceStateMachine
from .config import KioskSettings
from .device import DeviceSessionManager, DeviceStatus, DeviceTransport, SerialTransport
from .directory import Connectivity, HttpDirectory, LocalDirectory, ProbeConnectivity, StaticConnectivity
from .dispatcher import Outcome, OutcomeKind, OutcomeListener, ScanDispatcher, ScanMode
from .errors import DeviceError
from .frames import FrameNormalizer, RawFrame, ScanSource
from .ledger import AttendanceStatus, JsonlLedger, LedgerGateway
from .resolver import IdentityResolver
from .utils.logger import get_logger

LOGGER = get_logger("kiosk")


class Kiosk:
    """Facade over the dispatcher and the reader session.

    Device failures are reported to outcome listeners and reflected in
    ``device_status()``; they are never raised to the caller.
    """

    def __init__(
        self,
        dispatcher: ScanDispatcher,
        transport: DeviceTransport,
        *,
        directory: Optional[LocalDirectory] = None,
        ledger: Optional[LedgerGateway] = None,
        device_path: Optional[str] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.directory = directory
        self.ledger = ledger
        self.devices = DeviceSessionManager(
            transport,
            dispatcher.handle_frame,
            device_path=device_path,
            on_error=self._publish_device_error,
        )

    async def __aenter__(self) -> "Kiosk":
        self.devices.detect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect_device()

    @property
    def mode(self) -> ScanMode:
        return self.dispatcher.mode

    @mode.setter
    def mode(self, mode: ScanMode) -> None:
        self.dispatcher.mode = mode

    def add_listener(self, listener: OutcomeListener) -> None:
        self.dispatcher.add_listener(listener)

    async def handle_scan(self, frame: Union[RawFrame, str], source: ScanSource = ScanSource.MANUAL) -> Outcome:
        return await self.dispatcher.handle_scan(frame, source)

    async def submit_manual_id(self, text: str) -> Outcome:
        return await self.dispatcher.submit_manual_id(text)

    async def connect_device(self, path: Optional[str] = None) -> DeviceStatus:
        try:
            return await self.devices.connect(path)
        except DeviceError as exc:
            LOGGER.warning("Reader not connected: %s", exc)
            return self.devices.status()

    async def disconnect_device(self) -> DeviceStatus:
        return await self.devices.disconnect()

    def device_status(self) -> DeviceStatus:
        return self.devices.status()

    async def current_status(self, person_id: str) -> AttendanceStatus:
        if self.ledger is None:
            return AttendanceStatus.UNKNOWN
        return await self.ledger.get_current_status(person_id)

    def _publish_device_error(self, exc: DeviceError) -> None:
        self.dispatcher.publish(
            Outcome(kind=OutcomeKind.DEVICE_ERROR, source=ScanSource.DEVICE, message=str(exc))
        )


def _connectivity_for(settings: KioskSettings) -> Connectivity:
    if not settings.directory_url:
        return StaticConnectivity(online=False)
    if settings.connectivity_probe:
        host, _, port = settings.connectivity_probe.rpartition(":")
        if not host or not port.isdigit():
            raise ValueError(f"CONNECTIVITY_PROBE must look like host:port; got {settings.connectivity_probe!r}")
        return ProbeConnectivity(host, int(port))
    return ProbeConnectivity.for_url(settings.directory_url)


def build_kiosk(
    settings: KioskSettings,
    *,
    transport: Optional[DeviceTransport] = None,
    ledger: Optional[LedgerGateway] = None,
) -> Kiosk:
    directory = LocalDirectory.from_file(settings.directory_file)
    remote = (
        HttpDirectory(settings.directory_url, timeout=settings.directory_timeout)
        if settings.directory_url
        else None
    )
    resolver = IdentityResolver(
        directory,
        remote,
        _connectivity_for(settings),
        timeout=settings.directory_timeout,
    )
    ledger = ledger if ledger is not None else JsonlLedger(settings.ledger_file)
    dispatcher = ScanDispatcher(
        FrameNormalizer(settings.card_id_min_length, settings.card_id_max_length),
        resolver,
        AttendanceStateMachine(ledger),
        mode=ScanMode(settings.mode),
    )
    LOGGER.debug(
        "Kiosk ready: %d people cached, remote=%s, ledger=%s",
        len(directory),
        settings.directory_url or "off",
        getattr(ledger, "path", type(ledger).__name__),
    )
    return Kiosk(
        dispatcher,
        transport or SerialTransport(),
        directory=directory,
        ledger=ledger,
        device_path=settings.scanner_port,
    )
