"""Serial card-reader transport and the session lifecycle around it."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol

import serial
from serial.tools import list_ports

from .errors import DeviceError
from .frames import RawFrame, ScanSource
from .utils.logger import get_logger

LOGGER = get_logger("device")

# USB vendor ids of common 13.56MHz reader manufacturers.
KNOWN_READER_VENDORS = {
    0x1FC9: "NXP",
    0x072F: "Advanced Card Systems",
    0x0BDA: "Realtek",
}


@dataclass(frozen=True)
class SerialLineConfig:
    baudrate: int = 9600
    bytesize: int = serial.EIGHTBITS
    parity: str = serial.PARITY_NONE
    stopbits: float = serial.STOPBITS_ONE
    rtscts: bool = False
    xonxoff: bool = False


LINE_CONFIG = SerialLineConfig()


class ConnectionState(str, Enum):
    OFFLINE = "offline"
    READY = "ready"
    SCANNING = "scanning"
    ERROR = "error"


@dataclass(frozen=True)
class DeviceInfo:
    path: str
    description: str = ""
    vid: Optional[int] = None
    pid: Optional[int] = None

    @property
    def vendor(self) -> Optional[str]:
        return KNOWN_READER_VENDORS.get(self.vid) if self.vid is not None else None

    @property
    def is_known_reader(self) -> bool:
        return self.vendor is not None


@dataclass(frozen=True)
class DeviceStatus:
    """Point-in-time view of the session manager for display."""

    state: ConnectionState
    device_path: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.SCANNING


class DeviceSession(Protocol):
    async def read_chunk(self) -> Optional[bytes]:
        """Block for the next chunk; ``None`` signals end of stream."""

    async def close(self) -> None:
        """Release the underlying handle."""


class DeviceTransport(Protocol):
    def is_available(self) -> bool:
        """Return True when the host can talk to streaming devices at all."""

    def list_devices(self) -> List[DeviceInfo]:
        """Enumerate candidate devices."""

    async def open(self, path: str, config: SerialLineConfig) -> DeviceSession:
        """Open ``path`` at the fixed line configuration."""


class SerialSession:
    """One open serial port.

    Readers terminate frames with CR and/or LF; a frame without a terminator
    is flushed once the line goes quiet for one read timeout.
    """

    def __init__(self, port: serial.Serial) -> None:
        self._port = port
        self._buffer = bytearray()
        self._closed = False

    @property
    def path(self) -> str:
        return self._port.port

    async def read_chunk(self) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self._read_frame_blocking)
        except OSError as exc:
            if self._closed:
                return None
            raise DeviceError(f"Read from {self.path} failed: {exc}") from exc

    def _read_frame_blocking(self) -> Optional[bytes]:
        while not self._closed:
            data = self._port.read(max(1, self._port.in_waiting))
            if data:
                self._buffer.extend(data)
                frame = self._take_line()
                if frame:
                    return frame
            elif self._buffer:
                frame = bytes(self._buffer).strip(b"\r\n")
                self._buffer.clear()
                if frame:
                    return frame
        return None

    def _take_line(self) -> Optional[bytes]:
        while True:
            ends = [i for i in (self._buffer.find(b"\r"), self._buffer.find(b"\n")) if i >= 0]
            if not ends:
                return None
            end = min(ends)
            line = bytes(self._buffer[:end])
            del self._buffer[: end + 1]
            if line:
                return line

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._port.cancel_read()
        except (AttributeError, serial.SerialException):
            pass
        try:
            await asyncio.to_thread(self._port.close)
        except serial.SerialException as exc:
            raise DeviceError(f"Closing {self.path} failed: {exc}") from exc


class SerialTransport:
    """pyserial-backed transport."""

    read_timeout = 0.25

    def is_available(self) -> bool:
        try:
            list_ports.comports()
        except OSError as exc:
            LOGGER.warning("Serial ports cannot be enumerated on this host: %s", exc)
            return False
        return True

    def list_devices(self) -> List[DeviceInfo]:
        return [
            DeviceInfo(path=port.device, description=port.description or "", vid=port.vid, pid=port.pid)
            for port in sorted(list_ports.comports(), key=lambda p: p.device)
        ]

    async def open(self, path: str, config: SerialLineConfig) -> SerialSession:
        def _open() -> serial.Serial:
            return serial.Serial(
                path,
                config.baudrate,
                bytesize=config.bytesize,
                parity=config.parity,
                stopbits=config.stopbits,
                rtscts=config.rtscts,
                xonxoff=config.xonxoff,
                timeout=self.read_timeout,
            )

        try:
            port = await asyncio.to_thread(_open)
        except (serial.SerialException, ValueError) as exc:
            raise DeviceError(f"Failed to open {path}: {exc}") from exc
        return SerialSession(port)


class DeviceSessionManager:
    """Own the reader connection: open, continuous read loop, recovery, close.

    ``Offline -> Ready`` on detection, ``Ready -> Scanning`` on connect, any
    read failure or unexpected end of stream moves to ``Error``, and an
    explicit disconnect always ends in ``Offline`` with the handle released.
    Exactly one read loop runs per session; each frame is delivered and fully
    handled before the next read starts.
    """

    def __init__(
        self,
        transport: DeviceTransport,
        on_frame: Callable[[RawFrame], Awaitable[Any]],
        *,
        device_path: Optional[str] = None,
        config: SerialLineConfig = LINE_CONFIG,
        on_error: Optional[Callable[[DeviceError], Any]] = None,
    ) -> None:
        self._transport = transport
        self._on_frame = on_frame
        self._on_error = on_error
        self._preferred_path = device_path
        self._config = config
        self._state = ConnectionState.OFFLINE
        self._session: Optional[DeviceSession] = None
        self._device_path: Optional[str] = None
        self._last_error: Optional[str] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._delivery: Optional[asyncio.Future[Any]] = None
        self._stop = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    def status(self) -> DeviceStatus:
        return DeviceStatus(state=self._state, device_path=self._device_path, last_error=self._last_error)

    def detect(self) -> ConnectionState:
        if self._state is ConnectionState.OFFLINE and self._transport.is_available():
            self._state = ConnectionState.READY
            LOGGER.info("Card reader support detected; ready to connect", layer="progress")
        return self._state

    def _select_device(self, path: Optional[str]) -> str:
        target = path or self._preferred_path
        if target:
            return target
        for info in self._transport.list_devices():
            if info.is_known_reader:
                LOGGER.debug("Auto-selected %s (%s)", info.path, info.vendor)
                return info.path
        raise DeviceError("No card reader found. Check the device connection.")

    async def connect(self, path: Optional[str] = None) -> DeviceStatus:
        if self._state is ConnectionState.SCANNING:
            raise DeviceError(f"Already connected to {self._device_path}")
        if self._state is ConnectionState.ERROR:
            await self.disconnect()
        try:
            if self.detect() is not ConnectionState.READY:
                raise DeviceError("Serial devices are not supported on this host")
            target = self._select_device(path)
            session = await self._transport.open(target, self._config)
        except DeviceError as exc:
            self._fail(exc)
            raise

        self._session = session
        self._device_path = target
        self._last_error = None
        self._stop.clear()
        self._state = ConnectionState.SCANNING
        self._task = asyncio.create_task(self._read_loop(session), name=f"reader:{target}")
        LOGGER.info("Card reader connected on %s", target, layer="success")
        return self.status()

    async def _read_loop(self, session: DeviceSession) -> None:
        try:
            while not self._stop.is_set():
                chunk = await session.read_chunk()
                if self._stop.is_set():
                    break
                if chunk is None:
                    raise DeviceError("Card reader closed the stream")
                frame = RawFrame(chunk.decode("utf-8", errors="replace"), source=ScanSource.DEVICE)
                self._delivery = asyncio.ensure_future(self._deliver(frame))
                await asyncio.shield(self._delivery)
        except DeviceError as exc:
            self._fail(exc)
        except Exception as exc:  # noqa: BLE001
            self._fail(DeviceError(f"Read failed: {exc}"))
        finally:
            await self._release(session)

    async def _deliver(self, frame: RawFrame) -> None:
        try:
            await self._on_frame(frame)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Frame handler failed; reader keeps running")

    def _fail(self, exc: DeviceError) -> None:
        self._state = ConnectionState.ERROR
        self._last_error = str(exc)
        LOGGER.error("Card reader error: %s", exc)
        if self._on_error is not None:
            try:
                self._on_error(exc)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Device error callback failed")

    async def _release(self, session: Optional[DeviceSession]) -> None:
        if session is None or self._session is not session:
            return
        self._session = None
        try:
            await session.close()
        except DeviceError as exc:
            LOGGER.warning("Error closing card reader: %s", exc)

    async def disconnect(self) -> DeviceStatus:
        self._stop.set()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        delivery, self._delivery = self._delivery, None
        if delivery is not None and not delivery.done():
            await delivery
        await self._release(self._session)
        if self._state is not ConnectionState.OFFLINE:
            LOGGER.info("Card reader disconnected", layer="progress")
        self._state = ConnectionState.OFFLINE
        self._device_path = None
        return self.status()

    async def wait_closed(self) -> None:
        """Wait until the read loop ends on its own (end of stream or error)."""
        if self._task is not None:
            await asyncio.shield(self._task)
