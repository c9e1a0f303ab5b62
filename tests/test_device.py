import asyncio
from typing import List

import pytest

from fakes import FakeTransport, wait_until
from tap_attend.device import (
    LINE_CONFIG,
    ConnectionState,
    DeviceInfo,
    DeviceSessionManager,
    SerialSession,
)
from tap_attend.errors import DeviceError
from tap_attend.frames import ScanSource


def test_detect_moves_offline_to_ready_only_when_supported() -> None:
    async def scenario():
        supported = DeviceSessionManager(FakeTransport(), _ignore)
        unsupported = DeviceSessionManager(FakeTransport(available=False), _ignore)
        return supported.detect(), unsupported.detect()

    assert asyncio.run(scenario()) == (ConnectionState.READY, ConnectionState.OFFLINE)


async def _ignore(frame) -> None:
    return None


def test_frames_are_handled_in_arrival_order_one_at_a_time() -> None:
    transport = FakeTransport()
    events = []

    async def handler(frame):
        events.append(("start", frame.text()))
        if frame.text() == "AAAA1111":
            await asyncio.sleep(0.02)
        events.append(("end", frame.text()))

    async def scenario():
        manager = DeviceSessionManager(transport, handler, device_path="/dev/ttyUSB0")
        status = await manager.connect()
        transport.session.feed(b"AAAA1111", b"BBBB2222")
        await wait_until(lambda: len(events) == 4)
        await manager.disconnect()
        return status

    status = asyncio.run(scenario())

    assert status.connected
    assert transport.opened == [("/dev/ttyUSB0", LINE_CONFIG)]
    assert LINE_CONFIG.baudrate == 9600
    assert events == [
        ("start", "AAAA1111"),
        ("end", "AAAA1111"),
        ("start", "BBBB2222"),
        ("end", "BBBB2222"),
    ]


def test_frames_carry_device_source() -> None:
    transport = FakeTransport()
    frames = []

    async def handler(frame):
        frames.append(frame)

    async def scenario():
        manager = DeviceSessionManager(transport, handler, device_path="COM3")
        await manager.connect()
        transport.session.feed("045A2E92\r\n".encode())
        await wait_until(lambda: frames)
        await manager.disconnect()

    asyncio.run(scenario())
    assert frames[0].source is ScanSource.DEVICE
    assert frames[0].text() == "045A2E92\r\n"


def test_read_failure_moves_to_error_and_releases_handle() -> None:
    transport = FakeTransport()
    errors = []

    async def scenario():
        manager = DeviceSessionManager(transport, _ignore, device_path="COM3", on_error=errors.append)
        await manager.connect()
        transport.session.feed(DeviceError("device unplugged"))
        await manager.wait_closed()
        failed = manager.status()
        closed = await manager.disconnect()
        return failed, closed

    failed, closed = asyncio.run(scenario())

    assert failed.state is ConnectionState.ERROR
    assert failed.last_error == "device unplugged"
    assert transport.session.closed
    assert [str(e) for e in errors] == ["device unplugged"]
    assert closed.state is ConnectionState.OFFLINE


def test_unexpected_read_exception_also_moves_to_error() -> None:
    transport = FakeTransport()
    errors = []

    async def scenario():
        manager = DeviceSessionManager(transport, _ignore, device_path="COM3", on_error=errors.append)
        await manager.connect()
        transport.session.feed(RuntimeError("usb glitch"))
        await manager.wait_closed()
        return manager.status()

    failed = asyncio.run(scenario())

    assert failed.state is ConnectionState.ERROR
    assert not failed.connected
    assert failed.last_error == "Read failed: usb glitch"
    assert transport.session.closed
    assert len(errors) == 1 and isinstance(errors[0], DeviceError)


def test_end_of_stream_is_treated_as_disconnect_error() -> None:
    transport = FakeTransport()

    async def scenario():
        manager = DeviceSessionManager(transport, _ignore, device_path="COM3")
        await manager.connect()
        transport.session.feed(None)
        await manager.wait_closed()
        return manager.state

    assert asyncio.run(scenario()) is ConnectionState.ERROR
    assert transport.session.closed


def test_disconnect_cancels_pending_read_and_closes_before_returning() -> None:
    transport = FakeTransport()
    handled = []

    async def handler(frame):
        handled.append(frame)

    async def scenario():
        manager = DeviceSessionManager(transport, handler, device_path="COM3")
        await manager.connect()
        await asyncio.sleep(0)
        status = await manager.disconnect()
        closed_on_return = transport.session.closed
        transport.session.feed(b"AAAA1111")
        await asyncio.sleep(0.01)
        return status, closed_on_return

    status, closed_on_return = asyncio.run(scenario())

    assert status.state is ConnectionState.OFFLINE
    assert closed_on_return
    assert handled == []


def test_connect_twice_is_refused() -> None:
    transport = FakeTransport()

    async def scenario():
        manager = DeviceSessionManager(transport, _ignore, device_path="COM3")
        await manager.connect()
        try:
            with pytest.raises(DeviceError):
                await manager.connect()
            return len(transport.opened)
        finally:
            await manager.disconnect()

    assert asyncio.run(scenario()) == 1


def test_known_reader_is_auto_selected() -> None:
    transport = FakeTransport(
        devices=[
            DeviceInfo("/dev/ttyS0", "Serial port"),
            DeviceInfo("/dev/ttyACM0", "PN532", vid=0x1FC9, pid=0x0117),
        ]
    )

    async def scenario():
        manager = DeviceSessionManager(transport, _ignore)
        status = await manager.connect()
        await manager.disconnect()
        return status

    assert asyncio.run(scenario()).device_path == "/dev/ttyACM0"


def test_no_reader_found_is_a_device_error() -> None:
    transport = FakeTransport(devices=[DeviceInfo("/dev/ttyS0", "Serial port")])

    async def scenario():
        manager = DeviceSessionManager(transport, _ignore)
        with pytest.raises(DeviceError):
            await manager.connect()
        return manager.status()

    status = asyncio.run(scenario())
    assert status.state is ConnectionState.ERROR
    assert "No card reader found" in status.last_error


def test_error_state_can_be_reopened() -> None:
    transport = FakeTransport()
    transport.open_error = DeviceError("Access denied")

    async def scenario():
        manager = DeviceSessionManager(transport, _ignore, device_path="COM3")
        with pytest.raises(DeviceError):
            await manager.connect()
        transport.open_error = None
        status = await manager.connect()
        await manager.disconnect()
        return status

    assert asyncio.run(scenario()).state is ConnectionState.SCANNING


def test_handler_failure_does_not_stop_the_reader() -> None:
    transport = FakeTransport()
    seen = []

    async def handler(frame):
        seen.append(frame.text())
        if len(seen) == 1:
            raise RuntimeError("display crashed")

    async def scenario():
        manager = DeviceSessionManager(transport, handler, device_path="COM3")
        await manager.connect()
        transport.session.feed(b"AAAA1111", b"BBBB2222")
        await wait_until(lambda: len(seen) == 2)
        state = manager.state
        await manager.disconnect()
        return state

    assert asyncio.run(scenario()) is ConnectionState.SCANNING
    assert seen == ["AAAA1111", "BBBB2222"]


class FakePort:
    port = "/dev/ttyUSB0"

    def __init__(self, reads: List[bytes]) -> None:
        self._reads = list(reads)
        self.closed = False

    @property
    def in_waiting(self) -> int:
        return len(self._reads[0]) if self._reads else 0

    def read(self, size: int = 1) -> bytes:
        return self._reads.pop(0) if self._reads else b""

    def cancel_read(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


def test_serial_session_joins_split_lines() -> None:
    session = SerialSession(FakePort([b"045A", b"2E92\r\n", b"\r\nA1B2C3D4\n"]))

    async def scenario():
        return await session.read_chunk(), await session.read_chunk()

    assert asyncio.run(scenario()) == (b"045A2E92", b"A1B2C3D4")


def test_serial_session_flushes_unterminated_frame_on_quiet_line() -> None:
    port = FakePort([b"045A2E92", b""])
    session = SerialSession(port)

    async def scenario():
        frame = await session.read_chunk()
        await session.close()
        return frame, await session.read_chunk()

    assert asyncio.run(scenario()) == (b"045A2E92", None)
    assert port.closed
