"""Tests for the HID device session with a mocked hid module."""

from unittest.mock import MagicMock, patch

import pytest

from busylight_linux.protocol import ProtocolVariant
from busylight_linux.session import (
    DeviceDescriptor,
    DeviceSession,
    NoDeviceFound,
    TransportInitFailed,
)

OMEGA = {
    "vendor_id": 0x27BB,
    "product_id": 0x3BCD,
    "product_string": "Busylight Omega",
    "path": b"/dev/hidraw3",
}
OMEGA_DECIMAL = dict(OMEGA, vendor_id=10171)
LEGACY_UC = {
    "vendor_id": 0x04D8,
    "product_id": 0xF848,
    "product_string": "",
    "path": b"/dev/hidraw5",
}
KEYBOARD = {
    "vendor_id": 0x046D,
    "product_id": 0xC31C,
    "product_string": "USB Keyboard",
    "path": b"/dev/hidraw0",
}


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _device(written: int = 65) -> MagicMock:
    dev = MagicMock()
    dev.write.return_value = written
    return dev


def _connected_session(mock_hid: MagicMock, info: dict, clock: FakeClock | None = None):
    dev = _device()
    mock_hid.enumerate.return_value = [info]
    mock_hid.device.return_value = dev
    session = DeviceSession(clock=clock or FakeClock())
    session.discover_and_connect()
    return session, dev


class TestDiscovery:
    @patch("busylight_linux.session.hid")
    def test_no_device(self, mock_hid: MagicMock) -> None:
        mock_hid.enumerate.return_value = [KEYBOARD]
        session = DeviceSession()
        with pytest.raises(NoDeviceFound, match="vendor ids: 0x04D8, 0x27BB"):
            session.discover_and_connect()
        assert session.is_connected is False
        assert session.descriptor is None
        mock_hid.device.assert_not_called()

    @patch("busylight_linux.session.hid")
    def test_skips_unsupported_and_opens_match(self, mock_hid: MagicMock) -> None:
        dev = _device()
        mock_hid.enumerate.return_value = [KEYBOARD, OMEGA]
        mock_hid.device.return_value = dev

        session = DeviceSession()
        descriptor = session.discover_and_connect()

        assert descriptor == DeviceDescriptor(
            vendor_id=0x27BB, product_id=0x3BCD, product="Busylight Omega", path="/dev/hidraw3"
        )
        assert session.is_connected is True
        assert session.descriptor == descriptor
        dev.open_path.assert_called_once_with(b"/dev/hidraw3")

    @patch("busylight_linux.session.hid")
    def test_empty_product_string_is_none(self, mock_hid: MagicMock) -> None:
        session, _ = _connected_session(mock_hid, LEGACY_UC)
        assert session.descriptor.product is None

    @patch("busylight_linux.session.hid")
    def test_open_failure_tries_next_device(self, mock_hid: MagicMock) -> None:
        broken = MagicMock()
        broken.open_path.side_effect = OSError("permission denied")
        good = _device()
        mock_hid.enumerate.return_value = [OMEGA, LEGACY_UC]
        mock_hid.device.side_effect = [broken, good]

        session = DeviceSession()
        descriptor = session.discover_and_connect()

        assert descriptor.vendor_id == 0x04D8
        assert session.variant is ProtocolVariant.LEGACY

    @patch("busylight_linux.session.hid")
    def test_transport_init_failure(self, mock_hid: MagicMock) -> None:
        mock_hid.enumerate.side_effect = OSError("hidapi init failed")
        session = DeviceSession()
        with pytest.raises(TransportInitFailed):
            session.discover_and_connect()

        session.write((1, 2, 3))  # dropped silently
        session.send()
        assert mock_hid.enumerate.call_count == 1

    @patch("busylight_linux.session.hid")
    def test_close(self, mock_hid: MagicMock) -> None:
        session, dev = _connected_session(mock_hid, OMEGA)
        session.close()
        assert session.is_connected is False
        assert session.descriptor is None
        dev.close.assert_called_once()

    @patch("busylight_linux.session.hid")
    def test_close_tolerates_os_error(self, mock_hid: MagicMock) -> None:
        session, dev = _connected_session(mock_hid, OMEGA)
        dev.close.side_effect = OSError("USB gone")
        session.close()  # should not raise
        assert session.is_connected is False


class TestWrite:
    @pytest.mark.parametrize("info", [OMEGA, OMEGA_DECIMAL])
    @patch("busylight_linux.session.hid")
    def test_extended_writes_65_bytes(self, mock_hid: MagicMock, info: dict) -> None:
        session, dev = _connected_session(mock_hid, info)
        assert session.variant is ProtocolVariant.EXTENDED

        session.write((10, 20, 30))
        report = dev.write.call_args.args[0]
        assert len(report) == 65
        assert report[1] == 16
        assert report[3:6] == bytes([10, 20, 30])
        assert report[59:63] == bytes([0xFF] * 4)
        total = 16 + 10 + 20 + 30 + 4 * 0xFF
        assert report[63:65] == bytes([total >> 8, total & 0xFF])

    @patch("busylight_linux.session.hid")
    def test_legacy_writes_9_bytes(self, mock_hid: MagicMock) -> None:
        session, dev = _connected_session(mock_hid, LEGACY_UC)
        session.write((10, 20, 30))
        assert dev.write.call_args.args[0] == bytes([0, 0, 0, 10, 20, 30, 0, 0, 0x80])

    @patch("busylight_linux.session.hid")
    def test_send_repeats_current_frame(self, mock_hid: MagicMock) -> None:
        session, dev = _connected_session(mock_hid, LEGACY_UC)
        session.write((1, 2, 3))
        session.send()
        first, second = [c.args[0] for c in dev.write.call_args_list]
        assert first == second

    @patch("busylight_linux.session.hid")
    def test_write_when_never_connected_is_noop(self, mock_hid: MagicMock) -> None:
        mock_hid.enumerate.return_value = []
        session = DeviceSession()
        session.write((1, 2, 3))
        assert session.rgb == (1, 2, 3)
        mock_hid.enumerate.assert_not_called()

    @patch("busylight_linux.session.hid")
    def test_precondition_false_discards_frame(self, mock_hid: MagicMock) -> None:
        session, dev = _connected_session(mock_hid, LEGACY_UC)
        session.write((1, 2, 3), precondition=lambda: False)
        dev.write.assert_not_called()
        assert session.rgb == (0, 0, 0)


class TestReconnect:
    @patch("busylight_linux.session.hid")
    def test_failed_write_reconnects_and_resends(self, mock_hid: MagicMock) -> None:
        stale = _device()
        stale.write.side_effect = OSError("device disconnected")
        fresh = _device()
        mock_hid.enumerate.return_value = [OMEGA]
        mock_hid.device.side_effect = [stale, fresh]

        session = DeviceSession(clock=FakeClock())
        session.discover_and_connect()
        session.write((200, 100, 50))

        stale.close.assert_called_once()
        assert session.is_connected is True
        fresh.write.assert_called_once()
        assert fresh.write.call_args.args[0][3:6] == bytes([200, 100, 50])

    @patch("busylight_linux.session.hid")
    def test_minus_one_counts_as_failure(self, mock_hid: MagicMock) -> None:
        stale = _device(written=-1)
        fresh = _device()
        mock_hid.enumerate.return_value = [LEGACY_UC]
        mock_hid.device.side_effect = [stale, fresh]

        session = DeviceSession(clock=FakeClock())
        session.discover_and_connect()
        session.write((1, 1, 1))

        fresh.write.assert_called_once()

    @patch("busylight_linux.session.hid")
    def test_reconnect_rate_limited(self, mock_hid: MagicMock) -> None:
        clock = FakeClock()
        session, dev = _connected_session(mock_hid, OMEGA, clock)
        dev.write.side_effect = OSError("device disconnected")
        assert mock_hid.enumerate.call_count == 1

        # three failures within one second
        for offset in (0.0, 0.4, 0.8):
            clock.now = 1000.0 + offset
            session.write((255, 0, 0))

        assert mock_hid.enumerate.call_count == 2
        assert session.is_connected is False

        clock.now = 1002.5
        session.send()
        assert mock_hid.enumerate.call_count == 3

    @patch("busylight_linux.session.hid")
    def test_pending_reconnect_retried_by_keepalive(self, mock_hid: MagicMock) -> None:
        clock = FakeClock()
        session, dev = _connected_session(mock_hid, OMEGA, clock)
        dev.write.side_effect = OSError("device disconnected")
        mock_hid.enumerate.return_value = []

        session.write((0, 0, 255))
        assert session.is_connected is False

        fresh = _device()
        mock_hid.enumerate.return_value = [OMEGA]
        mock_hid.device.return_value = fresh
        clock.now += 2.1
        session.send()

        assert session.is_connected is True
        assert fresh.write.call_args.args[0][3:6] == bytes([0, 0, 255])

    @patch("busylight_linux.session.hid")
    def test_reconnect_can_change_variant(self, mock_hid: MagicMock) -> None:
        stale = _device()
        stale.write.side_effect = OSError("device disconnected")
        fresh = _device()
        mock_hid.enumerate.side_effect = [[OMEGA], [LEGACY_UC]]
        mock_hid.device.side_effect = [stale, fresh]

        session = DeviceSession(clock=FakeClock())
        session.discover_and_connect()
        session.write((5, 6, 7))

        assert session.variant is ProtocolVariant.LEGACY
        assert fresh.write.call_args.args[0] == bytes([0, 0, 0, 5, 6, 7, 0, 0, 0x80])

    @patch("busylight_linux.session.hid")
    def test_transient_transport_failure_keeps_retrying(self, mock_hid: MagicMock) -> None:
        clock = FakeClock()
        session, dev = _connected_session(mock_hid, OMEGA, clock)
        dev.write.side_effect = OSError("device disconnected")
        mock_hid.enumerate.side_effect = OSError("hidapi init failed")

        session.write((0, 255, 0))
        assert session.is_connected is False

        fresh = _device()
        mock_hid.enumerate.side_effect = None
        mock_hid.enumerate.return_value = [OMEGA]
        mock_hid.device.return_value = fresh
        clock.now += 2.1
        session.send()

        assert session.is_connected is True
        assert fresh.write.call_args.args[0][3:6] == bytes([0, 255, 0])

    @patch("busylight_linux.session.hid")
    def test_explicit_connect_clears_pending_reconnect(self, mock_hid: MagicMock) -> None:
        clock = FakeClock()
        session, dev = _connected_session(mock_hid, OMEGA, clock)
        dev.write.side_effect = OSError("device disconnected")
        mock_hid.enumerate.return_value = []
        session.write((1, 2, 3))
        assert session.is_connected is False

        fresh = _device()
        mock_hid.enumerate.return_value = [OMEGA]
        mock_hid.device.return_value = fresh
        session.discover_and_connect()

        assert session._reconnect_pending is False
        session.send()
        assert fresh.write.call_args.args[0][3:6] == bytes([1, 2, 3])
