"""USB HID session with a single busylight device."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import hid

from busylight_linux.protocol import (
    Protocol,
    ProtocolVariant,
    ReportBuffer,
    classify,
    load_protocols,
    supported_vendor_ids,
)

log = logging.getLogger(__name__)

RECONNECT_INTERVAL = 2.0  # minimum seconds between reconnects after a write failure


class ConnectError(Exception):
    """No usable device could be opened."""


class NoDeviceFound(ConnectError):
    pass


class TransportInitFailed(ConnectError):
    pass


class WriteFailed(OSError):
    pass


@dataclass(frozen=True)
class DeviceDescriptor:
    """Identity of the connected device, captured at connect time."""

    vendor_id: int
    product_id: int
    product: str | None = None
    path: str | None = None


class DeviceSession:
    """Owns the open HID handle and the report buffer.

    Every public method is serialized by one lock. Writes never raise: a
    failed write closes the handle and schedules a rate-limited reconnect.
    """

    def __init__(
        self,
        protocols: list[Protocol] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._protocols = protocols if protocols is not None else load_protocols()
        self._clock = clock
        self._lock = threading.Lock()
        self._buffer = ReportBuffer()
        self._device: hid.device | None = None
        self._protocol: Protocol | None = None
        self._descriptor: DeviceDescriptor | None = None
        self._reconnect_pending = False
        self._last_reconnect: float | None = None

    @property
    def is_connected(self) -> bool:
        return self._device is not None

    @property
    def descriptor(self) -> DeviceDescriptor | None:
        return self._descriptor

    @property
    def variant(self) -> ProtocolVariant | None:
        return self._protocol.variant if self._protocol is not None else None

    @property
    def rgb(self) -> tuple[int, int, int]:
        return self._buffer.rgb

    def discover_and_connect(self) -> DeviceDescriptor:
        """Enumerate HID devices and open the first supported busylight.

        Raises NoDeviceFound or TransportInitFailed.
        """
        with self._lock:
            return self._connect()

    def close(self) -> None:
        """Close the connection to the device."""
        with self._lock:
            self._reconnect_pending = False
            self._drop_device()

    def write(
        self,
        rgb: tuple[int, int, int],
        precondition: Callable[[], bool] | None = None,
    ) -> None:
        """Store a color in the report buffer and send it.

        If precondition is given it is checked under the session lock and the
        frame is discarded when it returns False.
        """
        with self._lock:
            if precondition is not None and not precondition():
                return
            self._buffer.set_rgb(*rgb)
            self._send()

    def send(self) -> None:
        """Resend the current buffer unchanged (keep-alive)."""
        with self._lock:
            self._send()

    def _connect(self) -> DeviceDescriptor:
        self._drop_device()

        try:
            devices = hid.enumerate()
        except (OSError, ValueError) as e:
            log.warning("HID subsystem unavailable: %s", e)
            raise TransportInitFailed(str(e)) from e

        for info in devices:
            protocol = classify(info.get("vendor_id", 0), self._protocols)
            if protocol is None:
                continue

            path = info["path"]
            try:
                dev = hid.device()
                dev.open_path(path)
            except OSError as e:
                log.warning("Failed to open device at %s: %s", path.decode(errors="replace"), e)
                continue

            self._device = dev
            self._protocol = protocol
            self._descriptor = DeviceDescriptor(
                vendor_id=info["vendor_id"],
                product_id=info.get("product_id", 0),
                product=info.get("product_string") or None,
                path=path.decode(errors="replace"),
            )
            self._buffer.frame(protocol)
            self._reconnect_pending = False
            log.info(
                "Connected to %s at %s (VID=0x%04X, PID=0x%04X)",
                self._descriptor.product or protocol.name,
                self._descriptor.path,
                self._descriptor.vendor_id,
                self._descriptor.product_id,
            )
            return self._descriptor

        vendors = ", ".join(f"0x{vid:04X}" for vid in sorted(supported_vendor_ids(self._protocols)))
        raise NoDeviceFound(f"No supported busylight found (vendor ids: {vendors})")

    def _drop_device(self) -> None:
        if self._device is not None:
            try:
                self._device.close()
            except OSError:
                pass
            log.info("Busylight connection closed")
        self._device = None
        self._protocol = None
        self._descriptor = None

    def _write_buffer(self) -> None:
        """Write the encoded buffer. Raises WriteFailed."""
        if self._device is None or self._protocol is None:
            raise WriteFailed("Busylight not connected")
        payload = self._buffer.encode(self._protocol)
        try:
            written = self._device.write(payload)
        except (OSError, ValueError) as e:
            raise WriteFailed(str(e)) from e
        if written == -1:
            raise WriteFailed("hid_write returned -1")

    def _send(self) -> None:
        if self._device is None:
            if self._reconnect_pending:
                self._reconnect()
            return

        try:
            self._write_buffer()
        except WriteFailed as e:
            log.warning("Busylight write failed: %s. Connection likely stale", e)
            self._drop_device()
            self._reconnect_pending = True
            self._reconnect()
            return

        log.debug("Sent frame rgb=%s", self._buffer.rgb)

    def _reconnect(self) -> None:
        """Rediscover the device and resend the current frame, rate limited."""
        now = self._clock()
        if self._last_reconnect is not None and now - self._last_reconnect < RECONNECT_INTERVAL:
            return
        self._last_reconnect = now

        try:
            self._connect()
        except ConnectError as e:
            log.info("Reconnect failed: %s", e)
            return

        try:
            self._write_buffer()
        except WriteFailed as e:
            log.warning("Resend after reconnect failed: %s", e)
            self._drop_device()
            self._reconnect_pending = True
