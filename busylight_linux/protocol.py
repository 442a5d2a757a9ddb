"""Busylight HID report definitions.

Each Protocol instance describes one report layout: the vendor ids that speak
it, the report size, and the fixed framing bytes. Protocol data is loaded from
protocols.yaml.

Layouts (byte offsets):
    legacy    0 report id, 1 mode, 2 reserved, 3-5 R/G/B, 6-7 reserved,
              8 sentinel (0x80)
    extended  0 report id, 1 mode (16), 2 reserved, 3-5 R/G/B, 6-58 reserved,
              59-62 0xFF (disable automatic timeout), 63-64 checksum
"""

import enum
from dataclasses import dataclass
from pathlib import Path

import yaml

_PROTOCOLS_FILE = Path(__file__).parent / "protocols.yaml"

REPORT_CAPACITY = 65

RED_OFFSET = 3
GREEN_OFFSET = 4
BLUE_OFFSET = 5
SENTINEL_OFFSET = 8
TIMEOUT_OFFSET = 59
CHECKSUM_OFFSET = 63

DISABLE_TIMEOUT = (0xFF, 0xFF, 0xFF, 0xFF)


class ProtocolVariant(enum.Enum):
    LEGACY = "legacy"
    EXTENDED = "extended"


@dataclass(frozen=True)
class Protocol:
    """HID report layout for a family of busylight devices."""

    key: str
    name: str
    variant: ProtocolVariant
    vendor_ids: tuple[int, ...]
    report_length: int

    # Framing bytes, written once per connection
    mode_byte: int
    sentinel_byte: int
    disable_timeout: bool

    checksum: bool

    def matches(self, vendor_id: int) -> bool:
        return vendor_id in self.vendor_ids


def checksum(data: bytes | bytearray) -> tuple[int, int]:
    """Additive checksum over bytes 0-62, returned as (high, low) bytes."""
    total = sum(data[:CHECKSUM_OFFSET]) & 0xFFFFFFFF
    return (total >> 8) & 0xFF, total & 0xFF


class ReportBuffer:
    """Fixed-size report buffer reused across writes.

    Only the color channels and the checksum change between sends; everything
    else is set by frame() when a device is connected.
    """

    def __init__(self) -> None:
        self._data = bytearray(REPORT_CAPACITY)
        self._data[SENTINEL_OFFSET] = 0x80

    def __len__(self) -> int:
        return len(self._data)

    def __getitem__(self, index):
        return self._data[index]

    @property
    def rgb(self) -> tuple[int, int, int]:
        return (
            self._data[RED_OFFSET],
            self._data[GREEN_OFFSET],
            self._data[BLUE_OFFSET],
        )

    def set_rgb(self, r: int, g: int, b: int) -> None:
        self._data[RED_OFFSET] = max(0, min(255, int(r)))
        self._data[GREEN_OFFSET] = max(0, min(255, int(g)))
        self._data[BLUE_OFFSET] = max(0, min(255, int(b)))

    def frame(self, protocol: Protocol) -> None:
        """Write the framing bytes for a protocol, keeping the current color."""
        r, g, b = self.rgb
        self._data[:] = bytes(REPORT_CAPACITY)
        self._data[1] = protocol.mode_byte
        self._data[SENTINEL_OFFSET] = protocol.sentinel_byte
        if protocol.disable_timeout:
            end = TIMEOUT_OFFSET + len(DISABLE_TIMEOUT)
            self._data[TIMEOUT_OFFSET:end] = bytes(DISABLE_TIMEOUT)
        self.set_rgb(r, g, b)

    def encode(self, protocol: Protocol) -> bytes:
        """Return the wire payload, refreshing the checksum if the protocol has one."""
        if protocol.checksum:
            hi, lo = checksum(self._data)
            self._data[CHECKSUM_OFFSET] = hi
            self._data[CHECKSUM_OFFSET + 1] = lo
        return bytes(self._data[:protocol.report_length])


def _load_all() -> dict[str, dict]:
    """Load raw protocol definitions from YAML."""
    with open(_PROTOCOLS_FILE) as f:
        return yaml.safe_load(f)


def _build(key: str, raw: dict) -> Protocol:
    fields = dict(raw)
    fields["variant"] = ProtocolVariant(fields["variant"])
    fields["vendor_ids"] = tuple(dict.fromkeys(fields["vendor_ids"]))
    return Protocol(key=key, **fields)


def load_protocols() -> list[Protocol]:
    """Load every protocol, in file order."""
    return [_build(key, raw) for key, raw in _load_all().items()]


def supported_vendor_ids(protocols: list[Protocol]) -> set[int]:
    return {vid for p in protocols for vid in p.vendor_ids}


def classify(vendor_id: int, protocols: list[Protocol]) -> Protocol | None:
    """Return the protocol spoken by a vendor id, or None if unsupported."""
    for p in protocols:
        if p.matches(vendor_id):
            return p
    return None
