"""Layer 1 burst indications and baseband diagnostic log records."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

ARFCN_UPLINK = 0x4000
BI_FLG_DUMMY = 1 << 4
BI_FLG_SACCH = 1 << 5


def _swap16(val: int) -> int:
    if not 0 <= val <= 0xFFFF:
        raise ValueError(f"value {val!r} is not a 16-bit quantity")
    return (val >> 8) | ((val & 0xFF) << 8)


def get_arfcn_from_arfcn_and_band(val: int) -> int:
    """ARFCN held in the low 12 bits of the byte-swapped field."""
    return _swap16(val) & 0x0FFF


def get_band_from_arfcn_and_band(val: int) -> int:
    """Band held in the top 4 bits of the byte-swapped field."""
    return _swap16(val) >> 12


@dataclass(frozen=True)
class BurstIndication:
    """A received burst with its radio parameters, in network byte order."""

    frame_nr: int
    band_arfcn: int
    chan_nr: int
    flags: int
    rx_level: int
    snr: int
    bits: bytes

    _STRUCT: ClassVar[struct.Struct] = struct.Struct(">IHBBBB15s")
    SIZE: ClassVar[int] = _STRUCT.size

    @classmethod
    def from_bytes(cls, data: bytes) -> BurstIndication:
        if len(data) < cls.SIZE:
            raise ValueError(f"burst indication needs {cls.SIZE} bytes, got {len(data)}")
        return cls(*cls._STRUCT.unpack_from(data))

    @property
    def uplink(self) -> bool:
        return bool(self.band_arfcn & ARFCN_UPLINK)

    @property
    def dummy(self) -> bool:
        return bool(self.flags & BI_FLG_DUMMY)

    @property
    def sacch(self) -> bool:
        return bool(self.flags & BI_FLG_SACCH)

    @property
    def burst_id(self) -> int:
        return self.flags & 0x03


class _ArfcnField:
    arfcn_and_band: int

    @property
    def arfcn(self) -> int:
        return get_arfcn_from_arfcn_and_band(self.arfcn_and_band)

    @property
    def band(self) -> int:
        return get_band_from_arfcn_and_band(self.arfcn_and_band)


@dataclass(frozen=True)
class BurstMetrics(_ArfcnField):
    """One entry of the GSM L1 burst metrics log record."""

    frame_number: int
    arfcn_and_band: int
    rssi: int
    rx_power: int
    dc_offset_i: int
    dc_offset_q: int
    frequency_offset: int
    timing_offset: int
    snr: int
    gain_state: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<IHIhhhhHHB")


@dataclass(frozen=True)
class SurroundingCell(_ArfcnField):
    """One cell of the surrounding-cell BA list log record."""

    arfcn_and_band: int
    rx_power: int
    bsic_known: bool
    bcc: int
    ncc: int
    frame_number_offset: int
    time_offset: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<HhBBIH")

    @classmethod
    def _from_fields(cls, arfcn_and_band, rx_power, known, bsic, fn_offset, time_offset):
        return cls(
            arfcn_and_band=arfcn_and_band,
            rx_power=rx_power,
            bsic_known=bool(known),
            bcc=bsic & 0x07,
            ncc=(bsic >> 3) & 0x07,
            frame_number_offset=fn_offset,
            time_offset=time_offset,
        )


@dataclass(frozen=True)
class TxlevTimingAdvance(_ArfcnField):
    """Transmit level and timing advance log record."""

    arfcn_and_band: int
    tx_power_level: int
    timing_advance: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<HBB")


@dataclass(frozen=True)
class MonitorRecord(_ArfcnField):
    """One record of the monitor bursts (v2) log record."""

    frame_number: int
    arfcn_and_band: int
    rx_power: int
    rssi: int
    gain_state: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<IHHIB")


_NEIGHBOR_CELL = struct.Struct("<Hh")
_U32 = struct.Struct("<I")


def _slice(data: bytes, offset: int, count: int, record: struct.Struct, what: str) -> bytes:
    end = offset + count * record.size
    if len(data) < end:
        raise ValueError(f"{what}: need {end} bytes for {count} records, got {len(data)}")
    return bytes(data[offset:end])


def parse_burst_metrics(data: bytes) -> tuple[int, list[BurstMetrics]]:
    """Parse a burst metrics record: the channel and its four burst entries."""
    if not data:
        raise ValueError("burst metrics: empty record")
    body = _slice(data, 1, 4, BurstMetrics.STRUCT, "burst metrics")
    metrics = [BurstMetrics(*fields) for fields in BurstMetrics.STRUCT.iter_unpack(body)]
    return data[0], metrics


def parse_surround_cell_ba_list(data: bytes) -> list[SurroundingCell]:
    """Parse a surrounding-cell BA list record."""
    if not data:
        raise ValueError("surrounding cell list: empty record")
    body = _slice(data, 1, data[0], SurroundingCell.STRUCT, "surrounding cell list")
    return [
        SurroundingCell._from_fields(*fields)
        for fields in SurroundingCell.STRUCT.iter_unpack(body)
    ]


def parse_txlev_timing_advance(data: bytes) -> TxlevTimingAdvance:
    """Parse a transmit level / timing advance record."""
    body = _slice(data, 0, 1, TxlevTimingAdvance.STRUCT, "txlev timing advance")
    return TxlevTimingAdvance(*TxlevTimingAdvance.STRUCT.unpack(body))


def parse_neighbor_cell_aux(data: bytes) -> list[tuple[int, int]]:
    """Parse neighbour auxiliary measurements as (arfcn_and_band, rx_power) pairs."""
    if not data:
        raise ValueError("neighbor cell measurements: empty record")
    body = _slice(data, 1, data[0], _NEIGHBOR_CELL, "neighbor cell measurements")
    return list(_NEIGHBOR_CELL.iter_unpack(body))


def parse_monitor_bursts_v2(data: bytes) -> list[MonitorRecord]:
    """Parse a monitor bursts (v2) record."""
    if len(data) < _U32.size:
        raise ValueError("monitor bursts: record too short for its count")
    (count,) = _U32.unpack_from(data)
    body = _slice(data, _U32.size, count, MonitorRecord.STRUCT, "monitor bursts")
    return [MonitorRecord(*fields) for fields in MonitorRecord.STRUCT.iter_unpack(body)]