import struct

import pytest

from metagsm.diag_structs import (
    ARFCN_UPLINK,
    BI_FLG_DUMMY,
    BI_FLG_SACCH,
    BurstIndication,
    BurstMetrics,
    MonitorRecord,
    SurroundingCell,
    TxlevTimingAdvance,
    get_arfcn_from_arfcn_and_band,
    get_band_from_arfcn_and_band,
    parse_burst_metrics,
    parse_monitor_bursts_v2,
    parse_neighbor_cell_aux,
    parse_surround_cell_ba_list,
    parse_txlev_timing_advance,
)


def test_arfcn_and_band_byte_swap():
    assert get_arfcn_from_arfcn_and_band(0x3412) == 0x234
    assert get_band_from_arfcn_and_band(0x3412) == 1


def test_arfcn_and_band_recombine():
    for val in (0x0000, 0xFFFF, 0x7A05, 0x00F3):
        arfcn = get_arfcn_from_arfcn_and_band(val)
        band = get_band_from_arfcn_and_band(val)
        assert struct.pack(">H", (band << 12) | arfcn) == struct.pack("<H", val)


def test_arfcn_and_band_rejects_wide_value():
    with pytest.raises(ValueError):
        get_arfcn_from_arfcn_and_band(0x10000)


def test_burst_indication_from_bytes():
    bits = bytes(range(15))
    raw = struct.pack(">IHBBBB15s", 123456, ARFCN_UPLINK | 62, 0x08,
                      BI_FLG_DUMMY | 2, 40, 200, bits)
    bi = BurstIndication.from_bytes(raw)
    assert bi.frame_nr == 123456
    assert bi.band_arfcn == ARFCN_UPLINK | 62
    assert bi.chan_nr == 0x08
    assert bi.rx_level == 40
    assert bi.snr == 200
    assert bi.bits == bits
    assert bi.uplink is True
    assert bi.dummy is True
    assert bi.sacch is False
    assert bi.burst_id == 2


def test_burst_indication_downlink_sacch():
    raw = struct.pack(">IHBBBB15s", 1, 62, 0, BI_FLG_SACCH, 0, 0, bytes(15))
    bi = BurstIndication.from_bytes(raw)
    assert bi.uplink is False
    assert bi.sacch is True
    assert BurstIndication.SIZE == len(raw)


def test_burst_indication_too_short():
    with pytest.raises(ValueError):
        BurstIndication.from_bytes(bytes(10))


def test_parse_burst_metrics():
    entries = [
        (1000 + k, 0x3412, 5000 + k, -80 - k, 3, -4, 100, 7, 20 + k, k)
        for k in range(4)
    ]
    raw = bytes([5]) + b"".join(struct.pack("<IHIhhhhHHB", *e) for e in entries)
    channel, metrics = parse_burst_metrics(raw)
    assert channel == 5
    assert [tuple(vars(m).values()) for m in metrics] == entries
    assert all(isinstance(m, BurstMetrics) for m in metrics)
    assert metrics[0].arfcn == get_arfcn_from_arfcn_and_band(0x3412)


def test_parse_burst_metrics_truncated():
    with pytest.raises(ValueError):
        parse_burst_metrics(bytes(50))


def test_parse_surround_cell_ba_list():
    cells = [(0x1000, -90, 1, 3 | (6 << 3), 77, 1234), (0x2001, -70, 0, 0, 0, 5)]
    raw = bytes([len(cells)]) + b"".join(struct.pack("<HhBBIH", *c) for c in cells)
    parsed = parse_surround_cell_ba_list(raw)
    assert len(parsed) == 2
    first = parsed[0]
    assert first == SurroundingCell(
        arfcn_and_band=0x1000, rx_power=-90, bsic_known=True, bcc=3, ncc=6,
        frame_number_offset=77, time_offset=1234,
    )
    assert parsed[1].bsic_known is False
    assert parsed[1].band == get_band_from_arfcn_and_band(0x2001)


def test_parse_surround_cell_ba_list_empty_count():
    assert parse_surround_cell_ba_list(bytes([0])) == []


def test_parse_surround_cell_ba_list_truncated():
    with pytest.raises(ValueError):
        parse_surround_cell_ba_list(bytes([3]) + bytes(12))


def test_parse_txlev_timing_advance():
    raw = struct.pack("<HBB", 0x3412, 5, 63)
    assert parse_txlev_timing_advance(raw) == TxlevTimingAdvance(0x3412, 5, 63)


def test_parse_txlev_timing_advance_truncated():
    with pytest.raises(ValueError):
        parse_txlev_timing_advance(bytes(2))


def test_parse_neighbor_cell_aux():
    cells = [(0x0100, -60), (0x0200, -101), (0x0300, 0)]
    raw = bytes([3]) + b"".join(struct.pack("<Hh", *c) for c in cells)
    assert parse_neighbor_cell_aux(raw) == cells


def test_parse_neighbor_cell_aux_empty():
    with pytest.raises(ValueError):
        parse_neighbor_cell_aux(b"")


def test_parse_monitor_bursts_v2():
    records = [(42, 0x3412, 300, 9000, 2), (43, 0x0100, 310, 9100, 3)]
    raw = struct.pack("<I", 2) + b"".join(struct.pack("<IHHIB", *r) for r in records)
    parsed = parse_monitor_bursts_v2(raw)
    assert parsed == [MonitorRecord(*r) for r in records]


def test_parse_monitor_bursts_v2_truncated():
    raw = struct.pack("<I", 5) + bytes(13)
    with pytest.raises(ValueError):
        parse_monitor_bursts_v2(raw)