"""GPRS RLC/MAC block handling and reassembly of LLC frames."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

_log = logging.getLogger(__name__)

OLD_TIME = 2000
N_BSN = 128
N_TFI = 32
MAX_BLOCKS = 20
MAX_DATA = 53
WINDOW = 64

_CODING_SCHEMES = {23: "CS1", 33: "CS2", 39: "CS3", 53: "CS4"}


def too_old(current_fn: int, test_fn: int) -> bool:
    """True when two frame numbers are more than OLD_TIME frames apart."""
    delta = (current_fn - test_fn) & 0xFFFFFFFF
    if delta >= 0x80000000:
        delta -= 0x100000000
    return abs(delta) > OLD_TIME


def bsn_is_next(first: int, second: int) -> bool:
    """True when ``second`` follows ``first`` in the 7-bit sequence space."""
    return (first + 1) % N_BSN == second


@dataclass
class _Lime:
    li: int
    more: bool
    ext: bool
    used: bool = False


@dataclass
class _Fragment:
    fn: int = 0
    last: bool = False
    data: bytes = b""
    blocks: list[_Lime] = field(default_factory=list)


def _fresh_fragments() -> list[_Fragment]:
    return [_Fragment() for _ in range(N_BSN)]


@dataclass
class _Tbf:
    last_bsn: int = 0
    start_bsn: int = 0
    frags: list[_Fragment] = field(default_factory=_fresh_fragments)


class RlcMacReassembler:
    """Collects RLC data blocks of one cell and rebuilds LLC frames from them.

    ``on_llc(frame, uplink)`` receives each reassembled LLC frame;
    ``on_rlcmac(block, timeslot, uplink)`` receives each data or control block.
    """

    def __init__(
        self,
        on_llc: Callable[[bytes, bool], None] | None = None,
        on_rlcmac: Callable[[bytes, int, bool], None] | None = None,
    ) -> None:
        self.on_llc = on_llc
        self.on_rlcmac = on_rlcmac
        self.tbfs = [_Tbf() for _ in range(2 * N_TFI)]

    def _emit_llc(self, frame: bytearray, uplink: bool) -> None:
        _log.debug("LLC frame %s", frame.hex())
        if self.on_llc is not None:
            self.on_llc(bytes(frame), uplink)

    def process_blocks(self, tbf: _Tbf, uplink: bool) -> None:
        """Walk the TBF window and emit every LLC frame that is complete."""
        frags = tbf.frags
        bsn = tbf.start_bsn
        while not frags[bsn].data:
            bsn = (bsn + 1) % N_BSN
            if bsn == tbf.start_bsn:
                _log.debug("no valid blocks in current TBF")
                return
        current_fn = frags[bsn].fn
        tbf.start_bsn = bsn

        skip = False
        llc = bytearray()
        llc_last_bsn = 0
        end = (tbf.last_bsn + 1) % N_BSN
        while bsn != end:
            frag = frags[bsn]
            if not frag.data or too_old(current_fn, frag.fn):
                llc.clear()
                skip = True
            else:
                current_fn = frag.fn
                if llc and not bsn_is_next(llc_last_bsn, bsn):
                    _log.debug("missing bsn, previous %d", llc_last_bsn)
                    llc.clear()
                    skip = True
                elif not frag.blocks:
                    llc += frag.data
                    llc_last_bsn = bsn
                    if frag.last:
                        self._emit_llc(llc, uplink)
                        for other in frags:
                            other.data = b""
                            other.blocks = []
                        llc.clear()
                        tbf.start_bsn = 0
                else:
                    li_off = 0
                    for lime in frag.blocks:
                        if lime.used:
                            if llc:
                                _log.debug("length indicator already used")
                                llc.clear()
                        else:
                            llc += frag.data[li_off:li_off + lime.li]
                            llc_last_bsn = bsn
                            self._emit_llc(llc, uplink)
                            lime.used = True
                            llc.clear()
                            if not skip:
                                tbf.start_bsn = bsn
                        li_off += lime.li

                    if frag.blocks[-1].more:
                        if llc:
                            _log.debug("spare data with non-empty buffer")
                        if len(frag.data) > li_off:
                            llc = bytearray(frag.data[li_off:])
                            llc_last_bsn = bsn
                            tbf.start_bsn = bsn
            bsn = (bsn + 1) % N_BSN

        if tbf.last_bsn - tbf.start_bsn > WINDOW:
            tbf.start_bsn = tbf.last_bsn - WINDOW
            _log.debug("shifting window")

    def handle_data(self, msg: bytes, fn: int, uplink: bool) -> bool:
        """Store one RLC data block; False when it was dropped as duplicate or stale."""
        if len(msg) < 3:
            raise ValueError(f"RLC data block needs at least 3 bytes, got {len(msg)}")
        ul = 1 if uplink else 0
        tfi = (msg[1] & 0x3E) >> 1
        bsn = (msg[2] & 0xFE) >> 1
        cv, fbi = 1, 0
        if ul:
            cv = (msg[0] & 0x3C) >> 2
        else:
            fbi = msg[1] & 0x01

        tbf = self.tbfs[2 * tfi + ul]
        d_same = (fn - tbf.frags[bsn].fn) & 0xFFFFFFFF
        d_last = (fn - tbf.frags[tbf.last_bsn].fn) & 0xFFFFFFFF
        d_bsn = bsn - tbf.last_bsn

        if d_same > OLD_TIME:
            if d_last > OLD_TIME:
                previous = self.tbfs[2 * ((tfi + 1) % N_TFI) + ul]
                tail = previous.frags[previous.last_bsn]
                if tail.data:
                    tail.last = True
                    self.process_blocks(previous, uplink)
                tbf.start_bsn = 0
                tbf.last_bsn = bsn
                tbf.frags = _fresh_fragments()
            elif d_bsn >= 0 or d_bsn < -WINDOW:
                tbf.last_bsn = bsn
            else:
                tbf.frags[bsn].fn = fn
                _log.debug("duplicate block %d", bsn)
                return False
        elif d_last > OLD_TIME:
            _log.debug("block %d too far from last block", bsn)
            return False
        elif d_bsn > 0:
            _log.debug("block %d ahead of window", bsn)
            return False
        elif d_bsn < -WINDOW:
            tbf.last_bsn = bsn
        else:
            tbf.frags[bsn].fn = fn
            _log.debug("duplicate block %d", bsn)
            return False

        frag = tbf.frags[bsn]
        blocks: list[_Lime] = []
        off = 2
        try:
            while True:
                byte = msg[off]
                off += 1
                if byte & 0x01:
                    break
                if len(blocks) >= MAX_BLOCKS:
                    raise ValueError("too many length indicators in RLC block")
                value = msg[off]
                blocks.append(
                    _Lime(li=(value & 0xFC) >> 2, more=bool(value & 0x02), ext=bool(value & 0x01))
                )
            if ul:
                if msg[1] & 0x01:
                    _log.debug("TLLI 0x%s", msg[off:off + 4].hex())
                    off += 4
                if msg[1] & 0x40:
                    _log.debug("PFI %d", msg[off])
                    off += 1
        except IndexError:
            raise ValueError("truncated RLC data block header") from None

        frag.blocks = blocks
        frag.last = cv == 0 or bool(fbi)
        frag.data = bytes(msg[off:off + MAX_DATA])
        frag.fn = fn

        self.process_blocks(tbf, uplink)
        return True

    def handle_block(self, msg: bytes, fn: int, uplink: bool, timeslot: int) -> None:
        """Dispatch one RLC/MAC block by its payload type."""
        if not msg:
            raise ValueError("empty RLC/MAC block")
        payload = (msg[0] & 0xC0) >> 6
        if payload == 0:
            _log.debug(
                "TS %d %s %s DATA",
                timeslot,
                _CODING_SCHEMES.get(len(msg), "?"),
                "UL" if uplink else "DL",
            )
            if self.on_rlcmac is not None:
                self.on_rlcmac(bytes(msg), timeslot, uplink)
            self.handle_data(msg, fn, uplink)
        elif payload in (1, 2):
            if self.on_rlcmac is not None:
                self.on_rlcmac(bytes(msg), timeslot, uplink)