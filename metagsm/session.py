"""Per-transaction session state and session metadata taken from capture file names."""

from __future__ import annotations

import re
import string
import struct
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

GSM_MAX_FN = 26 * 51 * 2048
FRAME_DURATION_MS = 4.615
FUTURE_TOLERANCE_S = 43200
UNKNOWN_CELL_VALUE = 65535

_APPID_MARKER = "2__"
_XGS_MARKER = "_xgs."
_QDMON_MARKER = "_qdmon."

_UMTS_NAMES = frozenset({"UMTS", "3G", "WCDMA"})
_GSM_NAMES = frozenset({"GSM", "UNKNOWN", "UNKNWON", "null"})
_LTE_NAMES = frozenset({"LTE"})

_HEX_PREFIX = re.compile(r"[0-9a-fA-F]+")


class Rat(IntEnum):
    """Radio access technology of a session."""

    GSM = 0
    UMTS = 1
    LTE = 2


class Domain(IntEnum):
    """Core network domain: circuit switched or packet switched."""

    CS = 0
    PS = 1


class SessionParseError(ValueError):
    """A capture file name does not follow the expected layout."""


@dataclass
class FrameCount:
    """Counters of encrypted, unencrypted and randomised frames."""

    unenc: int = 0
    unenc_rand: int = 0
    enc: int = 0
    enc_rand: int = 0
    enc_null: int = 0
    enc_null_rand: int = 0
    enc_si: int = 0
    enc_si_rand: int = 0
    predict: int = 0
    power_count: int = 0
    power_sum: int = 0


@dataclass
class RandStats:
    """Padding randomisation statistics for one message kind."""

    byte_count: int = 0
    rand_count: int = 0

    @property
    def percent(self) -> int:
        """Share of randomised bytes, in whole percent."""
        if not self.byte_count:
            return 0
        return 100 * self.rand_count // self.byte_count


@dataclass
class SessionInfo:
    """Everything gathered about one radio transaction."""

    id: int = 0
    appid: int = 0
    name: str = ""
    timestamp: float = 0.0
    rat: Rat = Rat.GSM
    domain: Domain = Domain.CS
    mcc: int = 0
    mnc: int = 0
    lac: int = 0
    cid: int = 0
    psc: int = 0
    arfcn: int = 0
    neigh_count: int = 0
    started: bool = False
    closed: bool = False
    cracked: bool = False
    processing: bool = False
    decoded: int = 0
    have_key: bool = False
    no_key: bool = False
    key: bytes = bytes(8)
    initial_seq: int = 0
    cipher_seq: int = 0
    cipher_missing: int = 0
    cm_cmd_fn: int = 0
    cm_comp_first_fn: int = 0
    cm_comp_last_fn: int = 0
    cm_comp_count: int = 0
    cipher_delta: int = 0
    cipher: int = 0
    integrity: int = 0
    first_fn: int = 0
    last_fn: int = 0
    duration: int = 0
    auth_delta: int = 0
    auth_req_fn: int = 0
    auth_resp_fn: int = 0
    uplink: int = 0
    avg_power: int = 0
    mo: int = 0
    mt: int = 0
    unknown: int = 0
    detach: int = 0
    locupd: int = 0
    lu_type: int = 0
    lu_acc: int = 0
    lu_reject: int = 0
    lu_rej_cause: int = 0
    lu_mcc: int = 0
    lu_mnc: int = 0
    lu_lac: int = 0
    pag_mi: int = 0
    serv_req: int = 0
    call: int = 0
    sms: int = 0
    ssa: int = 0
    abort: int = 0
    raupd: int = 0
    attach: int = 0
    att_acc: int = 0
    pdp_activate: int = 0
    pdp_ip: str = ""
    tmsi_realloc: int = 0
    release: int = 0
    rr_cause: int = 0
    have_gprs: int = 0
    auth: int = 0
    iden_imsi_bc: int = 0
    iden_imei_bc: int = 0
    iden_imsi_ac: int = 0
    iden_imei_ac: int = 0
    cmc_imeisv: int = 0
    ms_cipher_mask: int = 0
    ue_cipher_cap: int = 0
    ue_integrity_cap: int = 0
    assignment: int = 0
    assign_complete: int = 0
    handover: int = 0
    forced_ho: int = 0
    use_tmsi: int = 0
    use_imsi: int = 0
    use_jump: int = 0
    r_time: float = 0.0
    sms_presence: int = 0
    call_presence: int = 0
    old_tmsi: bytes = bytes(4)
    new_tmsi: bytes = bytes(4)
    tlli: bytes = bytes(4)
    imsi: str = ""
    imei: str = ""
    msisdn: str = ""
    # Channel assignment details.
    ga_chan_nr: int = 0
    ga_tsc: int = 0
    ga_hopping: int = 0
    ga_arfcn: int = 0
    ga_hsn: int = 0
    ga_maio: int = 0
    ga_ma_len: int = 0
    ga_chan_mode: int = 0
    ga_rate_conf: int = 0
    fc: FrameCount = field(default_factory=FrameCount)
    last_dtap: bytes = b""
    last_dtap_rat: int = 0
    messages: list[Any] = field(default_factory=list)
    new_msg: Any = None
    info: str = ""
    sms_list: list[Any] = field(default_factory=list)
    null: RandStats = field(default_factory=RandStats)
    si5: RandStats = field(default_factory=RandStats)
    si5bis: RandStats = field(default_factory=RandStats)
    si5ter: RandStats = field(default_factory=RandStats)
    si6: RandStats = field(default_factory=RandStats)
    other_sdcch: RandStats = field(default_factory=RandStats)
    other_sacch: RandStats = field(default_factory=RandStats)
    sql_callback: Callable[[str], None] | None = field(
        default=None, repr=False, compare=False
    )

    def set_info(self, text: str) -> None:
        """Replace the description of the message being processed."""
        self.info = text

    def append_info(self, text: str) -> None:
        """Extend the description of the message being processed."""
        self.info += text

    def compute_durations(self) -> None:
        """Turn frame-number spans into milliseconds for duration and deltas."""
        self.duration = _scale(_fn_delta(self.first_fn, self.last_fn))

        if self.auth and self.auth_req_fn and self.auth_resp_fn:
            self.auth_delta = _fn_delta(self.auth_req_fn, self.auth_resp_fn)
        self.auth_delta = _scale(self.auth_delta)

        if self.cipher and self.cm_cmd_fn and self.cm_comp_last_fn:
            self.cipher_delta = _fn_delta(self.cm_cmd_fn, self.cm_comp_last_fn)
        self.cipher_delta = _scale(self.cipher_delta)


def _fn_delta(start: int, end: int) -> int:
    if start <= end:
        return end - start
    return ((end + GSM_MAX_FN) - start) % GSM_MAX_FN


def _f32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


_FRAME_DURATION_F32 = _f32(FRAME_DURATION_MS)


def _scale(frames: int) -> int:
    """Frames to milliseconds with single precision, truncated to 32 bits."""
    return int(_f32(_f32(float(frames)) * _FRAME_DURATION_F32)) & 0xFFFFFFFF


def parse_appid(filename: str) -> int:
    """Application ID: the 8-hex-digit field after ``2__<word>_``, or 0."""
    pos = filename.find(_APPID_MARKER)
    if pos < 0:
        return 0
    tokens = [t for t in filename[pos + len(_APPID_MARKER):].split("_") if t]
    if len(tokens) < 2 or len(tokens[1]) != 8:
        return 0
    token = tokens[1]
    if token[:2] in ("0x", "0X") and len(token) > 2 and token[2] in string.hexdigits:
        token = token[2:]
    match = _HEX_PREFIX.match(token)
    return int(match.group(), 16) if match else 0


def _scan(text: str, spec: Sequence[object]) -> list[int]:
    """Read integers as scanf would, stopping at the first field that fails."""
    values: list[int] = []
    pos = 0
    end = len(text)
    for item in spec:
        if isinstance(item, str):
            if not text.startswith(item, pos):
                break
            pos += len(item)
            continue
        kind, width = item
        while pos < end and text[pos].isspace():
            pos += 1
        limit = end if width is None else min(end, pos + width)
        sign = 1
        if pos < limit and text[pos] in "+-":
            sign = -1 if text[pos] == "-" else 1
            pos += 1
        if kind == "x":
            digits, base = string.hexdigits, 16
            if (
                text[pos:pos + 2] in ("0x", "0X")
                and pos + 2 < limit
                and text[pos + 2] in digits
            ):
                pos += 2
        else:
            digits, base = string.digits, 10
        start = pos
        while pos < limit and text[pos] in digits:
            pos += 1
        if pos == start:
            break
        values.append(sign * int(text[start:pos], base))
    return values


_TIMESTAMP_SPEC = (("d", 4), ("d", 2), ("d", 2), "-", ("d", 2), ("d", 2), ("d", 2))
_CELL_SPEC = (("d", 3), ("d", 3), "-", ("x", None), "-", ("x", None))


def _rat_from_name(token: str) -> Rat:
    if token in _UMTS_NAMES:
        return Rat.UMTS
    if token in _GSM_NAMES:
        return Rat.GSM
    if token in _LTE_NAMES:
        return Rat.LTE
    raise SessionParseError(f"unknown network type {token}")


def session_from_filename(
    filename: str, session: SessionInfo, now: float | None = None
) -> None:
    """Fill ``session`` from a capture file name.

    Sets the application ID, an optional IMSI prefix, the timestamp, the radio
    technology and the cell identity. Raises SessionParseError when the name
    cannot be understood; fields read before the failure stay set.
    """
    if now is None:
        now = time.time()

    session.appid = parse_appid(filename)

    xgs = filename.find(_XGS_MARKER)
    qdmon = filename.find(_QDMON_MARKER)
    if (xgs >= 0) == (qdmon >= 0):
        raise SessionParseError("cannot determine baseband type from file name")
    start = xgs if xgs >= 0 else qdmon

    tokens = iter([t for t in filename[start:].split(".") if t])

    def next_token() -> str:
        try:
            return next(tokens)
        except StopIteration:
            raise SessionParseError("file name ends too early") from None

    next_token()  # baseband marker
    next_token()  # phone model
    token = next_token()

    # Some models carry a version after a dot.
    if len(token) in (1, 2):
        token = next_token()

    if len(token) in (5, 6):
        if _scan(token, (("d", 6),)):
            session.imsi = token
        token = next_token()

    fields = _scan(token, _TIMESTAMP_SPEC)
    if len(fields) != 6:
        raise SessionParseError(f"unknown timestamp format {token}")
    year, month, day, hour, minute, second = fields
    try:
        stamp = time.mktime((year, month, day, hour, minute, second, 0, 0, 0))
    except (OverflowError, ValueError) as exc:
        raise SessionParseError(f"unknown timestamp format {token}") from exc
    session.timestamp = float(int(stamp))
    if session.timestamp > now + FUTURE_TOLERANCE_S:
        session.timestamp = now

    session.rat = _rat_from_name(next_token())

    token = next_token()
    cell = _scan(token, _CELL_SPEC)
    if len(cell) >= 1:
        session.mcc = cell[0] & 0xFFFF
    if len(cell) >= 2:
        session.mnc = cell[1] & 0xFFFF
    if len(cell) < 4:
        session.lac = UNKNOWN_CELL_VALUE
        session.cid = UNKNOWN_CELL_VALUE
        if len(cell) < 2:
            session.mcc = UNKNOWN_CELL_VALUE
            session.mnc = UNKNOWN_CELL_VALUE
            raise SessionParseError(f"unknown cellid format {token}")
    else:
        session.lac = cell[2] & 0xFFFF
        session.cid = cell[3] & 0xFFFFFFFF