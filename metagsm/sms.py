"""Parsing of short messages: CP, RP and TPDU layers, user data headers and OTA."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import IntEnum

from metagsm.session import SessionInfo

_log = logging.getLogger(__name__)

DCS_COMPRESSED = 0x80
_INFO_LIMIT = 255
_ADDRESS_LIMIT = 31

# CP layer message types (msg_type & 0x1f).
CP_DATA = 0x01
CP_ACK = 0x04
CP_ERROR = 0x10

# RP layer message types (msg_type & 0x0f).
RP_DATA_MO = 0x00
RP_DATA_MT = 0x01
RP_ACK_MO = 0x02
RP_ACK_MT = 0x03
RP_ERROR_MO = 0x04
RP_ERROR_MT = 0x05
RP_SMMA_MO = 0x06

_DTAP_HEADER_LEN = 2
_RP_HEADER_LEN = 3
_SEC_CP_LEN = 16
_SEC_RP_MIN_LEN = 13
_SEC_RP_SIGN_OFFSET = 13
_SEC_RP_MAX_SIGN = 16

_BCD_DIGITS = "0123456789*#abc"


class SmsClass(IntEnum):
    """Message class from the data coding scheme."""

    DISPLAY = 0
    ME = 1
    SIM = 2
    TE = 3
    NONE = 4


class SmsAlphabet(IntEnum):
    """Character set from the data coding scheme."""

    NONE = 0
    DEFAULT_7BIT = 1
    UCS2 = 2
    DATA_8BIT = 3


class OtaAlgo(IntEnum):
    """Ciphering or signing algorithm of an OTA secured packet."""

    NONE = 0
    IMPLICIT = 1
    PROPRIETARY = 2
    RESERVED = 3
    DES_CBC = 4
    TRIPLE_DES_2K = 5
    TRIPLE_DES_3K = 6
    DES_ECB = 7
    AES_CBC = 8


class OtaCounter(IntEnum):
    """Counter handling of an OTA secured packet."""

    NONE = 0
    AVAILABLE = 1
    HIGHER_THAN_OLD = 2
    OLD_PLUS_ONE = 3


class OtaSign(IntEnum):
    """Integrity protection of an OTA secured packet."""

    NONE = 0
    REDUNDANCY_CHECK = 1
    CRYPTO_CHECK = 2
    DIGITAL_SIGNATURE = 3


@dataclass
class SmsMeta:
    """Metadata collected from one short message."""

    sequence: int = 0
    from_network: bool = False
    pid: int = 0
    dcs: int = 0
    alphabet: int = SmsAlphabet.NONE
    sms_class: SmsClass = SmsClass.DISPLAY
    udhi: bool = False
    concat: bool = False
    concat_frag: int = 0
    concat_total: int = 0
    src_port: int = 0
    dst_port: int = 0
    ota: bool = False
    ota_iei: int = 0
    ota_enc: bool = False
    ota_enc_algo: OtaAlgo = OtaAlgo.NONE
    ota_sign: OtaSign = OtaSign.NONE
    ota_sign_algo: OtaAlgo = OtaAlgo.NONE
    ota_counter_type: OtaCounter = OtaCounter.NONE
    ota_counter: str = ""
    ota_tar: str = ""
    ota_por: int = 0
    ems: int = 0
    smsc: str = ""
    msisdn: str = ""
    length: int = 0
    udh_length: int = 0
    real_length: int = 0
    data: bytes = b""
    info: str = ""


def _note(sm: SmsMeta, text: str) -> None:
    room = _INFO_LIMIT - len(sm.info)
    if room > 0:
        sm.info += text[:room]


def get_sms_class(dcs: int) -> SmsClass:
    """Message class encoded in a data coding scheme byte."""
    group = dcs >> 4
    if (group & 0x0C) == 0:
        if dcs & 0x10:
            return SmsClass(dcs & 0x03)
    elif group == 0x0F:
        return SmsClass(dcs & 0x03)
    return SmsClass.NONE


def get_sms_alphabet(dcs: int) -> int:
    """Alphabet of a data coding scheme byte, with DCS_COMPRESSED or'ed in."""
    if dcs == 0x00:
        return SmsAlphabet.DEFAULT_7BIT
    group = dcs >> 4
    if (group & 0x0C) == 0:
        alpha = {
            0: SmsAlphabet.DEFAULT_7BIT,
            1: SmsAlphabet.DATA_8BIT,
            2: SmsAlphabet.UCS2,
        }.get((dcs >> 2) & 0x03, SmsAlphabet.NONE)
        if dcs & 0x20:
            return int(alpha) | DCS_COMPRESSED
        return alpha
    if group in (0x0C, 0x0D):
        return SmsAlphabet.DEFAULT_7BIT
    if group == 0x0E:
        return SmsAlphabet.UCS2
    if group == 0x0F:
        return SmsAlphabet.DATA_8BIT if dcs & 0x04 else SmsAlphabet.DEFAULT_7BIT
    return SmsAlphabet.NONE


def decode_address(data: Sequence[int], length: int) -> str:
    """Decode a type-of-address byte followed by ``length`` BCD digits.

    Digits are packed low nibble first; a 0xF nibble ends the number early.
    """
    if length < 0:
        raise ValueError("address length must not be negative")
    digits: list[str] = []
    for byte in data[1:]:
        for nibble in (byte & 0x0F, byte >> 4):
            if len(digits) >= length or nibble == 0x0F:
                return "".join(digits)
            digits.append(_BCD_DIGITS[nibble])
    return "".join(digits)


def _decode_rp_address(data: Sequence[int]) -> str:
    if not data:
        return ""
    return decode_address(data, 2 * (len(data) - 1))[:_ADDRESS_LIMIT]


def handle_text(sm: SmsMeta, msg: bytes) -> None:
    """Describe the user data of a message without a header."""
    if not msg:
        _note(sm, "<NO DATA>")
        return
    if sm.alphabet & DCS_COMPRESSED:
        _note(sm, "<COMPRESSED DATA>")
        return
    if sm.alphabet == SmsAlphabet.DEFAULT_7BIT:
        _note(sm, "TEXT_7BIT")
    elif sm.alphabet == SmsAlphabet.UCS2:
        _note(sm, "TEXT_16BIT")
    elif sm.alphabet in (SmsAlphabet.NONE, SmsAlphabet.DATA_8BIT):
        if sm.pid in (124, 127) or sm.dcs in (246, 22):
            _note(sm, "OTA ")
            sm.ota = True
        _note(sm, "DATA_8BIT")
    else:
        _note(sm, "<UNKNOWN ALPHABET>")


_COUNTER_NAMES = {
    0: ("NO_CNTR ", OtaCounter.NONE),
    1: ("CNTR_AV ", OtaCounter.AVAILABLE),
    2: ("CNTR_HI ", OtaCounter.HIGHER_THAN_OLD),
    3: ("CNTR_+1 ", OtaCounter.OLD_PLUS_ONE),
}

_SIGN_NAMES = {
    0: ("NOCC ", OtaSign.NONE),
    1: ("RC ", OtaSign.REDUNDANCY_CHECK),
    2: ("CC ", OtaSign.CRYPTO_CHECK),
    3: ("DS ", OtaSign.DIGITAL_SIGNATURE),
}

_IMPLICIT = ("IMPLICIT ", OtaAlgo.IMPLICIT)
_RESERVED = ("RESERVED ", OtaAlgo.RESERVED)
_PROPRIETARY = ("PROPRIET ", OtaAlgo.PROPRIETARY)
_DES_CBC = ("1DES-CBC ", OtaAlgo.DES_CBC)
_DES_2K = ("3DES-2K ", OtaAlgo.TRIPLE_DES_2K)
_DES_3K = ("3DES-3K ", OtaAlgo.TRIPLE_DES_3K)


def _cipher_algo(kic: int) -> tuple[str, OtaAlgo]:
    family, variant = kic & 0x03, (kic >> 2) & 0x03
    if family == 0:
        return _IMPLICIT
    if family == 1:
        return (_DES_CBC, _DES_2K, _DES_3K, ("1DES-EBC ", OtaAlgo.DES_ECB))[variant]
    if family == 2:
        return ("AES-CBC ", OtaAlgo.AES_CBC) if variant == 0 else _RESERVED
    return _PROPRIETARY


def _sign_algo(kid: int) -> tuple[str, OtaAlgo]:
    family, variant = kid & 0x03, (kid >> 2) & 0x03
    if family == 0:
        return _IMPLICIT
    if family == 1:
        return (_DES_CBC, _DES_2K, _DES_3K, _RESERVED)[variant]
    if family == 2:
        return _RESERVED
    return _PROPRIETARY


def handle_sec_cp(sm: SmsMeta, msg: bytes) -> None:
    """Describe the security header of an OTA command packet."""
    if len(msg) < _SEC_CP_LEN:
        _note(sm, "SANITY CHECK FAILED (OTA_CP_LEN)")
        return
    spi1, kic, kid = msg[3], msg[5], msg[6]
    tar, counter = msg[7:10], msg[10:15]

    text, sm.ota_counter_type = _COUNTER_NAMES[(spi1 >> 3) & 0x03]
    _note(sm, text)

    if spi1 & 0x04:
        _note(sm, "ENC ")
        sm.ota_enc = True
        text, sm.ota_enc_algo = _cipher_algo(kic)
        _note(sm, text)
    else:
        _note(sm, "NOENC ")
        sm.ota_enc = False
        sm.ota_enc_algo = OtaAlgo.NONE

    text, sm.ota_sign = _SIGN_NAMES[spi1 & 0x03]
    _note(sm, text)
    if spi1 & 0x03:
        text, sm.ota_sign_algo = _sign_algo(kid)
        _note(sm, text)
    else:
        sm.ota_sign_algo = OtaAlgo.NONE

    sm.ota_tar = tar.hex()
    _note(sm, f"TAR {sm.ota_tar} ")

    if not spi1 & 0x04:
        sm.ota_counter = counter.hex()
        _note(sm, f"CNTR {sm.ota_counter} ")


def handle_sec_rp(sm: SmsMeta, msg: bytes) -> None:
    """Describe the security header of an OTA response packet."""
    if len(msg) < _SEC_RP_MIN_LEN:
        _note(sm, "SANITY CHECK FAILED (OTA_RP_LEN)")
        return
    sm.ota_tar = msg[3:6].hex()
    _note(sm, f"TAR {sm.ota_tar} ")
    sm.ota_por = msg[12]
    _note(sm, f"POR {sm.ota_por:02X} ")
    if len(msg) > _SEC_RP_SIGN_OFFSET:
        sign_len = min(len(msg) - _SEC_RP_SIGN_OFFSET, _SEC_RP_MAX_SIGN)
        sign = msg[_SEC_RP_SIGN_OFFSET:_SEC_RP_SIGN_OFFSET + sign_len]
        _note(sm, f"CC {sign.hex()} ")
    else:
        _note(sm, "CC -- ")


_FIXED_LENGTH_IEIS = {
    0x01: (2, "SMS_SPECIAL_UDH"),
    0x06: (1, "SMS_SC_PARAM"),
    0x07: (1, "SMS_SOURCE_IND"),
}

_OTA_IEIS = {0x70: True, 0x71: False, 0x7F: True}


def _fail(sm: SmsMeta, what: str) -> None:
    _note(sm, f"SANITY CHECK FAILED ({what})")


def _concat(sm: SmsMeta, total: int, frag: int, what: str) -> bool:
    if frag > total:
        _fail(sm, what)
        return False
    _note(sm, f"[{frag}/{total}] ")
    sm.concat = True
    sm.concat_frag = frag
    sm.concat_total = total
    return True


def handle_udh(sm: SmsMeta, msg: bytes) -> None:
    """Parse the user data header, then describe the user data that follows."""
    if not msg:
        _note(sm, "NO DATA")
        sm.real_length = 0
        return
    header_len = msg[0]
    if header_len > len(msg) - 1:
        _fail(sm, "SMS_UDH_LEN")
        return

    user_data = msg[header_len + 1:]
    sm.udh_length = header_len
    sm.real_length = len(user_data) & 0xFF

    ota_cmd = False
    offset = 1
    while offset <= header_len:
        if offset + 1 >= len(msg):
            _fail(sm, "UDH_IEI_LEN")
            return
        iei, vlen = msg[offset], msg[offset + 1]
        offset += 2
        if offset + vlen > len(msg):
            _fail(sm, "UDH_IEI_LEN")
            return
        value = msg[offset:offset + vlen]

        if iei == 0x00:
            if vlen != 3:
                _fail(sm, "SMS_FRAG_HDR")
                return
            if not _concat(sm, value[1], value[2], "SMS_FRAG_8"):
                return
        elif iei in _FIXED_LENGTH_IEIS:
            expected, what = _FIXED_LENGTH_IEIS[iei]
            if vlen != expected:
                _fail(sm, what)
                return
        elif iei == 0x04:
            if vlen != 2:
                _fail(sm, "SMS_PORT8_HDR")
                return
            sm.src_port, sm.dst_port = value[1], value[0]
            _note(sm, f"PORT8 {sm.src_port}->{sm.dst_port} ")
        elif iei == 0x05:
            if vlen != 4:
                _fail(sm, "SMS_PORT8_HDR")
                return
            sm.src_port = (value[2] << 8) | value[3]
            sm.dst_port = (value[0] << 8) | value[1]
            _note(sm, f"PORT16 {sm.src_port}->{sm.dst_port} ")
        elif iei == 0x08:
            if vlen != 4:
                _fail(sm, "SMS_FRAG16_HDR")
                return
            if not _concat(sm, value[2], value[3], "SMS_FRAG_16"):
                return
        elif iei in (0x0A, 0x0D, 0x14):
            pass  # EMS elements
        elif iei == 0x22:
            if not value or vlen < value[0] // 2 + 1:
                _fail(sm, "SMS_REPLY_ADDR")
                return
            reply = decode_address(value[1:], value[0])[:_ADDRESS_LIMIT]
            _note(sm, f"REPLY_ADDR={reply} ")
        elif iei in (0x24, 0x25):
            if vlen != 1:
                _fail(sm, "SMS_LANG_SHIFT" if iei == 0x24 else "SMS_LANG_LOCK_SHIFT")
                return
            _note(sm, f"LANG_SHIFT={value[0]} ")
        elif iei in _OTA_IEIS:
            sm.ota = True
            sm.ota_iei = iei
            ota_cmd = _OTA_IEIS[iei]
        elif iei == 0xDA:
            if vlen > header_len:
                _fail(sm, "SMS_SMSC_SPECIFIC")
                return
            _log.debug("SMSC-specific %s", value.hex())
        else:
            _log.debug("Unhandled UDH-IEI 0x%02x, vlen=%d", iei, vlen)

        offset += vlen

    if sm.ota:
        _note(sm, "OTA ")
        if ota_cmd:
            handle_sec_cp(sm, user_data)
        else:
            handle_sec_rp(sm, user_data)
    else:
        handle_text(sm, user_data)


def handle_tpdu(
    session: SessionInfo, msg: bytes, from_network: bool, smsc: str
) -> None:
    """Parse an SMS-DELIVER or SMS-SUBMIT TPDU and add it to the session's list."""
    size = len(msg)
    if size < 2 or size > 255:
        return

    sm = SmsMeta()
    sm.smsc = smsc[:_ADDRESS_LIMIT] if smsc else "<NO ADDRESS>"
    sm.udhi = bool(msg[0] & 0x40)
    validity = (msg[0] >> 3) & 0x03

    off = 1 if from_network else 2
    if off >= size:
        session.append_info(" <TRUNCATED>")
        return
    addr_len = msg[off] + 1
    off += 1
    sm.msisdn = decode_address(msg[off:], addr_len - 1)[:_ADDRESS_LIMIT]
    sm.from_network = bool(from_network)
    session.append_info(f", {'FROM' if from_network else 'TO'} {sm.msisdn}")
    off += addr_len // 2 + 1

    if off + 2 > size:
        session.append_info(" <TRUNCATED>")
        return
    sm.pid, sm.dcs = msg[off], msg[off + 1]
    off += 2
    sm.alphabet = get_sms_alphabet(sm.dcs)
    sm.sms_class = get_sms_class(sm.dcs)

    if off >= size:
        session.append_info(" <TRUNCATED>")
        return

    if from_network:
        off += 7  # service centre time stamp
    else:
        off += {0: 0, 2: 1}.get(validity, 7)
    if off >= size:
        session.append_info(" <TRUNCATED>")
        return

    sm.length = msg[off]
    off += 1

    if (sm.dcs & 0xE0) != 0x20:
        if (sm.length * 7) // 8 > size - off:
            _note(sm, "<TRUNCATED> ")
            sm.length = (((size - off) * 8) // 7) & 0xFF

    if off >= size:
        session.append_info(" <TRUNCATED>")
        return

    user_data = bytes(msg[off:])
    sm.data = user_data
    if sm.udhi:
        handle_udh(sm, user_data[:sm.length])
    else:
        handle_text(sm, user_data[:sm.length])
        sm.real_length = len(user_data)

    sm.sequence = (session.sms_list[0].sequence + 1) & 0xFF if session.sms_list else 0
    session.sms_list.insert(0, sm)


_RP_NETWORK_TYPES = {
    0: ("-DELIVER", True),
    1: ("-SUBMIT-REPORT", False),
    2: ("-STATUS-REPORT", False),
    3: ("-RESERVED", False),
}

_RP_MOBILE_TYPES = {
    0: ("-DELIVER-REPORT", False),
    1: ("-SUBMIT", True),
    2: ("-COMMAND", False),
    3: ("-RESERVED", False),
}


def handle_rpdata(session: SessionInfo, data: bytes, from_network: bool) -> None:
    """Parse the body of an RP-DATA message."""
    size = len(data)
    if not size:
        return

    smsc = ""
    off = 0
    for from_side, what in ((True, "SMS_SMSC_MO"), (False, "SMS_SMSC_MT")):
        if off >= size:
            session.set_info("SANITY CHECK FAILED (SMS_OFFSET)")
            return
        addr_len = data[off]
        off += 1
        if addr_len:
            if bool(from_network) != from_side:
                session.set_info(f"SANITY CHECK FAILED ({what})")
                return
            smsc = _decode_rp_address(data[off:off + addr_len])
        off += addr_len

    if off >= size:
        session.set_info("SANITY CHECK FAILED (SMS_OFFSET)")
        return
    ud_len = data[off]
    off += 1
    if ud_len > size - off:
        ud_len = max(size - off - 1, 0)

    if off >= size:
        session.set_info("SANITY CHECK FAILED (SMS_OFFSET)")
        return

    table = _RP_NETWORK_TYPES if from_network else _RP_MOBILE_TYPES
    text, has_tpdu = table[data[off] & 0x03]
    session.append_info(text)
    if has_tpdu:
        handle_tpdu(session, bytes(data[off:off + ud_len]), from_network, smsc)


def handle_cpdata(session: SessionInfo, data: bytes) -> None:
    """Parse the RP message carried in a CP-DATA message."""
    if len(data) < _RP_HEADER_LEN:
        session.set_info("SANITY CHECK FAILED (RP_DATA_LEN)")
        return
    msg_type = data[1] & 0x0F
    body = bytes(data[_RP_HEADER_LEN:])

    if msg_type == RP_DATA_MO:
        session.set_info("SMS RP-DATA")
        handle_rpdata(session, body, False)
        session.mo = 1
    elif msg_type == RP_DATA_MT:
        session.set_info("SMS RP-DATA")
        handle_rpdata(session, body, True)
        session.mt = 1
    elif msg_type == RP_ACK_MO:
        session.set_info("SMS RP-ACK")
        session.mt = 1
    elif msg_type == RP_ACK_MT:
        session.set_info("SMS RP-ACK")
        session.mo = 1
    elif msg_type == RP_ERROR_MO:
        session.set_info("SMS RP-ERROR")
        session.mt = 1
    elif msg_type == RP_ERROR_MT:
        session.set_info("SMS RP-ACK")
        session.mo = 1
    elif msg_type == RP_SMMA_MO:
        session.set_info("SMS RP-SMMA")
        session.mo = 1
    else:
        session.unknown = 1


def handle_sms(session: SessionInfo, dtap: bytes) -> None:
    """Handle a short message DTAP (CP layer) message."""
    session.sms = 1
    session.sms_presence = 1
    if len(dtap) < _DTAP_HEADER_LEN:
        session.unknown = 1
        return
    msg_type = dtap[1] & 0x1F
    if msg_type == CP_DATA:
        handle_cpdata(session, bytes(dtap[_DTAP_HEADER_LEN:]))
    elif msg_type == CP_ACK:
        session.set_info("SMS CP-ACK")
    elif msg_type == CP_ERROR:
        session.set_info("SMS CP-ERROR")
    else:
        session.unknown = 1


def _quote(value: str | None) -> str:
    if not value:
        return "NULL"
    return "'" + value.replace("'", "''") + "'"


def sms_make_sql(sid: int, sm: SmsMeta) -> str:
    """INSERT statement storing ``sm`` for session ``sid``."""
    if sm.length:
        payload = sm.data[:sm.length].ljust(sm.length, b"\0")
        data = "X" + _quote(payload.hex())
    else:
        data = "'<NO DATA>'"

    values = [
        sid, sm.sequence, sm.from_network, sm.pid, sm.dcs, sm.alphabet,
        sm.sms_class, sm.udhi, sm.concat, sm.concat_frag, sm.concat_total,
        sm.src_port, sm.dst_port, sm.ota, sm.ota_iei, sm.ota_enc, sm.ota_enc_algo,
        sm.ota_sign, sm.ota_sign_algo, sm.ota_counter_type,
    ]
    numbers = ",".join(str(int(v)) for v in values)
    return (
        "INSERT INTO sms_meta (id,sequence,from_network,pid,dcs,alphabet,"
        "class,udhi,concat,concat_frag,concat_total,"
        "src_port,dst_port,ota,ota_iei,ota_enc,ota_enc_algo,"
        "ota_sign,ota_sign_algo,ota_counter,ota_counter_value,ota_tar,ota_por,"
        "smsc,msisdn,info,length,udh_length,real_length,data)"
        f" VALUES ({numbers},{_quote(sm.ota_counter)},{_quote(sm.ota_tar)},"
        f"{sm.ota_por},{_quote(sm.smsc)},{_quote(sm.msisdn)},{_quote(sm.info)},"
        f"{sm.length},{sm.udh_length},{sm.real_length},{data});\n"
    )