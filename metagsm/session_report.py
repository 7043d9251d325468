"""Session bookkeeping, console reports and SQL records of finished sessions."""

from __future__ import annotations

import sys
import time
from collections.abc import Callable
from dataclasses import fields
from typing import Any, TextIO

from metagsm.session import Domain, Rat, SessionInfo
from metagsm.sms import sms_make_sql

_REPORT_LIMIT = 4095

_RAT_NAMES = {Rat.GSM: "GSM", Rat.UMTS: "3G", Rat.LTE: "LTE"}


def sql_quote(value: str | None) -> str:
    """Quote ``value`` as an SQL string literal, or give NULL when it is empty."""
    if not value:
        return "NULL"
    return "'" + value.replace("'", "''") + "'"


def _hex_or_null(data: bytes) -> str:
    return sql_quote(data.hex()) if any(data) else "NULL"


def format_report(session: SessionInfo, privacy: bool) -> str | None:
    """Human readable summary of a session, or None if it never started."""
    if not session.started:
        return None

    parts = [
        f"\nmcc {session.mcc} mnc {session.mnc} lac {session.lac} cid {session.cid}\n"
    ]

    if session.rat == Rat.GSM:
        parts.append(f"cipher: A5/{session.cipher}\n")
    elif session.rat == Rat.UMTS:
        parts.append(
            f"cipher: UEA/{session.cipher}\nintegrity: UIA/{session.integrity}\n"
        )
    elif session.rat == Rat.LTE:
        parts.append(
            f"cipher: EEA/{session.cipher}\nintegrity: EIA/{session.integrity}\n"
        )

    if session.cipher:
        if session.decoded == 1:
            parts.append(f"key: {session.key[:8].hex()}\n")
        elif session.decoded < 0:
            parts.append("key: not found\n")
        else:
            parts.append("key: not available\n")
    else:
        parts.append("key: -\n")

    parts.append("randomization:")
    for label, stats in (
        ("si5", session.si5),
        ("si5bis", session.si5bis),
        ("si5ter", session.si5ter),
        ("si6", session.si6),
        ("null", session.null),
        ("sdcch_pad", session.other_sdcch),
        ("sacch_pad", session.other_sacch),
    ):
        if stats.byte_count:
            parts.append(f" {label} {stats.percent}%")
    parts.append("\n")

    parts.append("report:")
    for label, present in (
        ("mo", session.mo),
        ("mt", session.mt),
        ("locupd", session.locupd),
        ("call", session.call),
        ("sms", session.sms),
        ("ssa", session.ssa),
        ("detach", session.detach),
        ("auth", session.auth),
        ("iden_imsi", session.iden_imsi_ac or session.iden_imsi_bc),
        ("iden_imei", session.iden_imei_ac or session.iden_imei_bc),
        ("tmsi_realloc", session.tmsi_realloc),
        ("assignment", session.assignment),
        ("handover", session.handover),
        ("gprs", session.have_gprs),
        ("release", session.release),
        ("no_imeisv", session.cipher and not session.cmc_imeisv),
    ):
        if present:
            parts.append(f" {label}")

    if session.forced_ho:
        parts.append("\nFORCED HANDOVER!")
    if session.assignment or session.handover:
        parts.append(
            f"\nchan mode: {session.ga_chan_mode:02x} "
            f"rate conf: {session.ga_rate_conf:02x}"
        )

    if session.ms_cipher_mask:
        parts.append("\nMS ciphers:")
        mask, cipher = session.ms_cipher_mask, session.cipher
        if (mask & 1) or cipher == 1:
            parts.append(" A5/1")
        if (mask & 2) or cipher == 2:
            parts.append(" A5/2")
        if (mask & 4) or cipher == 3:
            parts.append(" A5/3")

    if session.ue_cipher_cap:
        parts.append("\nUE ciphers:")
        cap, cipher = session.ue_cipher_cap, session.cipher
        if (cap & 1) or cipher == 1:
            parts.append(" UEA/1")
        if (cap & 2) or cipher == 2:
            parts.append(" UEA/2")
        if (cap & 3) or cipher == 3:
            parts.append(" UEA/2")

    parts.append("\navailable IDs:")
    if any(session.old_tmsi):
        parts.append(f" TMSI={session.old_tmsi[:4].hex()}")
    if any(session.new_tmsi):
        parts.append(f" NEW_TMSI={session.new_tmsi[:4].hex()}")
    if not privacy:
        if session.imsi:
            parts.append(f" IMSI={session.imsi}")
        if session.imei:
            parts.append(f" IMEI={session.imei}")
        if session.msisdn:
            parts.append(f" MSISDN={session.msisdn}")

    return "".join(parts)[:_REPORT_LIMIT]


def session_make_sql(session: SessionInfo, sqlite: bool) -> str | None:
    """INSERT statement for a started, not yet closed session; None otherwise."""
    if not session.started or session.closed:
        return None

    seconds = int(session.timestamp)
    if sqlite:
        timestamp = f"datetime({seconds}, 'unixepoch')"
    else:
        timestamp = f"FROM_UNIXTIME({seconds})"

    fc = session.fc
    numeric: list[tuple[str, Any]] = [
        ("rat", session.rat), ("domain", session.domain),
        ("mcc", session.mcc), ("mnc", session.mnc), ("lac", session.lac),
        ("cid", session.cid), ("arfcn", session.arfcn), ("psc", session.psc),
        ("cracked", session.cracked), ("neigh_count", session.neigh_count),
        ("unenc", fc.unenc), ("unenc_rand", fc.unenc_rand), ("enc", fc.enc),
        ("enc_rand", fc.enc_rand), ("enc_null", fc.enc_null),
        ("enc_null_rand", fc.enc_null_rand), ("enc_si", fc.enc_si),
        ("enc_si_rand", fc.enc_si_rand), ("predict", fc.predict),
        ("avg_power", session.avg_power), ("uplink_avail", session.uplink),
        ("initial_seq", session.initial_seq), ("cipher_seq", session.cipher_seq),
        ("auth", session.auth), ("auth_req_fn", session.auth_req_fn),
        ("auth_resp_fn", session.auth_resp_fn), ("auth_delta", session.auth_delta),
        ("cipher_missing", session.cipher_missing),
        ("cipher_comp_first", session.cm_comp_first_fn),
        ("cipher_comp_last", session.cm_comp_last_fn),
        ("cipher_comp_count", session.cm_comp_count),
        ("cipher_delta", session.cipher_delta), ("cipher", session.cipher),
        ("integrity", session.integrity), ("cmc_imeisv", session.cmc_imeisv),
        ("first_fn", session.first_fn), ("last_fn", session.last_fn),
        ("duration", session.duration), ("mobile_orig", session.mo),
        ("mobile_term", session.mt), ("paging_mi", session.pag_mi),
        ("t_unknown", session.unknown), ("t_detach", session.detach),
        ("t_locupd", session.locupd), ("lu_type", session.lu_type),
        ("lu_acc", session.lu_acc), ("lu_reject", session.lu_reject),
        ("lu_rej_cause", session.lu_rej_cause), ("lu_mcc", session.lu_mcc),
        ("lu_mnc", session.lu_mnc), ("lu_lac", session.lu_lac),
        ("t_abort", session.abort), ("t_raupd", session.raupd),
        ("t_attach", session.attach), ("att_acc", session.att_acc),
        ("t_pdp", session.pdp_activate),
    ]
    columns = [("timestamp", timestamp)]
    columns += [(name, str(int(value))) for name, value in numeric]
    columns.append(("pdp_ip", sql_quote(session.pdp_ip)))
    trailing: list[tuple[str, Any]] = [
        ("t_call", session.call), ("t_sms", session.sms), ("t_ss", session.ssa),
        ("t_tmsi_realloc", session.tmsi_realloc), ("t_release", session.release),
        ("rr_cause", session.rr_cause), ("t_gprs", session.have_gprs),
        ("iden_imsi_ac", session.iden_imsi_ac), ("iden_imsi_bc", session.iden_imsi_bc),
        ("iden_imei_ac", session.iden_imei_ac), ("iden_imei_bc", session.iden_imei_bc),
        ("assign", session.assignment), ("assign_cmpl", session.assign_complete),
        ("handover", session.handover), ("forced_ho", session.forced_ho),
        ("a_timeslot", session.ga_chan_nr & 7), ("a_chan_type", session.ga_chan_nr >> 3),
        ("a_tsc", session.ga_tsc), ("a_hopping", session.ga_hopping),
        ("a_arfcn", session.ga_arfcn), ("a_hsn", session.ga_hsn),
        ("a_maio", session.ga_maio), ("a_ma_len", session.ga_ma_len),
        ("a_chan_mode", session.ga_chan_mode), ("a_multirate", session.ga_rate_conf),
        ("call_presence", session.call_presence), ("sms_presence", session.sms_presence),
        ("service_req", session.serv_req),
    ]
    columns += [(name, str(int(value))) for name, value in trailing]
    columns += [
        ("imsi", sql_quote(session.imsi)),
        ("imei", sql_quote(session.imei)),
        ("tmsi", _hex_or_null(session.old_tmsi[:4])),
        ("new_tmsi", _hex_or_null(session.new_tmsi[:4])),
        ("tlli", _hex_or_null(session.tlli[:4])),
        ("msisdn", sql_quote(session.msisdn)),
        ("ms_cipher_mask", str(int(session.ms_cipher_mask))),
        ("ue_cipher_cap", str(int(session.ue_cipher_cap))),
        ("ue_integrity_cap", str(int(session.ue_integrity_cap))),
    ]
    if session.id >= 0:
        columns.insert(0, ("id", str(session.id)))

    names = ",".join(name for name, _ in columns)
    values = ",".join(value for _, value in columns)
    return f"INSERT INTO session_info ({names}) VALUES ({values});\n"


class SessionManager:
    """Creates, closes and resets sessions and hands their records to the outputs.

    Two long-lived sessions, one per core network domain, are kept in
    ``domains``; further sessions made with :meth:`create` live in ``sessions``.
    """

    def __init__(
        self,
        start_sid: int = 0,
        *,
        console: bool = True,
        sql_callback: Callable[[str], None] | None = None,
        sqlite: bool = True,
        stream: Callable[[Any], None] | None = None,
        auto_reset: bool = True,
        auto_timestamp: bool = False,
        privacy: bool = False,
        output: TextIO | None = None,
        now: int = 0,
    ) -> None:
        self.next_id = start_sid
        self.console = console
        self.sqlite = sqlite
        self.stream = stream
        self.auto_reset = auto_reset
        self.auto_timestamp = auto_timestamp
        self.privacy = privacy
        self.output = output
        self.now = now
        self.sessions: list[SessionInfo] = []
        self.domains = tuple(
            SessionInfo(id=self._take_id(), domain=domain, sql_callback=sql_callback)
            for domain in (Domain.CS, Domain.PS)
        )

    def __enter__(self) -> SessionManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.reset(self.domains[0], False)
        self.domains[1].new_msg = None
        self.reset(self.domains[1], False)

    def _take_id(self) -> int:
        value = self.next_id
        self.next_id += 1
        return value

    def _write(self, text: str) -> None:
        stream = self.output if self.output is not None else sys.stdout
        stream.write(text)
        stream.flush()

    def create(
        self,
        id: int,
        name: str | None,
        key: bytes | None,
        mcc: int,
        mnc: int,
        lac: int,
        cid: int,
    ) -> SessionInfo:
        """Start a new session; a negative ``id`` takes the next free one."""
        session = SessionInfo(id=self._take_id() if id < 0 else id)
        if name:
            session.name = name
        session.timestamp = time.time() if self.auto_timestamp else float(self.now)
        if key is not None:
            if len(key) != 8:
                raise ValueError(f"session key must be 8 bytes, got {len(key)}")
            session.have_key = True
            session.key = bytes(key)
        session.mcc, session.mnc, session.lac, session.cid = mcc, mnc, lac, cid
        session.decoded = 1
        self.sessions.insert(0, session)
        return session

    def enumerate(self) -> int:
        """Count sessions still being processed, listing them on the console."""
        active = [s for s in self.sessions if s.processing]
        if self.console:
            lines = ["Open sessions:"] + [f" {s.id}: {s.name}" for s in active]
            self._write("\n".join(lines) + "\n\n")
        return len(active)

    def free(self, session: SessionInfo) -> None:
        """Drop a session created with :meth:`create`; only without auto reset."""
        if self.auto_reset:
            raise RuntimeError("sessions are freed by reset while auto reset is on")
        self.sessions.remove(session)
        session.messages.clear()
        session.sms_list.clear()

    def close(self, session: SessionInfo) -> None:
        """Finish a session and emit its report and SQL records."""
        session.processing = False
        if self.auto_timestamp:
            session.timestamp = time.time()
        elif self.now:
            session.timestamp = float(self.now)

        session.compute_durations()

        if self.stream is not None and not self.auto_reset:
            for message in session.messages:
                self.stream(message)

        if self.console:
            report = format_report(session, self.privacy)
            if report is not None:
                self._write(f"{report}\n\n")

        callback = session.sql_callback
        if callback is not None:
            statement = session_make_sql(session, self.sqlite)
            if statement is not None:
                callback(statement)
            for sm in session.sms_list:
                callback(sms_make_sql(session.id, sm))
            if session.appid:
                callback(
                    f"INSERT INTO sid_appid VALUES ({session.id},'{session.appid:08x}');\n"
                )

        session.closed = True

    def reset(self, session: SessionInfo, forced_release: bool) -> None:
        """Close a running session and clear it for the next transaction.

        Cell identity, IMSI, application ID and the repeated-message memory
        survive. With ``forced_release`` the message being processed stays
        attached to the cleared session.
        """
        if not self.auto_reset:
            return

        held = None
        if forced_release:
            held = session.new_msg
        else:
            if session.new_msg is not None:
                session.messages.append(session.new_msg)
            session.new_msg = None

        if session.started and not session.closed:
            self._write(f"RAT: {_RAT_NAMES.get(session.rat, 'UNKNOWN')}\n")
            session.cracked = True
            self.close(session)

        if session.started and session.closed:
            self.next_id += 1
            new_id = self.next_id
        else:
            new_id = session.id

        fresh = SessionInfo(
            id=new_id,
            appid=session.appid,
            name=session.name,
            domain=session.domain,
            mcc=session.mcc,
            mnc=session.mnc,
            lac=session.lac,
            sql_callback=session.sql_callback,
        )
        if not self.auto_timestamp:
            fresh.timestamp = session.timestamp
        if session.rat != Rat.GSM:
            fresh.cid = session.cid
        if session.imsi:
            fresh.imsi = session.imsi
        if forced_release:
            fresh.new_msg = held
        if session.last_dtap:
            fresh.last_dtap = session.last_dtap
            fresh.last_dtap_rat = session.last_dtap_rat

        for item in fields(SessionInfo):
            setattr(session, item.name, getattr(fresh, item.name))