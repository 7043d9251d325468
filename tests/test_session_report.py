import io
import re
import sqlite3

import pytest

from metagsm.session import Rat, SessionInfo
from metagsm.session_report import (
    SessionManager,
    format_report,
    session_make_sql,
    sql_quote,
)


def _started(**kwargs):
    return SessionInfo(started=True, mcc=262, mnc=1, lac=100, cid=200, **kwargs)


def test_sql_quote():
    assert sql_quote("") == "NULL"
    assert sql_quote(None) == "NULL"
    assert sql_quote("it's") == "'it''s'"


def test_format_report_not_started():
    assert format_report(SessionInfo(), False) is None


def test_format_report_gsm_key():
    key = bytes(range(1, 9))
    report = format_report(_started(cipher=1, decoded=1, key=key), False)
    assert report.startswith("\nmcc 262 mnc 1 lac 100 cid 200\n")
    assert "cipher: A5/1\n" in report
    assert f"key: {key.hex()}\n" in report


def test_format_report_key_states():
    assert "key: not found\n" in format_report(_started(cipher=1, decoded=-1), False)
    assert "key: not available\n" in format_report(_started(cipher=1, decoded=0), False)
    assert "key: -\n" in format_report(_started(cipher=0), False)


def test_format_report_umts():
    report = format_report(_started(rat=Rat.UMTS, cipher=2, integrity=1), False)
    assert "cipher: UEA/2\nintegrity: UIA/1\n" in report


def test_format_report_flags_and_ids():
    session = _started(mo=1, sms=1, old_tmsi=b"\x12\x34\x56\x78")
    report = format_report(session, False)
    assert "report: mo sms" in report
    assert " TMSI=12345678" in report


def test_format_report_privacy():
    session = _started(imsi="00101")
    assert " IMSI=00101" in format_report(session, False)
    assert "IMSI=" not in format_report(session, True)


def test_make_sql_skips_unstarted_and_closed():
    assert session_make_sql(SessionInfo(), True) is None
    assert session_make_sql(_started(closed=True), True) is None


def test_make_sql_timestamp_formats():
    session = _started(id=4, timestamp=1000.0)
    assert "datetime(1000, 'unixepoch')" in session_make_sql(session, True)
    assert "FROM_UNIXTIME(1000)" in session_make_sql(session, False)


def test_make_sql_negative_id_omits_column():
    statement = session_make_sql(_started(id=-1), True)
    assert statement.startswith("INSERT INTO session_info (timestamp,")
    assert statement.endswith(");\n")


def test_make_sql_runs_in_sqlite():
    session = _started(id=7, timestamp=1000.0, imsi="00101", old_tmsi=b"\x12\x34\x56\x78")
    statement = session_make_sql(session, True)
    columns = re.match(r"INSERT INTO session_info \(([^)]*)\)", statement).group(1)
    names = columns.split(",")
    conn = sqlite3.connect(":memory:")
    conn.execute(
        "CREATE TABLE session_info (" + ", ".join(f'"{n}"' for n in names) + ")"
    )
    conn.execute(statement)
    row = conn.execute(
        "SELECT id, imsi, tmsi, tlli, strftime('%s', timestamp), mcc FROM session_info"
    ).fetchone()
    assert row == (7, "00101", "12345678", None, "1000", 262)


def test_manager_ids():
    manager = SessionManager(10, console=False)
    assert [s.id for s in manager.domains] == [10, 11]
    assert manager.create(-1, "a", None, 1, 2, 3, 4).id == 12
    assert manager.create(5, "b", None, 1, 2, 3, 4).id == 5
    assert manager.next_id == 13


def test_manager_create_rejects_bad_key():
    manager = SessionManager(console=False)
    with pytest.raises(ValueError):
        manager.create(-1, None, b"\x01\x02", 0, 0, 0, 0)


def test_manager_enumerate_counts_processing():
    out = io.StringIO()
    manager = SessionManager(output=out)
    first = manager.create(-1, "one", None, 0, 0, 0, 0)
    manager.create(-1, "two", None, 0, 0, 0, 0)
    first.processing = True
    assert manager.enumerate() == 1
    assert f" {first.id}: one" in out.getvalue()


def test_manager_close_emits_sql():
    statements = []
    manager = SessionManager(console=False, sql_callback=statements.append)
    session = manager.domains[0]
    session.started = True
    session.appid = 0xABCD
    manager.close(session)
    assert session.closed
    assert statements[0].startswith("INSERT INTO session_info (id,")
    assert statements[-1] == f"INSERT INTO sid_appid VALUES ({session.id},'0000abcd');\n"


def test_manager_reset_closes_and_keeps_identity():
    out = io.StringIO()
    statements = []
    manager = SessionManager(output=out, sql_callback=statements.append)
    session = manager.domains[0]
    session.started = True
    session.mcc = 262
    session.cid = 200
    session.imsi = "00101"
    manager.reset(session, False)
    assert "RAT: GSM" in out.getvalue()
    assert len(statements) == 1
    assert session.id == manager.next_id
    assert not session.started and not session.closed
    assert session.mcc == 262
    assert session.imsi == "00101"
    assert session.cid == 0


def test_manager_reset_keeps_cid_outside_gsm():
    manager = SessionManager(console=False)
    session = manager.domains[1]
    session.rat = Rat.UMTS
    session.cid = 200
    old_id = session.id
    manager.reset(session, False)
    assert session.cid == 200
    assert session.id == old_id


def test_manager_reset_forced_release_keeps_message():
    manager = SessionManager(console=False)
    session = manager.domains[0]
    marker = object()
    session.new_msg = marker
    manager.reset(session, True)
    assert session.new_msg is marker

    manager.reset(session, False)
    assert session.new_msg is None
    assert session.messages == []


def test_manager_reset_disabled():
    manager = SessionManager(console=False, auto_reset=False)
    session = manager.domains[0]
    session.started = True
    manager.reset(session, False)
    assert session.started and not session.closed


def test_manager_free():
    manager = SessionManager(console=False)
    session = manager.create(-1, None, None, 0, 0, 0, 0)
    with pytest.raises(RuntimeError):
        manager.free(session)
    manager.auto_reset = False
    manager.free(session)
    assert session not in manager.sessions