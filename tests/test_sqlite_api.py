import sqlite3

import pytest

from metagsm.session_report import SessionManager
from metagsm.sqlite_api import SqliteSink


def test_execute_runs_each_line():
    sink = SqliteSink(":memory:")
    sink.execute("CREATE TABLE t (a);\nINSERT INTO t VALUES (1);\nINSERT INTO t VALUES (2);\n")
    rows = sink.connection.execute("SELECT a FROM t ORDER BY a").fetchall()
    assert rows == [(1,), (2,)]


def test_empty_script_is_noop():
    sink = SqliteSink(":memory:")
    sink.execute("")
    tables = sink.connection.execute("SELECT name FROM sqlite_master").fetchall()
    assert tables == []


def test_bad_statement_raises():
    sink = SqliteSink(":memory:")
    with pytest.raises(sqlite3.OperationalError):
        sink.execute("INSERT INTO missing VALUES (1);\n")


def test_closed_sink_rejects_statements():
    with SqliteSink(":memory:") as sink:
        sink.execute("CREATE TABLE t (a);\n")
    with pytest.raises(sqlite3.ProgrammingError):
        sink.execute("INSERT INTO t VALUES (1);\n")


def test_file_database_persists(tmp_path):
    path = tmp_path / "meta.db"
    with SqliteSink(path) as sink:
        sink("CREATE TABLE t (a);\nINSERT INTO t VALUES ('x');\n")
    conn = sqlite3.connect(path)
    assert conn.execute("SELECT a FROM t").fetchall() == [("x",)]


def test_sink_as_session_callback():
    sink = SqliteSink(":memory:")
    sink.execute("CREATE TABLE sid_appid (sid, appid);\n")
    manager = SessionManager(console=False, sql_callback=sink)
    session = manager.domains[0]
    session.appid = 0xABCD
    manager.close(session)
    rows = sink.connection.execute("SELECT sid, appid FROM sid_appid").fetchall()
    assert rows == [(session.id, "0000abcd")]