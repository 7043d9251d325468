# metagsm

A library for decoding metadata from GSM and UMTS radio traffic. It uses
only the Python standard library.

## Modules

- `metagsm.viterbi`: the rate 1/2, constraint length 5 convolutional code
  of the GSM control channels. `conv_cch_encode(bits)` encodes hard bits.
  `conv_cch_decode(soft_bits, n)` runs a soft-decision Viterbi decode of
  `n` bits, where soft values are signed bytes (127 means a certain 0 and
  -127 a certain 1).
- `metagsm.sch`: synchronization channel decoding. `decode_sch(burst)`
  takes the 142 bits of an SCH burst (39 data, 64 sync, 39 data). It
  returns an `SchInfo` with `t1`, `t2`, `t3`, `ncc`, `bcc` and a `bsic`
  property, or raises `SchDecodeError`, whose `errors` attribute holds the
  error count. The building blocks `parity_encode`, `parity_check`,
  `conv_encode` and `conv_decode` are public too.
- `metagsm.diag_structs`: `BurstIndication.from_bytes` for layer 1 burst
  indications. Parsers for baseband diagnostic records:
  `parse_burst_metrics`, `parse_surround_cell_ba_list`,
  `parse_txlev_timing_advance`, `parse_neighbor_cell_aux` and
  `parse_monitor_bursts_v2`. Also `get_arfcn_from_arfcn_and_band` and
  `get_band_from_arfcn_and_band`. A record that is too short raises
  `ValueError`.
- `metagsm.session`: `SessionInfo`, the record of one radio transaction,
  together with the enums `Rat` and `Domain` and the counters
  `FrameCount`. `session_from_filename(filename, session, now=None)`
  fills in a session from a capture file name: the application ID, the
  IMSI prefix, the timestamp, the radio technology and the cell identity.
  It raises `SessionParseError` when the name cannot be understood.
  `parse_appid(filename)` extracts only the application ID.
- `metagsm.sms`: SMS parsing at the CP, RP and TPDU layers (`handle_sms`,
  `handle_cpdata`, `handle_rpdata`, `handle_tpdu`). This covers user data
  headers (`handle_udh`) and SIM OTA security headers (`handle_sec_cp`,
  `handle_sec_rp`). Each parsed message becomes an `SmsMeta` on the
  session's `sms_list`, and `sms_make_sql(sid, sm)` turns it into an
  `INSERT` statement. Helpers: `get_sms_class`, `get_sms_alphabet` and
  `decode_address`.
- `metagsm.session_report`: `SessionManager` creates, closes, resets,
  enumerates and frees sessions. When a session closes it writes a console
  report and passes the SQL statements to a callback.
  `format_report(session, privacy)` builds the report text.
  `session_make_sql(session, sqlite)` builds the `INSERT` statement.
  `sql_quote` quotes a string as an SQL literal.
- `metagsm.sqlite_api`: `SqliteSink(path="metadata.db")` runs generated
  SQL against an SQLite database, one statement per line. It is callable,
  so it can serve as a `SessionManager` SQL callback.
- `metagsm.rlcmac`: `RlcMacReassembler` rebuilds LLC frames from GPRS
  RLC/MAC data blocks. It reports each frame through `on_llc(frame,
  uplink)` and each block through `on_rlcmac(block, timeslot, uplink)`.

## Examples

```python
from metagsm.viterbi import conv_cch_encode, conv_cch_decode

bits = [1, 0, 1, 1, 0, 0, 1, 0, 0, 0, 0, 0]
coded = conv_cch_encode(bits)
soft = [-127 if b else 127 for b in coded]
assert conv_cch_decode(soft, len(bits)) == bits
```

```python
from metagsm.sms import get_sms_alphabet, get_sms_class

get_sms_alphabet(0x00)   # SmsAlphabet.DEFAULT_7BIT
get_sms_class(0xF1)      # SmsClass.ME
```

```python
from metagsm.session_report import SessionManager
from metagsm.sqlite_api import SqliteSink

with SqliteSink("metadata.db") as sink, SessionManager(sql_callback=sink) as manager:
    session = manager.domains[0]
    ...  # fill in the session while processing messages
```

## What it does not do

- There is no command-line tool. Everything is used as a library.
- It does not read captures from devices, diagnostic ports or pcap files.
  You pass bytes and bits in yourself.
- It sends nothing over the network. Output is limited to console text,
  the callbacks you supply, and SQLite through `SqliteSink`.
- `SqliteSink` does not create the database schema. The `session_info`,
  `sms_meta` and `sid_appid` tables must already exist.
- The only layer 3 parsing is for short messages. Other mobility,
  call-control and RRC messages are not decoded.

## Installing

```
pip install .
```

To run the tests, install the `test` extra and then run `pytest`.