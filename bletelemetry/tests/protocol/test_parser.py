from __future__ import annotations

import pytest

from bletelemetry.protocol.core.parser import LineReassembler


def test_feed_splits_complete_records_and_keeps_fragment():
    r = LineReassembler()

    out = r.feed(b"DATA:A=1\nDATA:A=2\nDATA:A=")

    assert out == ["DATA:A=1", "DATA:A=2"]
    assert r.pending == "DATA:A="


def test_fragment_is_completed_by_next_chunk():
    r = LineReassembler()

    assert r.feed(b"STATUS:CURR") == []
    assert r.feed(b"ENT=1.5,VOLT") == []
    assert r.feed(b"AGE=12\n") == ["STATUS:CURRENT=1.5,VOLTAGE=12"]
    assert r.pending == ""


def test_records_are_stripped_and_blank_lines_dropped():
    r = LineReassembler()

    out = r.feed(b"  GET_STATUS \r\n\n   \nDATA:1,2\r\n")

    assert out == ["GET_STATUS", "DATA:1,2"]


@pytest.mark.parametrize("chunk_size", [1, 2, 3, 5, 7, 64])
def test_no_bytes_lost_or_duplicated_for_any_chunking(chunk_size):
    stream = b"DATA:A=1\nPID:Error=0.1,Output=3\nCONFIG:Max_Current=20\nRESULT:Final"
    r = LineReassembler()

    records = []
    for i in range(0, len(stream), chunk_size):
        records.extend(r.feed(stream[i:i + chunk_size]))

    assert records == ["DATA:A=1", "PID:Error=0.1,Output=3", "CONFIG:Max_Current=20"]
    assert "\n".join(records) + "\n" + r.pending == stream.decode()


def test_multibyte_character_split_across_chunks():
    r = LineReassembler()
    data = "ALARM:Überstrom\n".encode("utf-8")
    split = data.index(b"\xc3") + 1

    assert r.feed(data[:split]) == []
    assert r.feed(data[split:]) == ["ALARM:Überstrom"]


def test_invalid_bytes_are_replaced_not_raised():
    r = LineReassembler()

    out = r.feed(b"DATA:\xff\xfe\n")

    assert out == ["DATA:\ufffd\ufffd"]


def test_custom_delimiter():
    r = LineReassembler(delimiter=";")

    assert r.feed(b"A;B;C") == ["A", "B"]
    assert r.pending == "C"


def test_reset_discards_pending_fragment():
    r = LineReassembler()
    r.feed(b"DATA:A=")

    r.reset()

    assert r.pending == ""
    assert r.feed(b"1\n") == ["1"]


def test_empty_delimiter_rejected():
    with pytest.raises(ValueError):
        LineReassembler(delimiter="")
