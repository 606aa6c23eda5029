"""Tests for the \\n / \\r record splitter."""

import io

import pytest

import hls_runner as runner


class _FailingStream(io.RawIOBase):
    """Yields one chunk, then fails like a pipe torn down mid-read."""

    def __init__(self, first: bytes) -> None:
        self._first = first

    def read1(self, size: int = -1) -> bytes:
        if self._first is not None:
            chunk, self._first = self._first, None
            return chunk
        raise OSError("Broken pipe")


def split(data: bytes, **kwargs) -> list[str]:
    return list(runner.split_records(io.BytesIO(data), **kwargs))


def test_split_on_lf_and_cr():
    assert split(b"a\r\nb\rc\n") == ["a", "", "b", "c"]


def test_pump_filters_empty_records():
    got = []
    runner.pump_lines(io.BytesIO(b"a\r\nb\rc\n"), got.append)
    assert got == ["a", "b", "c"]


def test_ffmpeg_status_rewrites_become_separate_records():
    data = (
        b"frame=  10 fps=0.0 time=00:00:01.00 speed=1x\r"
        b"frame=  20 fps=20 time=00:00:02.00 speed=1x\r"
        b"done\n"
    )
    assert split(data) == [
        "frame=  10 fps=0.0 time=00:00:01.00 speed=1x",
        "frame=  20 fps=20 time=00:00:02.00 speed=1x",
        "done",
    ]


def test_trailing_partial_record_is_flushed_at_eof():
    assert split(b"first\nsecond") == ["first", "second"]


def test_empty_stream():
    assert split(b"") == []


def test_records_are_trimmed():
    assert split(b"   padded   \n\tTabbed\t\n") == ["padded", "Tabbed"]


def test_invalid_utf8_is_replaced():
    assert split(b"caf\xe9\n") == ["caf\ufffd"]


def test_record_split_across_reads():
    class Chunky(io.RawIOBase):
        def __init__(self, chunks):
            self._chunks = list(chunks)

        def read1(self, size=-1):
            return self._chunks.pop(0) if self._chunks else b""

    stream = Chunky([b"Conver", b"ting to 1080p (1/3)\r", b"\ntime=00:00:01.00"])
    assert list(runner.split_records(stream)) == [
        "Converting to 1080p (1/3)",
        "",
        "time=00:00:01.00",
    ]


def test_record_too_long():
    with pytest.raises(runner.RecordTooLongError):
        split(b"x" * 64, max_record=16)


def test_long_record_within_limit_is_fine():
    assert split(b"y" * 100 + b"\n", max_record=1024) == ["y" * 100]


def test_read_error_raises_stream_read_error():
    with pytest.raises(runner.StreamReadError):
        list(runner.split_records(_FailingStream(b"ok\n")))


def test_pump_keeps_lines_before_a_read_error():
    got = []
    runner.pump_lines(_FailingStream(b"one\ntwo\n"), got.append, name="stderr")
    assert got == ["one", "two"]


def test_pump_stops_on_oversized_record(monkeypatch):
    real_split = runner.split_records
    monkeypatch.setattr(runner, "split_records", lambda stream: real_split(stream, max_record=8))
    got = []
    runner.pump_lines(io.BytesIO(b"ok\n" + b"z" * 32), got.append)
    assert got == ["ok"]


def test_pump_drains_stream_after_oversized_record(monkeypatch):
    class Counting(io.RawIOBase):
        def __init__(self, chunks):
            self._chunks = list(chunks)

        def read1(self, size=-1):
            return self._chunks.pop(0) if self._chunks else b""

    real_split = runner.split_records
    monkeypatch.setattr(runner, "split_records", lambda stream: real_split(stream, max_record=8))
    stream = Counting([b"ok\n", b"z" * 32, b"more\n", b"tail\n"])
    got = []
    runner.pump_lines(stream, got.append)
    assert got == ["ok"]
    # Everything after the oversized record was read, nothing forwarded
    assert stream._chunks == []
