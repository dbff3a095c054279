import os

import pytest

from ppmon.logfile import LogFile
from ppmon.logpump import LogPump


@pytest.fixture
def pump(tmp_path):
    pump = LogPump(LogFile(tmp_path, "svc"))
    yield pump
    for fd in pump.input:
        os.close(fd)
    pump.output.close()


def _write_and_close(fd, data):
    os.write(fd, data)
    os.close(fd)


def test_make_input_registers_two_readers(pump):
    out_w, err_w = pump.make_input()
    try:
        assert len(pump.input) == 2
        assert out_w not in pump.input
        assert err_w not in pump.input
        assert pump.has_buffer() is False
    finally:
        os.close(out_w)
        os.close(err_w)


def test_input_is_logged_to_file(pump):
    out_w, err_w = pump.make_input()
    os.close(err_w)
    _write_and_close(out_w, b"hello\n")
    buffer = bytearray(64)
    returned = pump.on_input_ready(pump.input[0], buffer)
    assert returned is buffer
    assert pump.has_buffer() is False
    files = pump.output.list_files()
    assert len(files) == 1
    assert files[0].read_bytes() == b"hello\n"


def test_both_pipes_append_to_same_file(pump):
    out_w, err_w = pump.make_input()
    _write_and_close(out_w, b"out;")
    _write_and_close(err_w, b"err;")
    for fd in list(pump.input):
        pump.on_input_ready(fd, bytearray(16))
    content = pump.output.list_files()[0].read_bytes()
    assert sorted(content.split(b";")) == [b"", b"err", b"out"]


def test_empty_buffer_is_replaced(pump):
    out_w, err_w = pump.make_input()
    os.close(err_w)
    _write_and_close(out_w, b"abc")
    returned = pump.on_input_ready(pump.input[0], bytearray())
    assert returned is not None and len(returned) > 0
    assert pump.output.list_files()[0].read_bytes() == b"abc"


def test_unknown_fd_is_ignored(pump):
    assert pump.on_input_ready(-42, bytearray(8)) is None
    assert pump.on_hup(-42) is None
    assert pump.on_error(-42) is None


def test_empty_pipe_would_block(pump):
    out_w, err_w = pump.make_input()
    try:
        buffer = bytearray(8)
        assert pump.on_input_ready(pump.input[0], buffer) is buffer
        assert len(pump.input) == 2
        assert pump.output.list_files() == []
    finally:
        os.close(out_w)
        os.close(err_w)


def test_hup_drops_input(pump):
    out_w, err_w = pump.make_input()
    os.close(out_w)
    os.close(err_w)
    first = pump.input[0]
    assert pump.on_hup(first) is None
    assert first not in pump.input
    assert len(pump.input) == 1


def test_error_drops_input(pump):
    out_w, err_w = pump.make_input()
    os.close(out_w)
    os.close(err_w)
    second = pump.input[1]
    assert pump.on_error(second) is None
    assert pump.input == [pump.input[0]]
    assert second not in pump.input


def test_output_ready_without_held_data(pump):
    assert pump.on_output_ready(0) is None
    assert pump.has_buffer() is False


def test_failed_log_is_forwarded_to_stdout(tmp_path, capsysbinary):
    pump = LogPump(LogFile(tmp_path / "missing", "svc"))
    out_w, err_w = pump.make_input()
    os.close(err_w)
    _write_and_close(out_w, b"fallback")
    buffer = bytearray(32)
    try:
        assert pump.on_input_ready(pump.input[0], buffer) is buffer
    finally:
        for fd in pump.input:
            os.close(fd)
    assert capsysbinary.readouterr().out == b"fallback"
    assert pump.has_buffer() is False