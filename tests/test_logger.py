import subprocess
import time
from pathlib import Path

import pytest

from ppmon.logfile import LOGFILE_MAX_FILES_DEFAULT, LOGFILE_MAX_SIZE_DEFAULT
from ppmon.logger import (
    LOGGER_DEFAULT_PATH,
    Logger,
    LoggerOptions,
    logger_from_config,
    parse_size,
)
import os


def _run_service(logger, service_id, name, argv):
    out_w, err_w = logger.make_pipe(service_id, name)
    try:
        subprocess.run(argv, stdout=out_w, stderr=err_w, check=True)
    finally:
        os.close(out_w)
        os.close(err_w)


def _wait_size(logger, service_id, size, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        files = logger.list_files(service_id)
        if files and sum(f.stat().st_size for f in files) >= size:
            break
        time.sleep(0.02)
    return logger.list_files(service_id)


def test_logger_collects_output(tmp_path):
    with Logger(tmp_path) as logger:
        _run_service(logger, 7, "test", ["echo", "world"])
        files = _wait_size(logger, 7, 6)
        assert len(files) == 1
        assert files[0].stat().st_size == 6

        _run_service(logger, 7, "test", ["echo", "world"])
        files = _wait_size(logger, 7, 12)
        assert len(files) == 1
        assert files[0].stat().st_size == 12


def test_logger_stderr_is_collected(tmp_path):
    with Logger(tmp_path) as logger:
        _run_service(logger, 3, "err", ["sh", "-c", "echo world >&2"])
        files = _wait_size(logger, 3, 6)
        assert files[0].read_bytes() == b"world\n"


def test_list_files_unknown_service(tmp_path):
    with Logger(tmp_path) as logger:
        assert logger.list_files(99) == []


def test_make_pipe_fails_without_directory(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    with Logger(blocker) as logger:
        with pytest.raises(OSError):
            logger.make_pipe(1, "test")
        assert logger.list_files(1) == []


def test_make_pipe_after_stop(tmp_path):
    logger = Logger(tmp_path)
    logger.stop()
    logger.stop()
    with pytest.raises(RuntimeError):
        logger.make_pipe(1, "test")


def test_serde():
    with logger_from_config({}) as logger:
        assert logger.path == Path(LOGGER_DEFAULT_PATH)
    with logger_from_config({"path": "/tmp"}) as logger:
        assert logger.path == Path("/tmp")
    with logger_from_config({"path": "/tmp", "max_files": 30}) as logger:
        assert logger.max_files == 30
    with logger_from_config({"path": "/tmp", "max_file_size": "1MiB"}) as logger:
        assert logger.max_file_size == 1024 * 1024


def test_config_from_path_string(tmp_path):
    with logger_from_config(str(tmp_path)) as logger:
        assert logger.path == tmp_path
        assert logger.max_files == LOGFILE_MAX_FILES_DEFAULT
        assert logger.max_file_size == LOGFILE_MAX_SIZE_DEFAULT


def test_to_config_defaults_are_omitted():
    with logger_from_config(None) as logger:
        assert logger.to_config() == {}


def test_to_config_round_trip(tmp_path):
    options = LoggerOptions(path=tmp_path, max_files=30, max_file_size=1024 * 1024)
    with Logger(options) as logger:
        config = logger.to_config()
        assert config["path"] == str(tmp_path)
        assert config["max_files"] == 30
        assert parse_size(config["max_file_size"]) == 1024 * 1024
        with logger_from_config(config) as again:
            assert again.to_config() == config


@pytest.mark.parametrize("bad", [{"max_files": "three"}, {"max_files": -1}, [1, 2]])
def test_invalid_config(bad):
    with pytest.raises(ValueError):
        logger_from_config(bad)


def test_parse_size():
    assert parse_size("1MiB") == 1024 * 1024
    assert parse_size("20MiB") == LOGFILE_MAX_SIZE_DEFAULT
    assert parse_size(512) == 512
    assert parse_size("1 KiB") == parse_size("1024")


@pytest.mark.parametrize("bad", ["abc", "12 zorg", "", -5, True, None])
def test_parse_size_rejects(bad):
    with pytest.raises(ValueError):
        parse_size(bad)