"""Collects service output through pipes into per-service rotating log files."""

from __future__ import annotations

import logging
import os
import re
import select
import threading
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from ppmon.logfile import LOGFILE_MAX_FILES_DEFAULT, LOGFILE_MAX_SIZE_DEFAULT, LogFile
from ppmon.logpump import BUFFER_SIZE, LogPump

LOGGER_DEFAULT_PATH = "/var/log/"

_WAKE_WORD = b"x"
_EXIT_WORD = b"q"

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([A-Za-z]*)\s*$")
_PREFIXES = "kmgtpe"
_UNITS: dict[str, int] = {"": 1, "b": 1}
for _power, _prefix in enumerate(_PREFIXES, start=1):
    _UNITS[_prefix] = 1000**_power
    _UNITS[_prefix + "b"] = 1000**_power
    _UNITS[_prefix + "i"] = 1024**_power
    _UNITS[_prefix + "ib"] = 1024**_power
_BINARY_NAMES = [
    (f"{prefix.upper()}iB", 1024**power)
    for power, prefix in reversed(list(enumerate(_PREFIXES, start=1)))
]

log = logging.getLogger(__name__)


def parse_size(text: Any) -> int:
    """Parse a byte size such as ``1MiB``, ``20 MB`` or ``512``."""
    if isinstance(text, bool):
        raise ValueError(f"invalid size: {text!r}")
    if isinstance(text, int):
        if text < 0:
            raise ValueError(f"invalid size: {text!r}")
        return text
    if not isinstance(text, str):
        raise ValueError(f"invalid size: {text!r}")
    match = _SIZE_RE.match(text)
    if match is None:
        raise ValueError(f"invalid size: {text!r}")
    number, unit = match.groups()
    factor = _UNITS.get(unit.lower())
    if factor is None:
        raise ValueError(f"unknown size unit {unit!r} in {text!r}")
    try:
        return int(Decimal(number) * factor)
    except InvalidOperation as exc:
        raise ValueError(f"invalid size: {text!r}") from exc


def _format_size(size: int) -> str:
    for name, factor in _BINARY_NAMES:
        if size and size % factor == 0:
            return f"{size // factor}{name}"
    return f"{size}B"


@dataclass
class LoggerOptions:
    """Where and how much a Logger keeps."""

    path: Path = field(default_factory=lambda: Path(LOGGER_DEFAULT_PATH))
    max_files: int = LOGFILE_MAX_FILES_DEFAULT
    max_file_size: int = LOGFILE_MAX_SIZE_DEFAULT

    def __post_init__(self) -> None:
        self.path = Path(self.path)


def logger_from_config(data: Any) -> "Logger":
    """Build a Logger from its configuration: a path, a mapping or None."""
    if data is None:
        return Logger(LoggerOptions())
    if isinstance(data, (str, os.PathLike)):
        return Logger(LoggerOptions(path=Path(data)))
    if not isinstance(data, dict):
        raise ValueError("logger configuration must be a path or a mapping")

    options = LoggerOptions()
    if data.get("path") is not None:
        path = data["path"]
        if not isinstance(path, (str, os.PathLike)):
            raise ValueError("logger 'path' must be a string")
        options.path = Path(path)
    if "max_files" in data:
        max_files = data["max_files"]
        if isinstance(max_files, bool) or not isinstance(max_files, int) or max_files < 0:
            raise ValueError("logger 'max_files' must be a non-negative integer")
        options.max_files = max_files
    if "max_file_size" in data:
        options.max_file_size = parse_size(data["max_file_size"])
    return Logger(options)


class Logger:
    """Owns one LogPump per service and a thread moving their data."""

    def __init__(self, options: LoggerOptions | str | os.PathLike | None = None) -> None:
        if options is None:
            options = LoggerOptions()
        elif not isinstance(options, LoggerOptions):
            options = LoggerOptions(path=Path(options))
        self.path = options.path
        self.max_files = options.max_files
        self.max_file_size = options.max_file_size
        self._logs: dict[int, LogPump] = {}
        self._lock = threading.RLock()
        self._stopped = False

        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            log.error("failed to create log directory %s: %s", self.path, err)

        self._wake_r, self._wake_w = os.pipe()
        os.set_blocking(self._wake_r, False)
        os.set_blocking(self._wake_w, False)
        self._thread: threading.Thread | None = threading.Thread(
            target=self._thread_main, name="logger", daemon=True
        )
        self._thread.start()

    def __repr__(self) -> str:
        return (
            f"Logger(path={self.path!r}, max_files={self.max_files}, "
            f"max_file_size={self.max_file_size})"
        )

    def __enter__(self) -> "Logger":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def make_pipe(self, service_id: int, name: str) -> tuple[int, int]:
        """Create stdout and stderr pipes for a service run.

        Returns the write ends; the caller hands them to the child and
        closes them afterwards. Raises OSError when no log file can be opened.
        """
        if self._stopped:
            raise RuntimeError("logger is stopped")
        with self._lock:
            pump = self._logs.pop(service_id, None)
        if pump is None:
            pump = LogPump(
                LogFile(self.path, name, self.max_file_size, self.max_files)
            )
        try:
            pump.output.rotate()
            pipes = pump.make_input()
        except OSError:
            _close_pump(pump)
            raise
        with self._lock:
            self._logs[service_id] = pump
        self.wake()
        return pipes

    def wake(self) -> None:
        """Make the logger thread pick up new pipes."""
        self._send(_WAKE_WORD)

    def list_files(self, service_id: int) -> list[Path]:
        """Log files of a service, oldest first."""
        with self._lock:
            pump = self._logs.get(service_id)
        return pump.output.list_files() if pump is not None else []

    def stop(self) -> None:
        """Stop the logger thread and close every pipe and file."""
        thread, self._thread = self._thread, None
        if thread is None:
            return
        self._send(_EXIT_WORD)
        thread.join()
        self._stopped = True
        for fd in (self._wake_r, self._wake_w):
            try:
                os.close(fd)
            except OSError:
                pass
        with self._lock:
            for pump in self._logs.values():
                _close_pump(pump)
            self._logs.clear()

    def to_config(self) -> dict[str, Any]:
        """Configuration mapping holding only what differs from the defaults."""
        config: dict[str, Any] = {}
        if self.path != Path(LOGGER_DEFAULT_PATH):
            config["path"] = str(self.path)
        if self.max_files != LOGFILE_MAX_FILES_DEFAULT:
            config["max_files"] = self.max_files
        if self.max_file_size != LOGFILE_MAX_SIZE_DEFAULT:
            config["max_file_size"] = _format_size(self.max_file_size)
        return config

    def _send(self, word: bytes) -> None:
        if self._stopped:
            return
        try:
            os.write(self._wake_w, word)
        except BlockingIOError:
            pass
        except OSError as err:
            log.error("failed to send wake-word: %s", err)

    def _thread_main(self) -> None:
        try:
            self._run()
        except Exception:
            log.exception("logger thread error")

    def _prepare(self) -> tuple[Any, dict[int, int]]:
        poller = select.poll()
        fd_map: dict[int, int] = {}
        with self._lock:
            for service_id, pump in self._logs.items():
                out = pump.output.fileno()
                if pump.has_buffer() and out is not None:
                    fd_map[out] = service_id
                    poller.register(out, select.POLLOUT | select.POLLERR)
                else:
                    for fd in pump.input:
                        fd_map[fd] = service_id
                        poller.register(fd, select.POLLIN | select.POLLERR)
        poller.register(self._wake_r, select.POLLIN | select.POLLERR)
        return poller, fd_map

    def _run(self) -> None:
        buffers: deque[bytearray] = deque()
        while True:
            poller, fd_map = self._prepare()
            events = poller.poll()
            exit_requested = False

            for fd, flags in events:
                if fd == self._wake_r:
                    try:
                        words = os.read(self._wake_r, 64)
                    except BlockingIOError:
                        words = b""
                    if _EXIT_WORD in words:
                        exit_requested = True
                    continue
                service_id = fd_map.get(fd)
                if service_id is None:
                    continue
                with self._lock:
                    pump = self._logs.get(service_id)
                    if pump is None:
                        continue
                    if flags & select.POLLIN:
                        buffer = buffers.popleft() if buffers else bytearray(BUFFER_SIZE)
                        released = pump.on_input_ready(fd, buffer)
                    elif flags & select.POLLHUP:
                        released = pump.on_hup(fd)
                    elif flags & (select.POLLERR | select.POLLNVAL):
                        released = pump.on_error(fd)
                    elif flags & select.POLLOUT:
                        released = pump.on_output_ready(fd)
                    else:
                        released = None
                if released is not None:
                    buffers.append(released)

            if exit_requested:
                return


def _close_pump(pump: LogPump) -> None:
    for fd in pump.input:
        try:
            os.close(fd)
        except OSError:
            pass
    pump.input.clear()
    pump.output.close()