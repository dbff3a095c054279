"""Size-limited, rotating log files for a service."""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from pathlib import Path

LOGFILE_MAX_SIZE_DEFAULT = 1024 * 1024 * 20
LOGFILE_MAX_FILES_DEFAULT = 3
# RFC 3339 timestamp plus separator and extension: `-2345-78-01T34:67:90+23:56.log`
LOGFILE_SUFFIX_LEN = 30

_SUFFIX_RE = re.compile(r"-\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\+\d{2}:\d{2}.log")
_NONBLOCK = getattr(os, "O_NONBLOCK", 0)

log = logging.getLogger(__name__)


class LogFile:
    """Log output of one service, rotated by size and pruned by count."""

    def __init__(
        self,
        log_dir: str | os.PathLike,
        log_name: str,
        max_size: int = LOGFILE_MAX_SIZE_DEFAULT,
        max_files: int = LOGFILE_MAX_FILES_DEFAULT,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_name = log_name
        self.max_size = max_size
        self.max_files = max_files
        self.written = 0
        self._fd: int | None = None

    def __enter__(self) -> "LogFile":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def fileno(self) -> int | None:
        """Descriptor of the open log file, or None when none is open."""
        return self._fd

    def _is_match(self, filename: str) -> bool:
        if len(filename) != len(self.log_name) + LOGFILE_SUFFIX_LEN:
            return False
        prefix, suffix = filename[: len(self.log_name)], filename[len(self.log_name):]
        return prefix == self.log_name and _SUFFIX_RE.fullmatch(suffix) is not None

    def make_filename(self) -> str:
        """Name for a new log file, stamped with the local time."""
        stamp = datetime.now().astimezone().isoformat(timespec="seconds")
        return f"{self.log_name}-{stamp}.log"

    def list_files(self) -> list[Path]:
        """Existing log files of this service, oldest first."""
        try:
            with os.scandir(self.log_dir) as entries:
                files = [Path(e.path) for e in entries if self._is_match(e.name)]
        except OSError as err:
            log.error("failed to open log dir %s: %s", self.log_dir, err)
            return []
        return sorted(files)

    def _replace_fd(self, fd: int | None) -> None:
        if self._fd is not None and self._fd != fd:
            try:
                os.close(self._fd)
            except OSError:
                pass
        self._fd = fd

    def rotate(self) -> None:
        """Make sure a log file below the size limit is open.

        Reuses the latest file while it is small enough; otherwise prunes
        old files and starts a new one. Raises OSError on failure.
        """
        if self._fd is not None and self.written < self.max_size:
            return

        files = self.list_files()
        latest = files[-1] if files else None
        latest_size = None
        if latest is not None:
            try:
                latest_size = latest.stat().st_size
            except OSError:
                latest_size = None

        try:
            if latest is not None and latest_size is not None and latest_size < self.max_size:
                log.info("%s: existing log file found %s", self.log_name, latest)
                fd = os.open(latest, os.O_WRONLY | os.O_APPEND | _NONBLOCK)
                self.written = os.fstat(fd).st_size
            else:
                excess = max(0, len(files) - max(self.max_files - 1, 0))
                for old in files[:excess]:
                    log.debug("%s: removing old log file %s", self.log_name, old)
                    try:
                        old.unlink()
                    except OSError as err:
                        log.error("failed to remove file %s: %s", old, err)
                path = self.log_dir / self.make_filename()
                if files:
                    log.info("%s: rotating log file %s", self.log_name, path)
                else:
                    log.info("%s: creating new log file %s", self.log_name, path)
                fd = os.open(
                    path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC | _NONBLOCK, 0o666
                )
                self.written = 0
        except OSError as err:
            log.error("failed to open log-file for %s: %s", self.log_name, err)
            self._replace_fd(None)
            raise
        self._replace_fd(fd)

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """Write data, rotating first if needed; return the bytes written."""
        self.rotate()
        size = os.write(self._fd, data)
        self.written += size
        return size

    def close(self) -> None:
        self._replace_fd(None)