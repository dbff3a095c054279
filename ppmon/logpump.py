"""Moves service output from pipes into a rotating log file."""

from __future__ import annotations

import logging
import os
import sys

from ppmon.logfile import LogFile

BUFFER_SIZE = 4096

log = logging.getLogger(__name__)


class LogPump:
    """Reads a service's pipes and writes what comes out to its LogFile.

    Data the log file could not take yet is held back until the output
    is ready again; while data is held back, inputs should not be read.
    """

    def __init__(self, output: LogFile) -> None:
        self.input: list[int] = []
        self.output = output
        self._held: bytearray | None = None
        self._pending = memoryview(b"")

    def on_input_ready(self, fd: int, buffer: bytearray) -> bytearray | None:
        """Read from an input pipe into buffer and log it.

        Returns the buffer for reuse, or None when it is kept for data
        that could not be written yet (or fd is unknown).
        """
        if fd not in self.input:
            log.error("unknown fd for logpump: %d", fd)
            return None
        if not buffer:
            buffer = bytearray(BUFFER_SIZE)
        try:
            size = os.readv(fd, [buffer])
        except BlockingIOError:
            return buffer
        except OSError as err:
            log.error("input error: %s", err)
            self._drop_input(fd)
            return buffer
        return self._flush(buffer, memoryview(buffer)[:size])

    def on_output_ready(self, fd: int) -> bytearray | None:
        """Write held-back data; return the buffer once it is drained."""
        if self._held is None:
            return None
        return self._flush(self._held, self._pending)

    def on_error(self, fd: int) -> bytearray | None:
        """Handle an error on fd, dropping inputs or held-back data."""
        if fd in self.input:
            log.error("error on input fd %d", fd)
            self._drop_input(fd)
            return None
        out = self.output.fileno()
        if out is not None and out == fd:
            log.error("error on output fd %d", fd)
            held = self._held
            self._release()
            return held
        return None

    def on_hup(self, fd: int) -> bytearray | None:
        """Handle a hang-up: closed inputs are dropped silently."""
        if fd in self.input:
            self._drop_input(fd)
            return None
        return self.on_error(fd)

    def make_input(self) -> tuple[int, int]:
        """Create stdout and stderr pipes; return their write ends."""
        out_r, out_w = os.pipe()
        os.set_blocking(out_r, False)
        try:
            err_r, err_w = os.pipe()
        except OSError:
            os.close(out_r)
            os.close(out_w)
            raise
        os.set_blocking(err_r, False)
        self.input.extend((out_r, err_r))
        return out_w, err_w

    def has_buffer(self) -> bool:
        """True while data waits for the output to be ready."""
        return self._held is not None

    def _flush(self, buffer: bytearray, data: memoryview) -> bytearray | None:
        written = self._log(data)
        if written < len(data):
            self._held = buffer
            self._pending = data[written:]
            return None
        self._release()
        return buffer

    def _release(self) -> None:
        self._held = None
        self._pending = memoryview(b"")

    def _drop_input(self, fd: int) -> None:
        self.input.remove(fd)
        try:
            os.close(fd)
        except OSError:
            pass

    def _log(self, data: memoryview) -> int:
        try:
            return self.output.write(data)
        except OSError as err:
            log.error("failed to write log: %s", err)
            try:
                sys.stdout.flush()
                sys.stdout.buffer.write(bytes(data))
                sys.stdout.buffer.flush()
            except (OSError, AttributeError, ValueError) as fwd_err:
                log.error("failed to forward message: %s", fwd_err)
            return len(data)