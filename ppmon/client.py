"""Command-line side of the daemon protocol."""

from __future__ import annotations

import json
import logging
import os
import socket
import sys
from typing import Any, Iterable

from tabulate import tabulate

from ppmon.protocol import (
    DEFAULT_ADDR,
    Action,
    ActionError,
    ActionKind,
    result_from_wire,
)
from ppmon.scheduler import EventKind

STATS_DAEMON_NAME = "<PPM daemon>"
DEFAULT_TIMEOUT = 5.0
LONG_TIMEOUT = 30.0

_BLUE = "\x1b[94m"
_GREY = "\x1b[90m"
_RESET = "\x1b[0m"
_DECODER = json.JSONDecoder()

log = logging.getLogger(__name__)


def _out_colored() -> bool:
    isatty = getattr(sys.stdout, "isatty", None)
    return "NO_COLOR" not in os.environ and bool(isatty and isatty())


def _dim(text: str) -> str:
    return f"{_GREY}{text}{_RESET}"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _by_id(mapping: Any) -> dict[int, Any]:
    if mapping is None:
        return {}
    if not isinstance(mapping, dict):
        raise ActionError("expecting an object keyed by service id")
    try:
        return {int(key): value for key, value in mapping.items()}
    except ValueError as exc:
        raise ActionError(f"invalid service id: {exc}") from exc


def _columns(records: Iterable[Any]) -> list[str]:
    columns: dict[str, None] = {}
    for record in records:
        if isinstance(record, dict):
            columns.update(dict.fromkeys(record))
    return list(columns)


def _live(stats: Any) -> dict | None:
    if isinstance(stats, dict) and stats.get("uptime") is not None:
        return stats
    return None


def _event_parts(event: Any) -> tuple[str, dict]:
    if not isinstance(event, dict) or len(event) != 1:
        raise ActionError("invalid scheduler event")
    ((tag, body),) = event.items()
    return tag, body if isinstance(body, dict) else {}


def _event_label(tag: str) -> str:
    try:
        return EventKind(tag).label
    except ValueError:
        return tag


class Client:
    """A connection to the daemon."""

    def __init__(self, addr: tuple[str, int] = DEFAULT_ADDR, timeout: float = DEFAULT_TIMEOUT) -> None:
        try:
            self._sock = socket.create_connection(addr)
        except OSError as exc:
            raise ActionError(f"failed to connect daemon: {exc}") from exc
        self._sock.settimeout(timeout)
        self._pending = b""

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._sock.close()

    def invoke(self, action: Action) -> Any:
        """Send one action and return the daemon's result value.

        Raises ActionError when there is no reply or the daemon reports an error.
        """
        self._sock.sendall(json.dumps(action.to_wire()).encode())
        log.debug("action sent: %s", action.kind.value)
        return result_from_wire(self._read_value()).unwrap()

    def _read_value(self) -> Any:
        while True:
            text = self._pending.lstrip()
            if text:
                try:
                    decoded = text.decode()
                    value, end = _DECODER.raw_decode(decoded)
                except ValueError:
                    pass
                else:
                    self._pending = decoded[end:].encode()
                    return value
            try:
                chunk = self._sock.recv(4096)
            except socket.timeout as exc:
                raise ActionError("no reply from daemon") from exc
            except OSError as exc:
                raise ActionError(f"no reply from daemon: {exc}") from exc
            if not chunk:
                if text:
                    raise ActionError("no reply from daemon: truncated message")
                raise ActionError("empty reply from daemon")
            self._pending += chunk

    def run(self, action: Action) -> None:
        """Run an action, printing its outcome on the console."""
        kind = action.kind
        if kind is ActionKind.DAEMON:
            raise ValueError("must be handled before connecting")
        if kind in (ActionKind.LIST, ActionKind.DAEMON_STATS):
            raise ValueError("not available from cmdline")
        if kind is ActionKind.INFO:
            self._show_info()
        elif kind is ActionKind.STATS:
            self._show_stats(action)
        elif kind in (ActionKind.STOP, ActionKind.RESTART, ActionKind.REMOVE):
            self._sock.settimeout(LONG_TIMEOUT)
            self.invoke(action)
        elif kind is ActionKind.SHOW_CONFIGURATION:
            print(self.invoke(action), end="")
        elif kind is ActionKind.SHOW_SCHEDULER:
            self._show_scheduler(action)
        else:
            self.invoke(action)

    def _services(self) -> dict[int, str]:
        return _by_id(self.invoke(Action(ActionKind.LIST)))

    def _show_info(self) -> None:
        names = self._services()
        info = _by_id(self.invoke(Action(ActionKind.INFO)))
        columns = _columns(info.values())
        rows = []
        for sid, record in sorted(info.items()):
            record = record if isinstance(record, dict) else {}
            rows.append(
                [str(sid), names.get(sid, "")] + [_cell(record.get(c)) for c in columns]
            )
        _display(["id", "name", *columns], rows)

    def _show_stats(self, action: Action) -> None:
        names = self._services()
        stats = _by_id(self.invoke(action))
        daemon = self.invoke(Action(ActionKind.DAEMON_STATS))
        colored = _out_colored()

        records = [(None, STATS_DAEMON_NAME, _live(daemon))]
        records += [(sid, names.get(sid), _live(st)) for sid, st in sorted(stats.items())]
        columns = _columns([daemon, *stats.values()])

        rows = []
        for sid, name, record in records:
            rows.append(
                [_stats_id(sid, name, record, colored), _stats_name(name, record, colored)]
                + [_cell(record.get(c)) if record else "" for c in columns]
            )
        _display(["id", "name", *columns], rows)

    def _show_scheduler(self, action: Action) -> None:
        names = self._services()
        rows = []
        for event in self.invoke(action) or []:
            tag, body = _event_parts(event)
            sid = body.get("id")
            rows.append(
                [
                    _cell(sid),
                    names.get(sid, "") if sid is not None else "",
                    _event_label(tag),
                    _cell(body.get("instant")),
                ]
            )
        _display(["id", "name", "event", "scheduled time"], rows)


def _stats_id(sid: int | None, name: str | None, record: dict | None, colored: bool) -> str:
    if name == STATS_DAEMON_NAME or sid is None:
        return ""
    if record is None and colored:
        return _dim(str(sid))
    return str(sid)


def _stats_name(name: str | None, record: dict | None, colored: bool) -> str:
    if name is None:
        return ""
    if (record is None or name == STATS_DAEMON_NAME) and colored:
        return _dim(name)
    return name


def _display(headers: list[str], rows: list[list[str]]) -> None:
    if _out_colored():
        headers = [f"{_BLUE}{h}{_RESET}" for h in headers]
    print(
        tabulate(
            rows,
            headers=headers,
            tablefmt="rounded_outline",
            stralign="center",
            disable_numparse=True,
        )
    )