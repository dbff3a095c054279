"""Messages exchanged between the command-line client and the daemon."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_ADDR = ("127.0.0.1", 5000)


class ActionError(Exception):
    """An action failed, or a message could not be decoded."""


class ActionKind(Enum):
    """Every request a client may send; the value is the wire tag."""

    DAEMON = "Daemon"
    LIST = "List"
    INFO = "Info"
    RESTART = "Restart"
    STOP = "Stop"
    RESCHEDULE = "Reschedule"
    SHOW_CONFIGURATION = "ShowConfiguration"
    ADD = "Add"
    REMOVE = "Remove"
    STATS = "Stats"
    DAEMON_STATS = "DaemonStats"
    SHOW_SCHEDULER = "ShowScheduler"


_UNIT_KINDS = frozenset(
    {
        ActionKind.LIST,
        ActionKind.INFO,
        ActionKind.SHOW_CONFIGURATION,
        ActionKind.DAEMON_STATS,
        ActionKind.SHOW_SCHEDULER,
    }
)

_SERVICE_KINDS = frozenset(
    {ActionKind.RESTART, ActionKind.STOP, ActionKind.RESCHEDULE, ActionKind.REMOVE}
)


@dataclass
class Action:
    """A request, with the fields its kind uses."""

    kind: ActionKind
    service: str | None = None
    config: str | None = None
    name: str | None = None
    env: list[tuple[str, str]] = field(default_factory=list)
    schedule: str | None = None
    workdir: str | None = None
    command: list[str] = field(default_factory=list)

    def to_wire(self) -> Any:
        """Return the JSON-ready form of this action."""
        kind = self.kind
        if kind in _UNIT_KINDS:
            return kind.value
        if kind is ActionKind.DAEMON:
            body: dict[str, Any] = {"config": self.config}
        elif kind in _SERVICE_KINDS:
            if self.service is None:
                raise ActionError(f"{kind.value} requires a service")
            body = {"service": self.service}
        elif kind is ActionKind.STATS:
            body = {"service": self.service}
        else:
            if self.name is None:
                raise ActionError("Add requires a name")
            body = {
                "name": self.name,
                "env": [[key, value] for key, value in self.env],
                "schedule": self.schedule,
                "workdir": self.workdir,
                "command": list(self.command),
            }
        return {kind.value: body}


def _kind_from_tag(tag: Any) -> ActionKind:
    try:
        return ActionKind(tag)
    except ValueError:
        raise ActionError(f"unknown action: {tag!r}") from None


def _optional_str(body: dict, key: str) -> str | None:
    value = body.get(key)
    if value is not None and not isinstance(value, str):
        raise ActionError(f"field {key!r} must be a string")
    return value


def _required_str(body: dict, key: str) -> str:
    value = _optional_str(body, key)
    if value is None:
        raise ActionError(f"missing field {key!r}")
    return value


def action_from_wire(data: Any) -> Action:
    """Decode an action from its JSON-ready form."""
    if isinstance(data, str):
        kind = _kind_from_tag(data)
        if kind not in _UNIT_KINDS:
            raise ActionError(f"action {data!r} requires fields")
        return Action(kind)
    if not isinstance(data, dict) or len(data) != 1:
        raise ActionError("expecting an action name or a single-key object")

    ((tag, body),) = data.items()
    kind = _kind_from_tag(tag)
    if kind in _UNIT_KINDS:
        if body is not None:
            raise ActionError(f"action {tag!r} takes no fields")
        return Action(kind)
    if not isinstance(body, dict):
        raise ActionError(f"action {tag!r} expects an object")

    if kind is ActionKind.DAEMON:
        return Action(kind, config=_optional_str(body, "config"))
    if kind in _SERVICE_KINDS:
        return Action(kind, service=_required_str(body, "service"))
    if kind is ActionKind.STATS:
        return Action(kind, service=_optional_str(body, "service"))

    env = body.get("env", [])
    command = body.get("command", [])
    if not isinstance(env, list) or not all(
        isinstance(pair, (list, tuple))
        and len(pair) == 2
        and all(isinstance(part, str) for part in pair)
        for pair in env
    ):
        raise ActionError("field 'env' must be a list of [name, value] pairs")
    if not isinstance(command, list) or not all(isinstance(arg, str) for arg in command):
        raise ActionError("field 'command' must be a list of strings")
    return Action(
        kind,
        name=_required_str(body, "name"),
        env=[(key, value) for key, value in env],
        schedule=_optional_str(body, "schedule"),
        workdir=_optional_str(body, "workdir"),
        command=list(command),
    )


@dataclass(frozen=True)
class ActionResult(Generic[T]):
    """Outcome of an action: a value, or an error message."""

    value: T | None = None
    error: str | None = None

    @classmethod
    def ok(cls, value: T) -> "ActionResult[T]":
        return cls(value=value)

    @classmethod
    def err(cls, error: str | BaseException) -> "ActionResult[T]":
        return cls(error=str(error))

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def map(self, func: Callable[[T], R]) -> "ActionResult[R]":
        """Apply func to the value of a successful result."""
        if self.is_ok:
            return ActionResult.ok(func(self.value))
        return ActionResult.err(self.error)

    def unwrap(self) -> T:
        """Return the value, or raise ActionError with the error message."""
        if not self.is_ok:
            raise ActionError(self.error)
        return self.value

    def to_wire(self) -> dict[str, Any]:
        if self.is_ok:
            return {"result": self.value}
        return {"error": self.error}


def result_from_wire(data: Any) -> ActionResult:
    """Decode a result from its JSON-ready form."""
    if not isinstance(data, dict):
        raise ActionError(
            'expecting a `{ "result": true }` or `{ "error": "msg" } object'
        )
    for key, value in data.items():
        if key == "result":
            return ActionResult.ok(value)
        if key == "error":
            if not isinstance(value, str):
                raise ActionError('"error" field must be a string')
            return ActionResult.err(value)
    raise ActionError('no "result" or "error" fields found')


def parse_key_val(text: str) -> tuple[str, str]:
    """Split NAME=VALUE at the first '='."""
    key, sep, value = text.partition("=")
    if not sep:
        raise ValueError(f"invalid KEY=value: no `=` found in `{text}`")
    return key, value