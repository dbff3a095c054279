import json
import socket
import threading

import pytest

from ppmon.client import STATS_DAEMON_NAME, Client
from ppmon.protocol import Action, ActionError, ActionKind


class FakeDaemon:
    """Answers each request with the canned reply for its action tag."""

    def __init__(self, replies, close_immediately=False):
        self.replies = replies
        self.close_immediately = close_immediately
        self.received = []
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(1)
        self._listener.settimeout(5)
        self.addr = self._listener.getsockname()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        try:
            conn, _ = self._listener.accept()
        except OSError:
            return
        with conn:
            if self.close_immediately:
                return
            conn.settimeout(5)
            decoder = json.JSONDecoder()
            pending = ""
            while True:
                try:
                    chunk = conn.recv(4096)
                except OSError:
                    return
                if not chunk:
                    return
                pending += chunk.decode()
                while pending.strip():
                    text = pending.lstrip()
                    try:
                        request, end = decoder.raw_decode(text)
                    except ValueError:
                        break
                    pending = text[end:]
                    self.received.append(request)
                    tag = request if isinstance(request, str) else next(iter(request))
                    conn.sendall(json.dumps(self.replies[tag]).encode())

    def close(self):
        self._listener.close()
        self._thread.join(5)


@pytest.fixture
def daemon():
    created = []

    def factory(replies, close_immediately=False):
        fake = FakeDaemon(replies, close_immediately)
        created.append(fake)
        return fake

    yield factory
    for fake in created:
        fake.close()


def test_client_no_reply():
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    try:
        with Client(listener.getsockname(), timeout=0.3) as client:
            with pytest.raises(ActionError, match="no reply"):
                client.run(Action(ActionKind.INFO))
    finally:
        listener.close()


def test_connect_failure():
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    addr = probe.getsockname()
    probe.close()
    with pytest.raises(ActionError, match="failed to connect daemon"):
        Client(addr)


def test_invoke_returns_result(daemon):
    fake = daemon({"Restart": {"result": None}})
    with Client(fake.addr, timeout=2) as client:
        assert client.invoke(Action(ActionKind.RESTART, service="web")) is None
    assert fake.received == [{"Restart": {"service": "web"}}]


def test_invoke_raises_daemon_error(daemon):
    fake = daemon({"Stop": {"error": 'no such service "web"'}})
    with Client(fake.addr, timeout=2) as client:
        with pytest.raises(ActionError, match="no such service"):
            client.run(Action(ActionKind.STOP, service="web"))


def test_empty_reply(daemon):
    fake = daemon({}, close_immediately=True)
    with Client(fake.addr, timeout=2) as client:
        with pytest.raises(ActionError, match="empty reply"):
            client.invoke(Action(ActionKind.INFO))


def test_run_info_table(daemon, capsys):
    fake = daemon(
        {
            "List": {"result": {"1": "alpha", "2": "beta"}},
            "Info": {
                "result": {
                    "2": {"status": "Running", "restarts": 3},
                    "1": {"status": "Finished", "restarts": 1},
                }
            },
        }
    )
    with Client(fake.addr, timeout=2) as client:
        client.run(Action(ActionKind.INFO))
    out = capsys.readouterr().out
    for text in ("alpha", "beta", "Running", "Finished", "restarts"):
        assert text in out
    assert out.index("alpha") < out.index("beta")
    assert fake.received == ["List", "Info"]


def test_run_stats_table(daemon, capsys):
    fake = daemon(
        {
            "List": {"result": {"3": "gamma"}},
            "Stats": {"result": {"3": {"uptime": None, "cpu_usage": 0.0}}},
            "DaemonStats": {"result": {"uptime": "5s", "cpu_usage": 1.5}},
        }
    )
    with Client(fake.addr, timeout=2) as client:
        client.run(Action(ActionKind.STATS))
    out = capsys.readouterr().out
    assert STATS_DAEMON_NAME in out
    assert "gamma" in out
    assert "1.5" in out
    assert "0.0" not in out
    assert fake.received == ["List", {"Stats": {"service": None}}, "DaemonStats"]


def test_run_show_configuration(daemon, capsys):
    fake = daemon({"ShowConfiguration": {"result": "stats_interval: 10s\n"}})
    with Client(fake.addr, timeout=2) as client:
        client.run(Action(ActionKind.SHOW_CONFIGURATION))
    assert capsys.readouterr().out == "stats_interval: 10s\n"


def test_run_show_scheduler(daemon, capsys):
    fake = daemon(
        {
            "List": {"result": {"1": "alpha"}},
            "ShowScheduler": {
                "result": [
                    {"ServiceRestart": {"id": 1, "instant": "2026-01-01 10:00:00"}},
                    {"ClockCheck": {"instant": "2026-01-01 11:00:00"}},
                ]
            },
        }
    )
    with Client(fake.addr, timeout=2) as client:
        client.run(Action(ActionKind.SHOW_SCHEDULER))
    out = capsys.readouterr().out
    for text in ("restart", "clock check", "alpha", "scheduled time", "2026-01-01 11:00:00"):
        assert text in out


def test_run_rejects_local_actions(daemon):
    fake = daemon({})
    with Client(fake.addr, timeout=2) as client:
        with pytest.raises(ValueError, match="before connecting"):
            client.run(Action(ActionKind.DAEMON))
        with pytest.raises(ValueError, match="not available"):
            client.run(Action(ActionKind.LIST))