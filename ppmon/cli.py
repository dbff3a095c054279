"""Command-line entry point: talks to the daemon or starts it."""

from __future__ import annotations

import argparse
import ipaddress
import logging
import os
import sys
from pathlib import Path

from ppmon.client import Client
from ppmon.protocol import DEFAULT_ADDR, Action, ActionError, ActionKind, parse_key_val

VERSION = "1.3.0"
DAEMON_NAME = "ppm-daemon"


def _socket_addr(text: str) -> tuple[str, int]:
    host, sep, port = text.rpartition(":")
    if not sep or not host:
        raise argparse.ArgumentTypeError(f"invalid socket address: {text!r}")
    try:
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
            ipaddress.IPv6Address(host)
        else:
            ipaddress.IPv4Address(host)
        number = int(port)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid socket address: {text!r}") from None
    if not 0 <= number <= 65535:
        raise argparse.ArgumentTypeError(f"invalid port in {text!r}")
    return host, number


def _key_val(text: str) -> tuple[str, str]:
    try:
        return parse_key_val(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for the ppm command."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--addr", type=_socket_addr, default=argparse.SUPPRESS,
                        help="daemon address (IP:PORT)")

    parser = argparse.ArgumentParser(prog="ppm", description="Partner Process Monitor")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--addr", type=_socket_addr, default=DEFAULT_ADDR,
                        help="daemon address (IP:PORT)")
    sub = parser.add_subparsers(dest="subcommand", required=True, metavar="COMMAND")

    def command(name, kind, help_text, aliases=()):
        cmd = sub.add_parser(name, aliases=list(aliases), help=help_text, parents=[common])
        cmd.set_defaults(kind=kind)
        return cmd

    daemon = command("daemon", ActionKind.DAEMON, "Start the daemon")
    daemon.add_argument("--config", help="Configuration file to load")

    command("info", ActionKind.INFO, "Dump info (aliases: list, ls)", ["list", "ls"])

    for name, kind, help_text, aliases in (
        ("restart", ActionKind.RESTART, "Restart the given service (aliases: start)", ["start"]),
        ("stop", ActionKind.STOP,
         "Stop (terminate) the given service (aliases: terminate)", ["terminate"]),
        ("reschedule", ActionKind.RESCHEDULE,
         "Reschedule a service, flag as active and reschedule (aliases: schedule)", ["schedule"]),
        ("remove", ActionKind.REMOVE,
         "Stop and remove a service (aliases: rm, remove-service)", ["rm", "remove-service"]),
    ):
        command(name, kind, help_text, aliases).add_argument("service")

    command("show-configuration", ActionKind.SHOW_CONFIGURATION,
            "Dump running configuration (aliases: show-config, config)",
            ["show-config", "config"])

    add = command("add", ActionKind.ADD,
                  "Add a new service (aliases: add-service); command follows '--'",
                  ["add-service"])
    add.add_argument("-n", "--name", required=True, help="Service name")
    add.add_argument("-e", "--env", type=_key_val, action="append", default=[],
                     metavar="NAME=VALUE", help="Environment variables")
    add.add_argument("-s", "--schedule", help="Service schedule (cron-like)")
    add.add_argument("-w", "--workdir", help="Workdir")

    stats = command("stats", ActionKind.STATS,
                    "Get statistics on a service (aliases: statistics, details)",
                    ["statistics", "details"])
    stats.add_argument("service", nargs="?")

    command("show-scheduler", ActionKind.SHOW_SCHEDULER, "Get scheduler info")
    return parser


def _action(ns: argparse.Namespace, command: list[str]) -> Action:
    kind = ns.kind
    if kind is ActionKind.ADD:
        return Action(
            kind,
            name=ns.name,
            env=list(ns.env),
            schedule=ns.schedule,
            workdir=ns.workdir,
            command=command,
        )
    return Action(
        kind,
        service=getattr(ns, "service", None),
        config=getattr(ns, "config", None),
    )


def _exec_daemon(config: str | None) -> None:
    exe = Path(sys.argv[0] or "/").resolve().parent / DAEMON_NAME
    env = dict(os.environ)
    env["PPM_CONFIG"] = config or ""
    os.execve(str(exe), [str(exe)], env)


def main(argv: list[str] | None = None) -> int:
    """Run the ppm command; returns the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if "--" in args:
        split = args.index("--")
        head, command = args[:split], args[split + 1:]
    else:
        head, command = args, []

    parser = build_parser()
    ns = parser.parse_args(head)
    if command and ns.kind is not ActionKind.ADD:
        parser.error("unexpected arguments after '--'")

    logging.basicConfig(stream=sys.stderr, level=logging.WARNING)
    action = _action(ns, command)
    try:
        if action.kind is ActionKind.DAEMON:
            _exec_daemon(action.config)
            return 0
        with Client(ns.addr) as client:
            client.run(action)
    except (ActionError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())