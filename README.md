# ppmon

Building blocks of a small process monitor, and the `ppm` command that talks
to its daemon over TCP:

- `ppmon.protocol`: the JSON messages exchanged with the daemon (`Action`,
  `ActionKind`, `ActionResult`, `action_from_wire`, `result_from_wire`,
  `parse_key_val`).
- `ppmon.client`: `Client`, a TCP connection to the daemon that sends actions
  and prints the replies as tables.
- `ppmon.cli`: the `ppm` command.
- `ppmon.scheduler`: `Scheduler`, a thread-safe queue of `SchedulerEvent`s
  ordered by monotonic time, keeping one pending event per source.
- `ppmon.logfile`: `LogFile`, a per-service log file rotated by size and
  pruned by count.
- `ppmon.logpump` and `ppmon.logger`: `LogPump` and `Logger`, which create
  stdout/stderr pipes for a service and copy what comes out of them into its
  log files from a background thread.
- `ppmon.config`: `find_config_file()`, which locates the daemon's
  configuration file.

## Installation

```
pip install .
```

## The `ppm` command

`ppm` connects to a daemon at `127.0.0.1:5000` unless `--addr IP:PORT` is
given (an IPv6 address is written in brackets, `[::1]:5000`).

```
ppm info                      # services and their state (aliases: list, ls)
ppm stats [SERVICE]           # statistics for one or every service (aliases: statistics, details)
ppm restart SERVICE           # start or restart a service (alias: start)
ppm stop SERVICE              # terminate a service (alias: terminate)
ppm reschedule SERVICE        # reactivate a scheduled service (alias: schedule)
ppm remove SERVICE            # stop and forget a service (aliases: rm, remove-service)
ppm show-configuration        # print the running configuration (aliases: show-config, config)
ppm show-scheduler            # list pending scheduler events
```

A service is named by its numeric id or by its name; the daemon resolves it.

New services are added with `add`; the command to run follows `--`:

```
ppm add --name web --env PORT=8080 --workdir /srv/web -- python -m http.server 8080
ppm add --name backup --schedule "0 3 * * *" -- /usr/local/bin/backup
```

`--env` takes `NAME=VALUE` and may be repeated.

`ppm daemon [--config FILE]` replaces itself with a program named
`ppm-daemon` in the same directory as `ppm`, with `PPM_CONFIG` set to the
given file (or empty).

Errors reported by the daemon, or a failure to reach it, are printed to
standard error and `ppm` exits with status 1.

## Configuration file

`ppmon.config.find_config_file()` returns the file a daemon should load, or
`None`:

1. the file named by `PPM_CONFIG`, when it is set and not empty (returned even
   if it does not exist);
2. `partner/partner-pm.yml` in the user's local configuration directory, if it
   exists;
3. `.partner-pm.yml` in the home directory, then in the current directory, if
   it exists.

## Logs

`Logger` writes each service's output to `<name>-<timestamp>.log` files in its
directory (`/var/log/` by default). A file is rotated once it reaches
`max_file_size` (20 MiB by default) and at most `max_files` files (3 by
default) are kept per service. `logger_from_config()` builds a `Logger` from a
path or from a mapping such as:

```yaml
path: /var/log/services
max_files: 5
max_file_size: 1MiB
```

Sizes are parsed by `parse_size()` (`512`, `20 MB`, `1MiB`, ...), and
`Logger.to_config()` returns only the settings that differ from the defaults.

```python
from ppmon.logger import Logger, LoggerOptions

with Logger(LoggerOptions(path="/tmp/logs", max_files=2)) as logger:
    out_fd, err_fd = logger.make_pipe(1, "web")
    # hand out_fd and err_fd to the child as stdout and stderr, then close them
    print(logger.list_files(1))
```

## What this package does not do

This package holds no daemon. There is no `ppm-daemon` program, no server
answering the `ppm` command, nothing that starts, watches or restarts
services, no reading of the YAML configuration file, no file watching and no
process statistics. `ppm` works only against a daemon provided elsewhere,
and `ppm daemon` fails unless a `ppm-daemon` program sits next to `ppm`.