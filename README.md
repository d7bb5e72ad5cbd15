# msgpattern

A small TCP RPC server that dispatches requests by *message pattern*. It
reads and writes length-prefixed JSON frames of the form `<len>#<json>`,
the framing used by NestJS TCP microservice clients. It has no
dependencies beyond the standard library.

## Installing

```
pip install .
```

For the tests:

```
pip install .[test]
pytest
```

## Writing a server

```python
from msgpattern.config import Config
from msgpattern.registry import ServerWrapper
from msgpattern.server import Server

server = Server(Config(addr=":4069"))
wrapper = ServerWrapper(server)

wrapper.message_pattern("sum", lambda data: sum(data))

@wrapper.message_pattern("echo")
def echo(data):
    return data

server.start()          # binds and accepts in background threads
print(server.address)   # (host, port) actually bound
# ... serve ...
server.shutdown(timeout=5.0)
```

`ServerWrapper.message_pattern(pattern, handler)` registers a handler. Called
without a handler it returns a decorator. `Server.register_handler(pattern,
handler)` does the same directly. A later registration for the same pattern
replaces the earlier one.

A handler takes the request's `data` (the decoded JSON value, or `None`) and
returns any JSON-serialisable value. When it raises, the call is retried
`retry_attempts` more times, with `retry_delay` seconds between tries. If it
still fails, the client gets an error response that carries the exception's
text.

`Server.start()` raises `OSError` when the address cannot be bound.
`Server.shutdown(timeout=None)` closes the listener and every connection,
then waits for the worker threads. If they are still running after `timeout`
seconds, it raises `TimeoutError`.

## Wire format

Every request is framed as `<byte length>#<JSON body>`:

```
47#{"id":"1","pattern":{"cmd":"sum"},"data":[1,2]}
```

The `pattern` field may also be a JSON string that holds the pattern object.
Replies use the same framing:

- success: `{"id": ..., "response": ..., "status": "ok"}`
- error: `{"isDisposed": true, "status": "error", "err": "..."}`

Empty fields are left out. A request whose command is `ping` is answered by
the server itself with `response` set to `"pong"`. Requests with an empty
command, an unknown command, bad JSON or a bad length prefix get an error
reply. A length prefix longer than 32 bytes closes the connection.

While a connection is open, the server sends it a heartbeat every
`heartbeat_interval` seconds. A heartbeat is a single unframed JSON line:
`{"id":"heartbeat","response":"ping","isDisposed":true}\n`.
`Server.start_heartbeat()` runs a further heartbeat loop over all
connections. It blocks until shutdown, so run it in a thread of its own if
you want it.

The lower-level helpers in `msgpattern.protocol` are `parse_request`,
`encode_frame` and the `Pattern`, `Request` and `Response` dataclasses, with
`Response.to_dict()` and `Response.to_json()`.

## Configuration

`Config` fields are listed below. Durations are in seconds. `apply_defaults`
gives any field that is unset or out of range its default:

| field                | default                          |
|----------------------|----------------------------------|
| `addr`               | `:8080`                          |
| `timeout`            | 30                               |
| `max_connections`    | 1000                             |
| `rate_limit_per_sec` | 100                              |
| `rate_limit_burst`   | 200                              |
| `retry_attempts`     | 0 (a negative value becomes 3)   |
| `retry_delay`        | 0.5                              |
| `heartbeat_interval` | 15                               |
| `heartbeat_timeout`  | 45                               |

New connections are accepted through a token-bucket `RateLimiter` set by
`rate_limit_per_sec` and `rate_limit_burst`. The server stops accepting while
`max_connections` connections are open. `timeout` and `heartbeat_timeout` are
stored but not enforced: idle connections are not dropped.

`Server.get_metrics()` returns a `Metrics` snapshot. It holds
`requests_total`, `errors_total`, `active_conns`, `processing_time`,
`heartbeats_total` and `heartbeat_fails`.

Server events are printed to stdout. They are also logged at INFO level to
the `msgpattern` logger by `msgpattern.logutil.log_and_print`.

## Example server

```
msgpattern-example [--addr HOST:PORT] [--duration SECONDS]
```

This starts a server on `:4069` that answers the `ping` pattern. It serves
for 100 seconds, or until Ctrl-C, and then shuts down. `build_server(addr)`
in `msgpattern.example` builds the same server without starting it.

## What it does not do

The package is a server only. It has no client for sending requests.