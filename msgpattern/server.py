"""TCP server that routes length-prefixed JSON requests to pattern handlers."""

from __future__ import annotations

import re
import socket
import threading
import time
from datetime import datetime
from typing import Any, BinaryIO, Callable

from .config import Config, Metrics, apply_defaults
from .logutil import log_and_print
from .protocol import Response, encode_frame, parse_request
from .registry import Registry

_MAX_PREFIX_LEN = 32
_LENGTH_RE = re.compile(rb"[+-]?[0-9]+")
_MAX_LENGTH = 2**63 - 1
_READ_CHUNK = 64 * 1024
# Short accept timeout so a closed listener is noticed promptly.
_ACCEPT_POLL = 0.5
_FULL_BACKOFF = 0.1
_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _now() -> str:
    return datetime.now().strftime(_TIME_FORMAT)


def _format_duration(seconds: float) -> str:
    return f"{seconds:g}s"


def _format_peer(addr: Any) -> str:
    if isinstance(addr, tuple) and len(addr) >= 2:
        host, port = addr[0], addr[1]
        if ":" in str(host):
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    return str(addr)


def _parse_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {addr!r}")
    return host.strip("[]"), int(port)


def _parse_length(prefix: bytes) -> int:
    if not _LENGTH_RE.fullmatch(prefix):
        return 0
    value = int(prefix)
    return value if value <= _MAX_LENGTH else 0


class RateLimiter:
    """Token bucket allowing ``rate`` events per second with bursts of ``burst``."""

    def __init__(self, rate: float, burst: int) -> None:
        self.rate = rate
        self.burst = burst
        self._tokens = float(burst)
        self._last = time.monotonic()
        self._lock = threading.Lock()

    def wait(self) -> None:
        """Block until one event is allowed; raise ValueError if it never can be."""
        if self.burst < 1:
            raise ValueError(f"Wait(n=1) exceeds limiter's burst {self.burst}")
        with self._lock:
            now = time.monotonic()
            if self.rate > 0:
                self._tokens = min(
                    float(self.burst), self._tokens + (now - self._last) * self.rate
                )
            self._last = now
            if self._tokens >= 1:
                self._tokens -= 1
                return
            if self.rate <= 0:
                raise ValueError("Wait(n=1) would never be allowed at rate 0")
            delay = (1 - self._tokens) / self.rate
            self._tokens -= 1
        time.sleep(delay)


class _Connection:
    """A client socket with serialised writes."""

    def __init__(self, sock: socket.socket, addr: Any) -> None:
        self.sock = sock
        self.remote = _format_peer(addr)
        self._write_lock = threading.Lock()

    def send(self, data: bytes) -> None:
        with self._write_lock:
            self.sock.sendall(data)

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.sock.close()
        except OSError as exc:
            log_and_print(f"RPC: Failed to close connection | Error: {exc}")


class Server:
    """Message-pattern RPC server over TCP."""

    def __init__(self, config: Config | None = None) -> None:
        self.config = apply_defaults(config)
        self.registry = Registry()
        self.address: tuple[str, int] | None = None
        self._metrics = Metrics()
        self._limiter = RateLimiter(
            self.config.rate_limit_per_sec, self.config.rate_limit_burst
        )
        self._lock = threading.Lock()
        self._listener: socket.socket | None = None
        self._conns: set[_Connection] = set()
        self._conns_lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._threads_lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._shutting_down = False

    def register_handler(self, pattern: str, handler: Callable[[Any], Any]) -> None:
        """Route requests whose pattern command is ``pattern`` to ``handler``."""
        self.registry.register(pattern, handler)

    def start(self) -> None:
        """Bind the listener and begin accepting connections in the background."""
        addr = self.config.addr
        try:
            host, port = _parse_addr(addr)
            family = socket.AF_INET6 if ":" in host else socket.AF_INET
            listener = socket.create_server((host, port), family=family)
        except (OSError, ValueError) as exc:
            raise OSError(f"failed to listen on {addr}: {exc}") from exc
        listener.settimeout(_ACCEPT_POLL)

        with self._lock:
            self._listener = listener
        self.address = listener.getsockname()[:2]

        log_and_print(
            f"RPC: Server starting | Address: {addr} | "
            f"MaxConnections: {self.config.max_connections} | "
            f"RateLimitPerSec: {self.config.rate_limit_per_sec} | "
            f"HeartbeatInterval: {_format_duration(self.config.heartbeat_interval)}"
        )
        self._spawn(self._accept_connections)

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting, close every connection and wait for workers.

        Raises TimeoutError if workers are still running after ``timeout`` seconds.
        """
        with self._lock:
            self._shutting_down = True
            listener = self._listener
            if listener is not None:
                log_and_print("RPC: Server shutting down...")
                try:
                    listener.close()
                except OSError as exc:
                    log_and_print(f"RPC: Failed to close listener | Error: {exc}")
                    raise OSError(f"failed to close listener: {exc}") from exc

        with self._conns_lock:
            conns = list(self._conns)
        for conn in conns:
            conn.close()

        self._shutdown_event.set()

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._threads_lock:
                pending = [t for t in self._threads if t.is_alive()]
            if not pending:
                break
            for thread in pending:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                thread.join(remaining)
                if thread.is_alive():
                    log_and_print("RPC: Shutdown timeout | Error: deadline exceeded")
                    raise TimeoutError("shutdown timed out")
        log_and_print("RPC: Server shutdown complete")

    def get_metrics(self) -> Metrics:
        """Return a snapshot of the server's counters."""
        return self._metrics.snapshot()

    def start_heartbeat(self) -> None:
        """Send heartbeats to every connection each interval until shutdown."""
        while not self._shutdown_event.wait(self.config.heartbeat_interval):
            with self._conns_lock:
                conns = list(self._conns)
            for conn in conns:
                threading.Thread(
                    target=self._send_heartbeat, args=(conn,), daemon=True
                ).start()

    def _spawn(self, target: Callable[..., None], *args: Any) -> None:
        thread = threading.Thread(target=target, args=args, daemon=True)
        with self._threads_lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
            thread.start()

    def _count(self, name: str) -> None:
        with self._metrics.lock:
            setattr(self._metrics, name, getattr(self._metrics, name) + 1)

    def _accept_connections(self) -> None:
        while not self._shutting_down:
            with self._conns_lock:
                count = len(self._conns)
            if count >= self.config.max_connections:
                log_and_print(
                    f"RPC: Max connections reached | Limit: {self.config.max_connections}"
                )
                time.sleep(_FULL_BACKOFF)
                continue

            try:
                self._limiter.wait()
            except ValueError as exc:
                log_and_print(f"RPC: Rate limiter error | Error: {exc}")
                continue

            listener = self._listener
            if listener is None:
                return
            try:
                sock, addr = listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self._shutting_down:
                    return
                log_and_print(f"RPC: Accept error | Error: {exc}")
                continue

            sock.settimeout(None)
            conn = _Connection(sock, addr)
            with self._conns_lock:
                self._conns.add(conn)
                with self._metrics.lock:
                    self._metrics.active_conns += 1
            if self._shutting_down:
                conn.close()
            self._spawn(self._handle_connection, conn)

    def _handle_connection(self, conn: _Connection) -> None:
        stop = threading.Event()
        threading.Thread(
            target=self._connection_heartbeats, args=(conn, stop), daemon=True
        ).start()
        reader = conn.sock.makefile("rb")
        try:
            self._serve(conn, reader)
        finally:
            stop.set()
            with self._conns_lock:
                self._conns.discard(conn)
                with self._metrics.lock:
                    self._metrics.active_conns -= 1
            try:
                reader.close()
            except OSError:
                pass
            conn.close()

    def _connection_heartbeats(self, conn: _Connection, stop: threading.Event) -> None:
        while not stop.wait(self.config.heartbeat_interval):
            self._send_heartbeat(conn)

    def _read_prefix(self, conn: _Connection, reader: BinaryIO) -> bytes | None:
        prefix = bytearray()
        while True:
            try:
                ch = reader.read(1)
            except OSError as exc:
                self._count("errors_total")
                log_and_print(
                    f"RPC: Read error (prefix) | RemoteAddr: {conn.remote} | Error: {exc}"
                )
                return None
            if not ch:
                return None
            if ch == b"#":
                return bytes(prefix)
            prefix += ch
            if len(prefix) > _MAX_PREFIX_LEN:
                self._count("errors_total")
                self._send_error(conn, "unknown", "Invalid length prefix (too long)")
                return None

    def _read_body(self, conn: _Connection, reader: BinaryIO, length: int) -> bytes | None:
        body = bytearray()
        while len(body) < length:
            try:
                chunk = reader.read(min(_READ_CHUNK, length - len(body)))
            except OSError as exc:
                self._count("errors_total")
                self._send_error(conn, "unknown", f"Read error: {exc}")
                return None
            if not chunk:
                self._count("errors_total")
                log_and_print(
                    "RPC: Unexpected EOF while reading message body | "
                    f"RemoteAddr: {conn.remote}"
                )
                return None
            body += chunk
        return bytes(body)

    def _serve(self, conn: _Connection, reader: BinaryIO) -> None:
        while True:
            prefix = self._read_prefix(conn, reader)
            if prefix is None:
                return
            length = _parse_length(prefix)
            if length <= 0:
                self._count("errors_total")
                text = prefix.decode("utf-8", "replace")
                self._send_error(conn, "unknown", f"Invalid length prefix: {text}")
                continue
            body = self._read_body(conn, reader, length)
            if body is None:
                return
            self._dispatch(conn, body)

    def _dispatch(self, conn: _Connection, body: bytes) -> None:
        try:
            req = parse_request(body)
        except ValueError as exc:
            self._count("errors_total")
            self._send_error(conn, "unknown", f"Invalid JSON: {exc}")
            return

        cmd = req.pattern.cmd
        if cmd == "ping":
            self._count("heartbeats_total")
            self._send_response(conn, "ping", Response(response="pong", id=req.id))
            return
        if not cmd:
            self._count("errors_total")
            self._send_error(conn, "unknown", "Empty pattern command")
            return

        self._count("requests_total")
        log_and_print(
            f"RPC: Received request | Pattern: {cmd} | RemoteAddr: {conn.remote} | "
            f"Time: {_now()}"
        )

        retries = self.config.retry_attempts
        result: Any = None
        error: Exception | None = None
        for attempt in range(retries + 1):
            handler = self.registry.get(cmd)
            if handler is None:
                self._count("errors_total")
                self._send_error(conn, cmd, "Unknown pattern")
                return
            started = time.perf_counter()
            try:
                result = handler(req.data)
            except Exception as exc:  # handler failures are reported to the client
                error = exc
            else:
                error = None
                with self._metrics.lock:
                    self._metrics.processing_time += time.perf_counter() - started
                break
            if attempt < retries:
                log_and_print(
                    f"RPC: Handler retry | Pattern: {cmd} | Attempt: {attempt + 1} | "
                    f"Error: {error}"
                )
                time.sleep(self.config.retry_delay)

        if error is not None:
            self._count("errors_total")
            self._send_error(conn, cmd, str(error))
            return

        self._send_response(
            conn, cmd, Response(response=result, id=req.id, status="ok")
        )

    def _send_response(self, conn: _Connection, pattern: str, resp: Response) -> None:
        try:
            payload = resp.to_json()
        except (TypeError, ValueError) as exc:
            log_and_print(f"RPC: Failed to marshal response | Error: {exc}")
            return
        try:
            conn.send(encode_frame(payload))
        except OSError as exc:
            self._count("errors_total")
            log_and_print(
                f"RPC: Failed to send response | Pattern: {pattern} | "
                f"RemoteAddr: {conn.remote} | Time: {_now()} | Error: {exc}"
            )
            return
        log_and_print(
            f"RPC: Response sent | Pattern: {pattern} | RemoteAddr: {conn.remote} | "
            f"Time: {_now()}"
        )

    def _send_error(self, conn: _Connection, pattern: str, message: str) -> None:
        resp = Response(err=message, status="error", is_disposed=True)
        try:
            payload = resp.to_json()
        except (TypeError, ValueError) as exc:
            log_and_print(f"RPC: Failed to marshal error response | Error: {exc}")
            return
        try:
            conn.send(encode_frame(payload))
        except OSError as exc:
            self._count("errors_total")
            log_and_print(
                f"RPC: Failed to send error response | Pattern: {pattern} | "
                f"RemoteAddr: {conn.remote} | Time: {_now()} | Error: {exc}"
            )
            return
        log_and_print(
            f"RPC: Error response sent | Pattern: {pattern} | RemoteAddr: {conn.remote} | "
            f"Time: {_now()} | Message: {message}"
        )

    def _send_heartbeat(self, conn: _Connection) -> None:
        payload = Response(response="ping", id="heartbeat", is_disposed=True).to_json()
        try:
            conn.send(payload + b"\n")
        except OSError as exc:
            self._count("heartbeat_fails")
            log_and_print(
                f"RPC: Failed to send heartbeat | RemoteAddr: {conn.remote} | "
                f"Time: {_now()} | Error: {exc}"
            )
            return
        log_and_print(
            f"RPC: Heartbeat sent | RemoteAddr: {conn.remote} | Time: {_now()}"
        )