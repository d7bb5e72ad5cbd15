"""Server configuration and runtime metrics."""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field


@dataclass
class Config:
    """Server settings; durations are in seconds. Zero values get defaults."""

    addr: str = ""
    timeout: float = 0.0
    max_connections: int = 0
    rate_limit_per_sec: int = 0
    rate_limit_burst: int = 0
    retry_attempts: int = 0
    retry_delay: float = 0.0
    heartbeat_interval: float = 0.0
    heartbeat_timeout: float = 0.0


@dataclass
class Metrics:
    """Counters kept by a running server. Guard updates with ``lock``."""

    requests_total: int = 0
    errors_total: int = 0
    active_conns: int = 0
    processing_time: float = 0.0
    heartbeats_total: int = 0
    heartbeat_fails: int = 0
    lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def snapshot(self) -> "Metrics":
        """Return a consistent, independent copy of the counters."""
        with self.lock:
            return dataclasses.replace(self)


def apply_defaults(config: Config | None) -> Config:
    """Return a copy of ``config`` with unset or invalid fields filled in."""
    cfg = dataclasses.replace(config) if config is not None else Config()

    if not cfg.addr:
        cfg.addr = ":8080"
    if cfg.timeout <= 0:
        cfg.timeout = 30.0
    if cfg.max_connections <= 0:
        cfg.max_connections = 1000
    if cfg.rate_limit_per_sec <= 0:
        cfg.rate_limit_per_sec = 100
    if cfg.rate_limit_burst <= 0:
        cfg.rate_limit_burst = 200
    if cfg.retry_attempts < 0:
        cfg.retry_attempts = 3
    if cfg.retry_delay <= 0:
        cfg.retry_delay = 0.5
    if cfg.heartbeat_interval <= 0:
        cfg.heartbeat_interval = 15.0
    if cfg.heartbeat_timeout <= 0:
        cfg.heartbeat_timeout = 45.0

    return cfg