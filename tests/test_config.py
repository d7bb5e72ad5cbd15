from msgpattern.config import Config, Metrics, apply_defaults


def test_defaults_for_none():
    cfg = apply_defaults(None)
    assert cfg.addr == ":8080"
    assert cfg.timeout == 30
    assert cfg.max_connections == 1000
    assert cfg.rate_limit_per_sec == 100
    assert cfg.rate_limit_burst == 200
    assert cfg.retry_attempts == 0
    assert cfg.retry_delay == 0.5
    assert cfg.heartbeat_interval == 15
    assert cfg.heartbeat_timeout == 45


def test_negative_retry_attempts_default_to_three():
    assert apply_defaults(Config(retry_attempts=-1)).retry_attempts == 3


def test_explicit_values_are_kept():
    given = Config(
        addr=":4069",
        timeout=30,
        max_connections=5,
        rate_limit_per_sec=7,
        rate_limit_burst=9,
        retry_attempts=2,
        retry_delay=0.25,
        heartbeat_interval=1.5,
        heartbeat_timeout=4.5,
    )
    assert apply_defaults(given) == given


def test_invalid_values_are_replaced():
    cfg = apply_defaults(Config(max_connections=-5, timeout=-1.0, heartbeat_timeout=0))
    assert cfg.max_connections == 1000
    assert cfg.timeout == 30
    assert cfg.heartbeat_timeout == 45


def test_input_config_is_not_mutated():
    given = Config(addr=":4069")
    apply_defaults(given)
    assert given == Config(addr=":4069")


def test_apply_defaults_is_idempotent():
    once = apply_defaults(Config(rate_limit_burst=3))
    assert apply_defaults(once) == once


def test_metrics_snapshot_copies_values():
    metrics = Metrics(requests_total=4, errors_total=1, processing_time=0.5)
    snap = metrics.snapshot()
    assert snap == metrics
    assert snap.lock is not metrics.lock


def test_metrics_snapshot_is_independent():
    metrics = Metrics()
    snap = metrics.snapshot()
    with metrics.lock:
        metrics.requests_total += 1
        metrics.heartbeat_fails += 1
    assert snap.requests_total == 0
    assert snap.heartbeat_fails == 0
    assert metrics.snapshot().requests_total == 1