"""Sliding-window rate limiter behavior."""

from __future__ import annotations

import anyio
import pytest

from ampgate.serving.backend.limits import (
    SlidingWindowRateLimiter,
    client_id_from_headers,
    run_rate_limit_sweeper,
)
from tests._helpers.expect import expect_equal, expect_true
from tests._helpers.fakes import FakeClock

MAX_REQUESTS = 3
WINDOW = 60.0


def _limiter(clock: FakeClock) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(max_requests=MAX_REQUESTS, window_seconds=WINDOW, clock=clock)


def test_allows_up_to_max_then_rejects(clock: FakeClock) -> None:
    """Requests within the budget pass; the next one inside the window is rejected."""
    limiter = _limiter(clock)
    for _ in range(MAX_REQUESTS):
        expect_true(limiter.allow("1.2.3.4"), message="request within budget was rejected")
        clock.advance(1)
    expect_true(not limiter.allow("1.2.3.4"), message="request over budget was admitted")


def test_rejection_does_not_consume_budget(clock: FakeClock) -> None:
    """A rejected request leaves the ledger untouched, so recovery follows the oldest entry."""
    limiter = _limiter(clock)
    for _ in range(MAX_REQUESTS):
        limiter.allow("client")
    clock.advance(10)
    for _ in range(5):
        expect_true(not limiter.allow("client"), message="expected rejection")
    clock.advance(WINDOW - 10 + 0.001)
    expect_true(limiter.allow("client"), message="oldest timestamp should have expired")


def test_allowed_again_once_oldest_leaves_window(clock: FakeClock) -> None:
    """Budget frees up exactly when the oldest counted timestamp falls out of the window."""
    limiter = _limiter(clock)
    limiter.allow("client")
    clock.advance(30)
    limiter.allow("client")
    limiter.allow("client")
    clock.advance(29.5)
    expect_true(not limiter.allow("client"), message="window still holds three requests")
    clock.advance(0.5)
    expect_true(limiter.allow("client"), message="first request is exactly one window old")
    expect_true(not limiter.allow("client"), message="budget should be full again")


def test_clients_are_isolated(clock: FakeClock) -> None:
    """One client exhausting its budget does not affect another."""
    limiter = _limiter(clock)
    for _ in range(MAX_REQUESTS):
        limiter.allow("a")
    expect_true(not limiter.allow("a"), message="client a should be limited")
    expect_true(limiter.allow("b"), message="client b should be unaffected")


def test_sweep_evicts_idle_clients(clock: FakeClock) -> None:
    """The sweep drops clients whose timestamps all left the window."""
    limiter = _limiter(clock)
    limiter.allow("idle")
    clock.advance(WINDOW / 2)
    limiter.allow("active")
    clock.advance(WINDOW / 2 + 1)
    evicted = limiter.sweep()
    expect_equal(evicted, 1, label="evicted")
    expect_equal(limiter.active_clients(), 1, label="active clients")


def test_sweeper_runs_on_interval() -> None:
    """The background sweeper evicts entries without any request traffic."""
    clock = FakeClock()
    limiter = _limiter(clock)
    limiter.allow("idle")
    clock.advance(WINDOW + 1)

    async def _run() -> None:
        with anyio.move_on_after(0.2):
            await run_rate_limit_sweeper(limiter, 0.01)

    anyio.run(_run)
    expect_equal(limiter.active_clients(), 0, label="active clients after sweep")


@pytest.mark.parametrize(
    ("headers", "expected"),
    [
        ({"x-forwarded-for": "10.0.0.1"}, "10.0.0.1"),
        ({"x-forwarded-for": " 10.0.0.1 , 172.16.0.9"}, "10.0.0.1"),
        ({"x-forwarded-for": ""}, "unknown"),
        ({}, "unknown"),
    ],
)
def test_client_id_from_headers(headers: dict[str, str], expected: str) -> None:
    """The first forwarded-for address is the key; absent headers share one bucket."""
    expect_equal(client_id_from_headers(headers), expected)
