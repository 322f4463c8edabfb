"""Pytest configuration for the gateway test suite."""

from __future__ import annotations

import pytest

from tests._helpers.fakes import FakeClock, FakeIndexer


@pytest.fixture
def indexer() -> FakeIndexer:
    """Provide a fake indexer listing one dataset at block 1234.

    Returns
    -------
    FakeIndexer
        Fresh fake with default admin and query responses.
    """
    return FakeIndexer(
        datasets=[{"name": "geo_evm_rpc_full"}],
        jobs=[{"id": 1, "status": "running"}],
        latest_blocks={"geo_evm_rpc_full": 1234},
    )


@pytest.fixture
def clock() -> FakeClock:
    """Provide a manually advanced clock.

    Returns
    -------
    FakeClock
        Clock starting at an arbitrary monotonic value.
    """
    return FakeClock()
