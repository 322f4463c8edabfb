"""Dataset discovery, caching and identifier validation."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import anyio

from ampgate.serving import errors

LOG = logging.getLogger("ampgate.serving.backend.datasets")

DATASET_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
LATEST_BLOCK_TEMPLATE = 'SELECT MAX(block_num) as latest FROM "{dataset}".blocks'


class DatasetListing(Protocol):
    """Source of dataset names, normally the indexer admin API."""

    async def list_dataset_names(self) -> list[str]:
        """Return the dataset names currently registered upstream."""
        ...


@dataclass(frozen=True)
class DirectorySnapshot:
    """Point-in-time view of the directory cache."""

    names: frozenset[str]
    refreshed_at: float | None
    last_refresh_ok: bool | None


def is_valid_identifier(dataset: str) -> bool:
    """Return True when ``dataset`` is safe to splice into a quoted SQL identifier."""
    return DATASET_IDENTIFIER.fullmatch(dataset) is not None


def latest_block_sql(dataset: str) -> str:
    """
    Build the latest-row-marker query for a dataset.

    Returns
    -------
    str
        ``MAX(block_num)`` query over the dataset's blocks table.
    """
    return LATEST_BLOCK_TEMPLATE.format(dataset=dataset)


class DatasetDirectory:
    """
    TTL-cached set of dataset names known to the indexer.

    A failed refresh never replaces the cache: the previous names and refresh time are kept
    and the failure is only logged. Concurrent cache misses share one admin read.
    """

    def __init__(
        self,
        listing: DatasetListing,
        *,
        ttl_seconds: float = 60.0,
        enforce_membership: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._listing = listing
        self._ttl_seconds = ttl_seconds
        self._enforce_membership = enforce_membership
        self._clock = clock
        self._names: frozenset[str] = frozenset()
        self._refreshed_at: float | None = None
        self._last_refresh_ok: bool | None = None
        self._lock = anyio.Lock()

    @property
    def snapshot(self) -> DirectorySnapshot:
        """Current cache contents without triggering a refresh."""
        return DirectorySnapshot(
            names=self._names,
            refreshed_at=self._refreshed_at,
            last_refresh_ok=self._last_refresh_ok,
        )

    def _is_fresh(self) -> bool:
        if not self._names or self._refreshed_at is None:
            return False
        return self._clock() - self._refreshed_at < self._ttl_seconds

    async def resolve(self) -> frozenset[str]:
        """
        Return the known dataset names, refreshing when the cache is empty or stale.

        Returns
        -------
        frozenset[str]
            Cached names; possibly empty when the admin API was never reachable.
        """
        if self._is_fresh():
            return self._names
        async with self._lock:
            if not self._is_fresh():
                await self._refresh()
        return self._names

    async def require(self) -> frozenset[str]:
        """
        Resolve names, failing only when the directory could never be populated.

        Returns
        -------
        frozenset[str]
            Cached names, possibly stale.

        Raises
        ------
        errors.GatewayError
            ``directory_unavailable`` when the cache is empty and the latest refresh failed.
        """
        names = await self.resolve()
        if not names and self._last_refresh_ok is False:
            message = "Dataset directory unavailable: admin API unreachable"
            raise errors.directory_unavailable(message)
        return names

    async def validate(self, dataset: str) -> str:
        """
        Check a caller-supplied dataset identifier.

        Parameters
        ----------
        dataset:
            Identifier from the request.

        Returns
        -------
        str
            The identifier, unchanged.

        Raises
        ------
        errors.GatewayError
            ``invalid_dataset`` for disallowed characters, ``unknown_dataset`` when a
            populated directory does not list it.
        """
        if not is_valid_identifier(dataset):
            raise errors.invalid_dataset(dataset)
        if not self._enforce_membership:
            return dataset
        names = await self.resolve()
        if names and dataset not in names:
            raise errors.unknown_dataset(dataset, sorted(names))
        return dataset

    async def _refresh(self) -> None:
        try:
            names = await self._listing.list_dataset_names()
        except Exception as exc:  # noqa: BLE001
            self._last_refresh_ok = False
            LOG.warning(
                "Dataset refresh failed; keeping %d cached datasets: %s",
                len(self._names),
                exc,
            )
            return
        self._last_refresh_ok = True
        if not names:
            LOG.info("Admin API listed no datasets; keeping %d cached", len(self._names))
            return
        self._names = frozenset(names)
        self._refreshed_at = self._clock()
        LOG.info("Refreshed dataset directory: %s", ", ".join(sorted(self._names)))
