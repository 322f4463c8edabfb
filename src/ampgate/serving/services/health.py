"""Health and status aggregation across datasets and the admin API.

Both reports degrade field by field: one failed dataset query or admin read turns that
field into ``None`` instead of failing the whole report.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ampgate.serving import errors
from ampgate.serving.backend.datasets import DatasetDirectory
from ampgate.serving.services.admin import AdminClient
from ampgate.serving.services.query_service import QueryForwarder

LOG = logging.getLogger("ampgate.serving.services.health")


def utc_timestamp(now: datetime | None = None) -> str:
    """
    Format a timestamp the way the JSON payloads report it.

    Returns
    -------
    str
        ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix.
    """
    moment = now or datetime.now(tz=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class HealthSnapshot:
    """Latest block per dataset plus the overall maximum."""

    datasets: dict[str, int | None]
    latest_block: int | None
    timestamp: str
    failed: tuple[str, ...] = ()


@dataclass(frozen=True)
class StatusSnapshot:
    """Admin listings with per-field success flags."""

    datasets: object
    jobs: object
    sync_mode: str
    timestamp: str
    datasets_ok: bool = False
    jobs_ok: bool = False
    missing: tuple[str, ...] = field(default=())


class HealthAggregator:
    """Compose the directory, forwarder and admin client into health/status reports."""

    def __init__(
        self,
        directory: DatasetDirectory,
        forwarder: QueryForwarder,
        admin: AdminClient,
        *,
        sync_mode: str = "full",
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._directory = directory
        self._forwarder = forwarder
        self._admin = admin
        self._sync_mode = sync_mode
        self._now = now or (lambda: datetime.now(tz=UTC))

    async def health(self) -> HealthSnapshot:
        """
        Report the latest indexed block for every known dataset.

        Returns
        -------
        HealthSnapshot
            Per-dataset markers (None where the query failed) and their maximum.

        Raises
        ------
        errors.GatewayError
            When the dataset directory cannot be resolved at all.
        """
        names = await self._directory.require()
        markers: dict[str, int | None] = {}
        failed: list[str] = []
        for dataset in sorted(names):
            try:
                markers[dataset] = await self._forwarder.fetch_latest_block(dataset)
            except errors.UpstreamError as exc:
                LOG.warning("Latest block query failed for dataset=%s: %s", dataset, exc)
                markers[dataset] = None
                failed.append(dataset)
        observed = [value for value in markers.values() if value is not None]
        return HealthSnapshot(
            datasets=markers,
            latest_block=max(observed) if observed else None,
            timestamp=utc_timestamp(self._now()),
            failed=tuple(failed),
        )

    async def status(self) -> StatusSnapshot:
        """
        Read the admin dataset and job listings, tolerating either being down.

        Returns
        -------
        StatusSnapshot
            Listings (None when unreachable) with success flags.
        """
        datasets, datasets_ok = await self._admin.fetch_optional("/datasets")
        jobs, jobs_ok = await self._admin.fetch_optional("/jobs")
        missing = tuple(
            name for name, ok in (("datasets", datasets_ok), ("jobs", jobs_ok)) if not ok
        )
        return StatusSnapshot(
            datasets=datasets,
            jobs=jobs,
            sync_mode=self._sync_mode,
            timestamp=utc_timestamp(self._now()),
            datasets_ok=datasets_ok,
            jobs_ok=jobs_ok,
            missing=missing,
        )
