"""Transport-agnostic gateway primitives."""

from __future__ import annotations

from ampgate.serving.backend.admission import AdmittedQuery, admit_query, strip_comments
from ampgate.serving.backend.datasets import (
    DatasetDirectory,
    DatasetListing,
    DirectorySnapshot,
    is_valid_identifier,
    latest_block_sql,
)
from ampgate.serving.backend.limits import (
    SlidingWindowRateLimiter,
    client_id_from_headers,
    run_rate_limit_sweeper,
)

__all__ = [
    "AdmittedQuery",
    "DatasetDirectory",
    "DatasetListing",
    "DirectorySnapshot",
    "SlidingWindowRateLimiter",
    "admit_query",
    "client_id_from_headers",
    "is_valid_identifier",
    "latest_block_sql",
    "run_rate_limit_sweeper",
    "strip_comments",
]
