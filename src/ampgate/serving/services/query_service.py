"""Forwarding of SQL to the indexer's JSON Lines query endpoint."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator

import anyio
import httpx

from ampgate.serving import errors
from ampgate.serving.backend.datasets import latest_block_sql

LOG = logging.getLogger("ampgate.serving.services.query_service")

NDJSON_MEDIA_TYPE = "application/x-ndjson"
_SQL_HEADERS = {"Content-Type": "text/plain"}


def parse_ndjson(text: str) -> list[dict[str, object]]:
    """
    Decode a JSON Lines body into rows.

    Returns
    -------
    list[dict[str, object]]
        One mapping per non-blank line; empty for a blank body.

    Raises
    ------
    errors.UpstreamError
        When a line is not a JSON object.
    """
    rows: list[dict[str, object]] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            row = json.loads(line)
        except ValueError as exc:
            message = "AMP returned an undecodable JSON Lines row"
            raise errors.upstream_failure(message) from exc
        if not isinstance(row, dict):
            message = "AMP returned a JSON Lines row that is not an object"
            raise errors.upstream_failure(message)
        rows.append(row)
    return rows


def coerce_block_number(value: object) -> int | None:
    """
    Interpret a ``MAX(block_num)`` cell as a block number.

    Returns
    -------
    int | None
        Integer block number, or None for null and non-numeric values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


class QueryForwarder:
    """
    Send SQL to the indexer and hand back its response.

    There is no retry: a failed forward surfaces immediately as ``UpstreamError`` and the
    caller owns retry policy.
    """

    def __init__(self, client: httpx.AsyncClient, endpoint: str) -> None:
        self._client = client
        self._endpoint = endpoint

    async def open_stream(self, sql: str) -> httpx.Response:
        """
        Start a query and return the upstream response with its body unread.

        The caller must close the response, normally through :func:`relay_body`.

        Parameters
        ----------
        sql:
            Admitted SQL text.

        Returns
        -------
        httpx.Response
            Successful (2xx) streaming response.

        Raises
        ------
        errors.UpstreamError
            On transport failure or a non-2xx status; the error body is read fully.
        """
        request = self._client.build_request(
            "POST",
            self._endpoint,
            content=sql.encode("utf-8"),
            headers=_SQL_HEADERS,
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            message = f"AMP query failed: {exc}"
            raise errors.upstream_failure(message) from exc
        if response.is_success:
            return response
        try:
            await response.aread()
        finally:
            await response.aclose()
        message = f"AMP query failed: {response.status_code} - {response.text}"
        raise errors.upstream_failure(
            message,
            upstream_status=response.status_code,
            upstream_body=response.text,
        )

    async def query_text(self, sql: str) -> str:
        """
        Run a query and buffer the whole response body.

        Returns
        -------
        str
            Raw JSON Lines text.
        """
        response = await self.open_stream(sql)
        try:
            await response.aread()
        except httpx.HTTPError as exc:
            message = f"AMP query failed while reading response: {exc}"
            raise errors.upstream_failure(message) from exc
        finally:
            await response.aclose()
        return response.text

    async def query_rows(self, sql: str) -> list[dict[str, object]]:
        """
        Run a query and decode its JSON Lines rows.

        Returns
        -------
        list[dict[str, object]]
            Decoded rows.
        """
        return parse_ndjson(await self.query_text(sql))

    async def fetch_latest_block(self, dataset: str) -> int | None:
        """
        Return the highest indexed block number for a validated dataset.

        Returns
        -------
        int | None
            Latest block, or None when the dataset has no blocks yet.
        """
        rows = await self.query_rows(latest_block_sql(dataset))
        if not rows:
            return None
        return coerce_block_number(rows[0].get("latest"))


async def relay_body(response: httpx.Response) -> AsyncGenerator[bytes, None]:
    """
    Yield the decoded upstream body unchanged, closing the response when done.

    The response is also closed when the consumer stops early or is cancelled on client
    disconnect. A transport failure mid-stream is re-raised so the server aborts the
    chunked response instead of ending a truncated body cleanly.

    Yields
    ------
    bytes
        Raw body chunks as received.

    Raises
    ------
    httpx.HTTPError
        When the upstream connection fails after the body started.
    """
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as exc:
        LOG.warning("Upstream stream aborted: %s", exc)
        raise
    finally:
        with anyio.CancelScope(shield=True):
            await response.aclose()
