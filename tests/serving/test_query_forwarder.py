"""Query forwarding against a mock-transport indexer."""

from __future__ import annotations

import anyio
import httpx
import pytest

from ampgate.serving import errors
from ampgate.serving.services.query_service import (
    QueryForwarder,
    coerce_block_number,
    parse_ndjson,
    relay_body,
)
from tests._helpers.expect import expect_equal, expect_true
from tests._helpers.fakes import QUERY_ENDPOINT, ChunkedStream, FakeIndexer, build_client

ROWS = b'{"block_num":1}\n{"block_num":2}\n'


async def _relay(indexer: FakeIndexer, sql: str) -> bytes:
    async with build_client(indexer) as client:
        forwarder = QueryForwarder(client, QUERY_ENDPOINT)
        response = await forwarder.open_stream(sql)
        chunks = [chunk async for chunk in relay_body(response)]
        expect_true(response.is_closed, message="relay should close the upstream response")
    return b"".join(chunks)


async def _open_failure(indexer: FakeIndexer, sql: str) -> errors.UpstreamError:
    async with build_client(indexer) as client:
        forwarder = QueryForwarder(client, QUERY_ENDPOINT)
        with pytest.raises(errors.UpstreamError) as excinfo:
            await forwarder.open_stream(sql)
    return excinfo.value


async def _latest(indexer: FakeIndexer, dataset: str) -> int | None:
    async with build_client(indexer) as client:
        return await QueryForwarder(client, QUERY_ENDPOINT).fetch_latest_block(dataset)


def test_open_stream_relays_body_unchanged(indexer: FakeIndexer) -> None:
    """The SQL is posted as text/plain and the body comes back byte for byte."""
    indexer.query_body = ROWS
    body = anyio.run(_relay, indexer, "SELECT block_num FROM t")
    expect_equal(body, ROWS, label="relayed body")
    expect_equal(indexer.queries, ["SELECT block_num FROM t"], label="forwarded sql")
    request = indexer.requests[-1]
    expect_equal(request.method, "POST", label="method")
    expect_equal(request.headers["content-type"], "text/plain", label="content type")


async def _relay_first_chunk(indexer: FakeIndexer) -> tuple[bytes, bool]:
    async with build_client(indexer) as client:
        response = await QueryForwarder(client, QUERY_ENDPOINT).open_stream("SELECT 1")
        relay = relay_body(response)
        first = await relay.__anext__()
        await relay.aclose()
        return first, response.is_closed


def test_midstream_failure_is_raised_not_truncated(indexer: FakeIndexer) -> None:
    """An upstream reset after the first chunk propagates instead of ending the body cleanly."""
    stream = ChunkedStream([b'{"a":1}\n'], error=httpx.ReadError("connection reset"))
    indexer.query_stream = stream
    with pytest.raises(httpx.ReadError):
        anyio.run(_relay, indexer, "SELECT a FROM t")
    expect_equal(stream.delivered, 1, label="chunks delivered before the failure")
    expect_true(stream.closed, message="upstream stream should be closed after the failure")


def test_consumer_stopping_early_closes_upstream(indexer: FakeIndexer) -> None:
    """When the downstream stops reading, the upstream response is closed at once."""
    stream = ChunkedStream([b'{"a":1}\n', b'{"a":2}\n', b'{"a":3}\n'])
    indexer.query_stream = stream
    first, closed = anyio.run(_relay_first_chunk, indexer)
    expect_equal(first, b'{"a":1}\n', label="first chunk")
    expect_true(closed, message="upstream response should be closed")
    expect_true(stream.closed, message="upstream stream should be closed")
    expect_equal(stream.delivered, 1, label="chunks pulled from upstream")


def test_non_success_status_becomes_upstream_error(indexer: FakeIndexer) -> None:
    """A non-2xx answer is reported with its status and body."""
    indexer.query_status = 400
    indexer.query_body = b"syntax error at or near FROM"
    failure = anyio.run(_open_failure, indexer, "SELECT FROM")
    expect_equal(failure.status, 502, label="gateway status")
    expect_equal(failure.upstream_status, 400, label="upstream status")
    expect_equal(failure.upstream_body, "syntax error at or near FROM", label="upstream body")
    expect_true("syntax error" in str(failure), message="message should carry the upstream body")


def test_transport_error_becomes_upstream_error(indexer: FakeIndexer) -> None:
    """Connection failures surface as 502 without an upstream status."""
    indexer.go_down()
    failure = anyio.run(_open_failure, indexer, "SELECT 1")
    expect_equal(failure.status, 502, label="gateway status")
    expect_equal(failure.upstream_status, None, label="upstream status")


def test_fetch_latest_block_issues_marker_query(indexer: FakeIndexer) -> None:
    """The latest-block lookup runs the MAX(block_num) query for the dataset."""
    latest = anyio.run(_latest, indexer, "geo_evm_rpc_full")
    expect_equal(latest, 1234, label="latest block")
    expect_equal(
        indexer.queries,
        ['SELECT MAX(block_num) as latest FROM "geo_evm_rpc_full".blocks'],
        label="forwarded sql",
    )


def test_fetch_latest_block_for_empty_dataset(indexer: FakeIndexer) -> None:
    """A null maximum is reported as None and a zero maximum as 0."""
    indexer.latest_blocks = {"empty_ds": None, "genesis": 0}
    expect_equal(anyio.run(_latest, indexer, "empty_ds"), None, label="empty dataset")
    expect_equal(anyio.run(_latest, indexer, "genesis"), 0, label="genesis only")


def test_parse_ndjson_skips_blank_lines() -> None:
    """Blank lines are ignored; each other line is one row."""
    rows = parse_ndjson('{"a":1}\n\n  \n{"a":2}\n')
    expect_equal(rows, [{"a": 1}, {"a": 2}])
    expect_equal(parse_ndjson(""), [], label="empty body")


@pytest.mark.parametrize("text", ["not json\n", "[1, 2]\n"])
def test_parse_ndjson_rejects_malformed_rows(text: str) -> None:
    """Undecodable or non-object rows are upstream failures."""
    with pytest.raises(errors.UpstreamError):
        parse_ndjson(text)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (42, 42),
        (0, 0),
        (42.0, 42),
        (42.5, None),
        ("17", 17),
        (" 17 ", 17),
        ("abc", None),
        (None, None),
        (True, None),
        ([1], None),
    ],
)
def test_coerce_block_number(value: object, expected: int | None) -> None:
    """Numeric cells become ints; everything else is None."""
    expect_equal(coerce_block_number(value), expected)
