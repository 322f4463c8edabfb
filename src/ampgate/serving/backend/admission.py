"""Read-only admission control for SQL forwarded to the indexer.

Classification is textual: block comments and ``--`` line comments are removed and the
first keyword is checked. A comment opener hidden inside a string literal can mislead it;
there is no SQL tokenizer here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ampgate.serving import errors

READ_ONLY_KEYWORDS = ("SELECT", "WITH", "EXPLAIN")

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"--[^\n]*")
_READ_ONLY_PREFIX = re.compile(r"^(SELECT|WITH|EXPLAIN)\b", re.IGNORECASE)


@dataclass(frozen=True)
class AdmittedQuery:
    """SQL accepted for forwarding."""

    sql: str
    keyword: str | None
    size: int


def strip_comments(sql: str) -> str:
    """
    Remove block and line comments, then trim.

    Returns
    -------
    str
        Statement text used for classification only.
    """
    without_blocks = _BLOCK_COMMENT.sub(" ", sql)
    return _LINE_COMMENT.sub("", without_blocks).strip()


def leading_keyword(sql: str) -> str | None:
    """
    Return the read-only keyword the statement starts with, if any.

    Returns
    -------
    str | None
        Upper-cased keyword, or None for anything else.
    """
    match = _READ_ONLY_PREFIX.match(strip_comments(sql))
    return match.group(1).upper() if match else None


def admit_query(raw_sql: str | None, *, max_size: int, read_only: bool = True) -> AdmittedQuery:
    """
    Validate SQL before it is forwarded upstream.

    Parameters
    ----------
    raw_sql:
        SQL supplied by the caller.
    max_size:
        Maximum size in UTF-8 bytes.
    read_only:
        Whether to restrict statements to SELECT, WITH and EXPLAIN.

    Returns
    -------
    AdmittedQuery
        Trimmed SQL plus the detected keyword and size.

    Raises
    ------
    errors.GatewayError
        ``empty_query`` (400), ``query_too_large`` (413) or ``not_read_only`` (403),
        checked in that order.
    """
    sql = (raw_sql or "").strip()
    if not sql:
        raise errors.empty_query()

    size = len(sql.encode("utf-8"))
    if size > max_size:
        raise errors.query_too_large(size, max_size)

    keyword = leading_keyword(sql)
    if read_only and keyword is None:
        raise errors.not_read_only()
    return AdmittedQuery(sql=sql, keyword=keyword, size=size)
