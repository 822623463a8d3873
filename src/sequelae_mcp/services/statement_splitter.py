"""SQL script splitting.

Postgres' extended protocol accepts one statement per prepared query, so a
script has to be split client-side. This module splits on semicolons while
skipping those inside string literals, quoted identifiers, dollar-quoted
bodies and comments.
"""

import re

# $$ or $tag$; a tag cannot start with a digit, so $1 is a parameter.
_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_\u0080-\uffff][A-Za-z0-9_\u0080-\uffff]*)?\$")


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in ("_", "$")


def _skip_line_comment(sql: str, i: int) -> int:
    end = sql.find("\n", i)
    return len(sql) if end == -1 else end + 1


def _skip_block_comment(sql: str, i: int) -> int:
    # Postgres block comments nest.
    depth = 0
    n = len(sql)
    while i < n:
        if sql.startswith("/*", i):
            depth += 1
            i += 2
        elif sql.startswith("*/", i):
            depth -= 1
            i += 2
            if depth == 0:
                return i
        else:
            i += 1
    return n


def _skip_quoted(sql: str, i: int, quote: str, backslash_escapes: bool = False) -> int:
    """Return the index just past the closing quote; ``i`` is past the opener."""
    n = len(sql)
    while i < n:
        ch = sql[i]
        if backslash_escapes and ch == "\\":
            i += 2
            continue
        if ch == quote:
            if i + 1 < n and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def _is_escape_string(sql: str, quote_index: int) -> bool:
    """Whether the quote at ``quote_index`` opens an E'...' string."""
    if quote_index < 1 or sql[quote_index - 1] not in ("E", "e"):
        return False
    return quote_index < 2 or not _is_ident_char(sql[quote_index - 2])


def _dollar_tag_at(sql: str, i: int) -> str | None:
    if i > 0 and _is_ident_char(sql[i - 1]):
        return None
    match = _DOLLAR_TAG.match(sql, i)
    return match.group(0) if match else None


def split_statements(sql: str) -> list[str]:
    """Split a SQL script into individual statements.

    Semicolons inside quotes, dollar-quoted blocks and comments do not split.
    A final statement without a terminating semicolon is kept. Chunks that
    hold only whitespace and comments are dropped, so a script made only of
    comments yields an empty list.

    Args:
        sql: Raw script text.

    Returns:
        list[str]: Statements in order, stripped, without the trailing ``;``.

    Example:
        >>> split_statements("SELECT 1; -- c ; x\\nSELECT ';' ;")
        ['SELECT 1', "-- c ; x\\nSELECT ';'"]
    """
    if sql.startswith("\ufeff"):
        sql = sql[1:]

    statements: list[str] = []
    n = len(sql)
    start = 0
    has_code = False
    i = 0

    def emit(end: int) -> None:
        if has_code:
            statements.append(sql[start:end].strip())

    while i < n:
        ch = sql[i]

        if ch == "-" and sql.startswith("--", i):
            i = _skip_line_comment(sql, i + 2)
            continue

        if ch == "/" and sql.startswith("/*", i):
            i = _skip_block_comment(sql, i)
            continue

        if ch == "'":
            i = _skip_quoted(sql, i + 1, "'", backslash_escapes=_is_escape_string(sql, i))
            has_code = True
            continue

        if ch == '"':
            i = _skip_quoted(sql, i + 1, '"')
            has_code = True
            continue

        if ch == "$":
            tag = _dollar_tag_at(sql, i)
            if tag is not None:
                end = sql.find(tag, i + len(tag))
                i = n if end == -1 else end + len(tag)
                has_code = True
                continue

        if ch == ";":
            emit(i)
            start = i + 1
            has_code = False
            i += 1
            continue

        if not ch.isspace():
            has_code = True
        i += 1

    emit(n)
    return statements
