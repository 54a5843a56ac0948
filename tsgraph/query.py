"""Parsing of free-text metric lookup queries.

A query is a whitespace separated list of tokens. Tokens may be quoted with
double quotes, and a backslash escapes a space, a double quote or another
backslash. Each token is either ``attribute:value`` (exact attribute match) or
a bare pattern matched as a regular expression against the metric name.
"""
import re
from dataclasses import dataclass
from typing import List

from tsgraph.errors import InvalidRequest

NAME_LABEL = "__name__"
ESCAPABLE = (" ", '"', "\\")


@dataclass(frozen=True)
class Matcher:
    """Restricts a lookup to metrics whose label matches a value."""
    label: str
    value: str
    regex: bool = False


def tokenize(s: str) -> List[str]:
    """Split s into tokens; raises InvalidRequest on malformed quoting or escapes."""
    tokens = []
    current = None
    in_quotes = escaped = False

    for ch in s:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == '"':
            # Quotes delimit a field just like whitespace does.
            in_quotes = not in_quotes
            if current is not None:
                tokens.append(unescape(current))
            current = None
            continue
        elif not in_quotes and ch.isspace():
            if current is not None:
                tokens.append(unescape(current))
            current = None
            continue
        current = ch if current is None else current + ch

    if in_quotes:
        raise InvalidRequest("quoted string not terminated")
    if escaped:
        raise InvalidRequest("illegal character escape at end of string")
    if current is not None:
        tokens.append(unescape(current))
    return tokens


def unescape(s: str) -> str:
    out = []
    chars = iter(s)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, None)
        if nxt is None:
            raise InvalidRequest("illegal character escape at end of string")
        if nxt not in ESCAPABLE:
            raise InvalidRequest(f"illegal character escape \\{nxt}")
        out.append(nxt)
    return "".join(out)


def parse_query(query: str) -> List[Matcher]:
    """Turn a lookup query into a list of matchers (all of which must match)."""
    tokens = tokenize(query or "")
    if not tokens:
        raise InvalidRequest("Empty query")

    matchers = []
    for tok in tokens:
        label, sep, value = tok.partition(":")
        if sep:
            if not label:
                raise InvalidRequest(f"Missing attribute name in {tok!r}")
            matchers.append(Matcher(label, value))
            continue
        try:
            re.compile(tok)
        except re.error as e:
            raise InvalidRequest(f"Invalid pattern {tok!r}: {e}")
        matchers.append(Matcher(NAME_LABEL, tok, regex=True))
    return matchers


def parse_group_by(value: str) -> List[str]:
    """Comma separated attribute names; empty entries are dropped."""
    return [name.strip() for name in (value or "").split(",") if name.strip()]
