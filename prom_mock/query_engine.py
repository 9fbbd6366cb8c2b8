"""Selector parser and query engine for simple metric selectors.

Supports `metric{label="value",...}` with the =, !=, =~ and !~
operators. There are no functions, aggregations or binary operators.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from prom_mock import matchers as m
from prom_mock.matchers import LabelMatcher
from prom_mock.series import Label, Sample
from prom_mock.storage import MemoryStorage

logger = logging.getLogger(__name__)

METRIC_NAME_LABEL = "__name__"

# Operator search order; "=" must come last since it is part of the others
OPERATORS = ("!=", "!~", "=~", "=")

_OPERATOR_FACTORIES = {
    "!=": m.not_equal,
    "!~": m.not_regex,
    "=~": m.regex,
    "=": m.equal,
}


class QueryParseError(ValueError):
    """Raised for any selector that cannot be parsed."""

    def __init__(self, message: str, query: str):
        super().__init__(f"{message} in query: {query!r}")
        self.query = query


@dataclass
class QueryResultSeries:
    """A matched series with only its in-range samples."""
    labels: List[Label]
    samples: List[Sample]


@dataclass
class QueryResult:
    series: List[QueryResultSeries] = field(default_factory=list)


def parse_selector(query: str) -> List[LabelMatcher]:
    """
    Parse a selector into label matchers.

    Args:
        query: Selector text, e.g. `up{job="api",method!="POST"}`

    Returns:
        Matchers in selector order; a metric name becomes a `__name__` matcher

    Raises:
        QueryParseError: On unbalanced braces, bad values, unknown operators
            or invalid regular expressions
    """
    text = query.strip()

    brace_pos = text.find("{")
    if brace_pos == -1:
        metric_name, labels_part = text, None
    else:
        metric_name, labels_part = text[:brace_pos].strip(), text[brace_pos:]

    if "}" in metric_name:
        raise QueryParseError("unbalanced braces", query)

    selector: List[LabelMatcher] = []
    if metric_name:
        selector.append(m.equal(METRIC_NAME_LABEL, metric_name))

    if labels_part is not None:
        selector.extend(_parse_label_matchers(labels_part, query))

    return selector


def _parse_label_matchers(labels_str: str, query: str) -> List[LabelMatcher]:
    labels_str = labels_str.strip()
    if not labels_str.startswith("{") or not labels_str.endswith("}"):
        raise QueryParseError("invalid label syntax", query)

    inner = labels_str[1:-1]
    if not inner.strip():
        return []

    parts, in_quotes = split_label_expressions(inner)
    if in_quotes:
        raise QueryParseError("unterminated quoted value", query)

    return [_parse_single_label_matcher(part, query) for part in parts]


def split_label_expressions(inner: str) -> Tuple[List[str], bool]:
    """
    Split the inside of a label block on top-level commas.

    Commas inside quoted values, and escaped characters, do not split.

    Returns:
        The trimmed expressions and whether a quote was left open
    """
    parts = []
    current = []
    in_quotes = False
    escape_next = False

    for ch in inner:
        if escape_next:
            current.append(ch)
            escape_next = False
            continue

        if ch == "\\":
            escape_next = True
            current.append(ch)
        elif ch == '"':
            in_quotes = not in_quotes
            current.append(ch)
        elif ch == "," and not in_quotes:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)

    tail = "".join(current).strip()
    if tail:
        parts.append(tail)

    return parts, in_quotes


def _find_operator(expr: str) -> Optional[Tuple[str, int]]:
    for op in OPERATORS:
        pos = expr.find(op)
        if pos != -1:
            return op, pos
    return None


def _parse_single_label_matcher(expr: str, query: str) -> LabelMatcher:
    expr = expr.strip()

    found = _find_operator(expr)
    if found is None:
        raise QueryParseError(f"invalid label matcher {expr!r}", query)

    op, pos = found
    name = expr[:pos].strip()
    if not name:
        raise QueryParseError(f"missing label name in {expr!r}", query)

    value = parse_quoted_value(expr[pos + len(op):], query)

    try:
        return _OPERATOR_FACTORIES[op](name, value)
    except re.error as e:
        raise QueryParseError(f"invalid regex {value!r}: {e}", query) from e


def parse_quoted_value(raw: str, query: str = "") -> str:
    """Strip the surrounding double quotes of a value and unescape it."""
    raw = raw.strip()
    if len(raw) < 2 or not raw.startswith('"') or not raw.endswith('"'):
        raise QueryParseError(f"expected quoted value, got {raw!r}", query or raw)

    body = raw[1:-1]
    value = []
    escape_next = False
    for ch in body:
        if escape_next:
            value.append(ch)
            escape_next = False
        elif ch == "\\":
            escape_next = True
        elif ch == '"':
            raise QueryParseError(f"unexpected quote in value {raw!r}", query or raw)
        else:
            value.append(ch)

    if escape_next:
        raise QueryParseError(f"unterminated quoted value {raw!r}", query or raw)

    return "".join(value)


class SimpleQueryEngine:
    """Answers selector queries over a time window from storage."""

    def __init__(self, storage: MemoryStorage):
        self.storage = storage

    def query(self, query: str, start: int, end: int) -> QueryResult:
        """
        Run a selector query.

        Args:
            query: Selector text
            start: Start timestamp in milliseconds (inclusive)
            end: End timestamp in milliseconds (inclusive)

        Returns:
            Matched series trimmed to the window; series without samples
            in the window are left out

        Raises:
            QueryParseError: If the selector is invalid
        """
        selector = parse_selector(query)
        result = QueryResult()

        for ts in self.storage.query_series(selector):
            samples = ts.samples_in_range(start, end)
            if samples:
                result.series.append(QueryResultSeries(list(ts.labels), samples))

        logger.debug(
            f"Query {query!r} [{start}, {end}] matched {len(result.series)} series"
        )
        return result
