"""Fixture routes for canned API responses and request matching."""
import logging
import os
from datetime import datetime
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from prom_mock.timeutil import ParamKind, resolve_relative

logger = logging.getLogger(__name__)

DEFAULT_STATUS = "success"
QUERY_RANGE_SUFFIX = "/query_range"


class FixtureError(Exception):
    """Fixture file could not be read or is invalid."""


def _scalar_to_text(v):
    """YAML turns bare timestamps into ints or datetimes; fixtures match on text."""
    if isinstance(v, datetime):
        text = v.isoformat()
        return text[:-len("+00:00")] + "Z" if text.endswith("+00:00") else text
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


class Defaults(BaseModel):
    """Default settings for fixture responses."""
    status: Optional[str] = None
    clock_anchor: Optional[str] = None  # RFC3339 instant used as "now"

    normalize_text = field_validator('clock_anchor', mode='before')(_scalar_to_text)


class Matcher(BaseModel):
    """Request shape a route answers."""
    path: str
    query: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    step: Optional[str] = None

    normalize_text = field_validator('query', 'start', 'end', 'step', mode='before')(_scalar_to_text)


class Respond(BaseModel):
    """Canned response body for a matched route."""
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[str] = None
    data: Any = None
    warnings: Optional[List[str]] = None
    error_type: Optional[str] = Field(default=None, alias="errorType")
    error: Optional[str] = None


class Route(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    matcher: Matcher = Field(alias="match")
    respond: Respond


class QueryParams(BaseModel):
    """Request parameters in the form fixtures are matched against."""
    query: str
    start: Optional[str] = None
    end: Optional[str] = None
    step: Optional[str] = None


def param_equal(expect: str, got: str, now: Optional[datetime] = None) -> bool:
    """
    Compare a fixture time value with a request value.

    Both sides are resolved first. Resolved values (absolute or relative)
    compare by their text with each other, raw values compare with raw
    values, and raw never equals a resolved value.
    """
    e = resolve_relative(expect, now)
    g = resolve_relative(got, now)
    if (e.kind == ParamKind.RAW) != (g.kind == ParamKind.RAW):
        return False
    return e.text == g.text


class FixtureBook(BaseModel):
    """Ordered fixture routes with their defaults."""
    version: Optional[int] = None
    defaults: Optional[Defaults] = None
    routes: List[Route] = Field(default_factory=list)

    def find_match(
        self,
        path: str,
        params: QueryParams,
        now: Optional[datetime] = None
    ) -> Optional[Respond]:
        """
        Find the first route matching the request.

        Args:
            path: API path like "/api/v1/query" or "/api/v1/query_range"
            params: Query text and, for range queries, start/end/step
            now: Reference instant for relative times in the fixtures

        Returns:
            The route's response, or None if no route matches
        """
        for route in self.routes:
            if self._route_matches(route.matcher, path, params, now):
                return route.respond
        return None

    @staticmethod
    def _route_matches(
        matcher: Matcher,
        path: str,
        params: QueryParams,
        now: Optional[datetime]
    ) -> bool:
        if matcher.path != path:
            return False

        if matcher.query is not None and matcher.query != params.query:
            return False

        if path.endswith(QUERY_RANGE_SUFFIX):
            if params.start is None or params.end is None or params.step is None:
                return False
            if matcher.start is not None and not param_equal(matcher.start, params.start, now):
                return False
            if matcher.end is not None and not param_equal(matcher.end, params.end, now):
                return False
            if matcher.step is not None and matcher.step != params.step:
                return False

        return True

    def effective_status(self, respond: Respond) -> str:
        """Response status, falling back to the book default and then "success"."""
        if respond.status is not None:
            return respond.status
        if self.defaults and self.defaults.status:
            return self.defaults.status
        return DEFAULT_STATUS


def load_fixtures(path: str) -> FixtureBook:
    """Load and validate a fixture book from a YAML file."""
    if not os.path.exists(path):
        raise FixtureError(f"Fixture file not found: {path}")

    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise FixtureError(f"Failed to read fixtures from {path}: {e}") from e

    try:
        book = FixtureBook.model_validate(raw or {})
    except ValidationError as e:
        raise FixtureError(f"Fixture validation failed: {e}") from e

    if book.defaults is None:
        book.defaults = Defaults(status=DEFAULT_STATUS)
    elif book.defaults.status is None:
        book.defaults.status = DEFAULT_STATUS

    logger.info(f"Loaded {len(book.routes)} fixture routes from {path}")
    return book
