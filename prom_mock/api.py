"""Prometheus-compatible HTTP API using FastAPI."""
import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field, ValidationError

from prom_mock.config import MockConfig
from prom_mock.fixtures import FixtureBook, QueryParams
from prom_mock.query_engine import QueryParseError, QueryResult, SimpleQueryEngine
from prom_mock.self_metrics import SelfMetrics
from prom_mock.series import Label, Sample, TimeSeries
from prom_mock.storage import MemoryStorage
from prom_mock.timeutil import parse_rfc3339, resolve_relative, to_unix_seconds, unix_seconds

logger = logging.getLogger(__name__)

# Instant queries look back this far from "now"
DEFAULT_LOOKBACK_MS = 5 * 60 * 1000

QUERY_PATH = "/api/v1/query"
QUERY_RANGE_PATH = "/api/v1/query_range"


class WriteLabel(BaseModel):
    name: str
    value: str


class WriteSample(BaseModel):
    timestamp: int  # milliseconds since epoch
    value: float


class WriteSeries(BaseModel):
    labels: List[WriteLabel] = Field(default_factory=list)
    samples: List[WriteSample] = Field(default_factory=list)


class WriteRequest(BaseModel):
    """Ingest batch in canonical label/sample form."""
    timeseries: List[WriteSeries] = Field(default_factory=list)

    def to_series(self) -> List[TimeSeries]:
        result = []
        for item in self.timeseries:
            ts = TimeSeries([Label(label.name, label.value) for label in item.labels])
            for s in item.samples:
                ts.add_sample(Sample(s.timestamp, s.value))
            result.append(ts)
        return result


def format_value(value: float) -> str:
    """Format a sample value the way Prometheus renders it in JSON."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def sample_pair(sample: Sample) -> List[Any]:
    """[seconds, "value"] pair for a sample."""
    return [sample.timestamp // 1000, format_value(sample.value)]


def labels_map(labels: List[Label]) -> Dict[str, str]:
    return {label.name: label.value for label in labels}


def prom_response(
    status: str,
    data: Any = None,
    warnings: Optional[List[str]] = None,
    error_type: Optional[str] = None,
    error: Optional[str] = None,
    status_code: int = 200
) -> JSONResponse:
    """Build a Prometheus API envelope, leaving out unset fields."""
    body: Dict[str, Any] = {"status": status}
    if data is not None:
        body["data"] = data
    if warnings is not None:
        body["warnings"] = warnings
    if error_type is not None:
        body["errorType"] = error_type
    if error is not None:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


class MockAPI:
    """FastAPI application serving fixtures and the in-memory store."""

    def __init__(
        self,
        storage: MemoryStorage,
        fixtures: Optional[FixtureBook] = None,
        config: Optional[MockConfig] = None,
        self_metrics: Optional[SelfMetrics] = None
    ):
        """
        Initialize the API.

        Args:
            storage: Shared series store
            fixtures: Fixture book for /query and /query_range
            config: Latency, error rate and fixed clock settings
            self_metrics: Self-monitoring metrics (created if not given)
        """
        self.storage = storage
        self.query_engine = SimpleQueryEngine(storage)
        self.fixtures = fixtures if fixtures is not None else FixtureBook()
        self.config = config if config is not None else MockConfig()
        self.self_metrics = self_metrics or SelfMetrics()
        self.rng = np.random.default_rng(self.config.seed)
        self.start_time = time.time()

        self.fixed_now = self.config.fixed_now
        if self.fixed_now is None and self.fixtures.defaults and self.fixtures.defaults.clock_anchor:
            self.fixed_now = parse_rfc3339(self.fixtures.defaults.clock_anchor)
            if self.fixed_now is None:
                logger.warning(
                    f"Ignoring clock_anchor '{self.fixtures.defaults.clock_anchor}': not RFC3339"
                )

        self.app = FastAPI(title="Prometheus Mock API")
        self._setup_routes()

    def now(self) -> datetime:
        return self.fixed_now or datetime.now(timezone.utc)

    async def _simulate(self, endpoint: str) -> Optional[Response]:
        """Apply artificial latency and maybe inject a failure."""
        self.self_metrics.record_request(endpoint)

        if self.config.latency_ms > 0:
            await asyncio.sleep(self.config.latency_ms / 1000.0)

        if self.config.error_rate > 0 and self.rng.random() < self.config.error_rate:
            logger.warning(f"Injecting simulated failure for {endpoint}")
            self.self_metrics.record_simulated_failure()
            return PlainTextResponse("simulated failure", status_code=503)

        return None

    def _fixture_response(self, path: str, params: QueryParams) -> JSONResponse:
        respond = self.fixtures.find_match(path, params, self.fixed_now)
        self.self_metrics.record_fixture_lookup(path, respond is not None)

        if respond is None:
            logger.debug(f"No fixture matched {path} query={params.query!r}")
            return prom_response(
                "error",
                error_type="not_found",
                error="no fixture matched",
                status_code=404
            )

        return prom_response(
            self.fixtures.effective_status(respond),
            data=respond.data,
            warnings=respond.warnings,
            error_type=respond.error_type,
            error=respond.error
        )

    def _normalize_time(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return resolve_relative(value, self.fixed_now).text

    def _time_param_ms(self, value: str) -> int:
        return to_unix_seconds(resolve_relative(value, self.now())) * 1000

    def _bad_query(self, error: QueryParseError) -> JSONResponse:
        logger.warning(f"Query error: {error}")
        self.self_metrics.record_query_error()
        return prom_response("error", error_type="bad_data", error=str(error), status_code=400)

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz", response_class=PlainTextResponse)
        async def healthz():
            """Health check endpoint."""
            return "ok"

        @self.app.get("/status")
        async def status():
            """Get current mock status."""
            return {
                "uptime_seconds": time.time() - self.start_time,
                "series": self.storage.series_count(),
                "label_names": len(self.storage.label_names()),
                "fixture_routes": len(self.fixtures.routes),
                "fixed_now": self.fixed_now.isoformat() if self.fixed_now else None,
            }

        @self.app.get("/metrics")
        async def metrics():
            """Self metrics in Prometheus text format."""
            return Response(content=self.self_metrics.render(), media_type=CONTENT_TYPE_LATEST)

        @self.app.get(QUERY_PATH)
        async def query(query: str):
            """Instant query answered from fixtures."""
            if (failure := await self._simulate(QUERY_PATH)) is not None:
                return failure
            return self._fixture_response(QUERY_PATH, QueryParams(query=query))

        @self.app.get(QUERY_RANGE_PATH)
        async def query_range(
            query: str,
            start: Optional[str] = None,
            end: Optional[str] = None,
            step: Optional[str] = None
        ):
            """Range query answered from fixtures."""
            if (failure := await self._simulate(QUERY_RANGE_PATH)) is not None:
                return failure
            params = QueryParams(
                query=query,
                start=self._normalize_time(start),
                end=self._normalize_time(end),
                step=step
            )
            return self._fixture_response(QUERY_RANGE_PATH, params)

        @self.app.get("/api/v1/series")
        async def series():
            """All stored series as label maps."""
            if (failure := await self._simulate("/api/v1/series")) is not None:
                return failure
            data = [labels_map(ts.labels) for ts in self.storage.query_series([])]
            return prom_response("success", data=data)

        @self.app.get("/api/v1/labels")
        async def labels():
            """All label names."""
            if (failure := await self._simulate("/api/v1/labels")) is not None:
                return failure
            return prom_response("success", data=self.storage.label_names())

        @self.app.get("/api/v1/label/{name}/values")
        async def label_values(name: str):
            """All values of one label, sorted."""
            if (failure := await self._simulate("/api/v1/label/values")) is not None:
                return failure
            return prom_response("success", data=self.storage.label_values(name))

        @self.app.post("/api/v1/write")
        async def write(request: Request):
            """
            Ingest a batch of series.

            The body is the JSON batch described by WriteRequest, not the
            snappy-compressed protobuf that Prometheus remote write sends.
            Snappy and other undecodable bodies get a 400.
            """
            if (failure := await self._simulate("/api/v1/write")) is not None:
                return failure

            encoding = request.headers.get("content-encoding", "")
            if "snappy" in encoding:
                logger.warning("Rejecting snappy-compressed write request")
                return PlainTextResponse("snappy compression not supported", status_code=400)

            body = await request.body()
            try:
                batch = WriteRequest.model_validate_json(body)
            except ValidationError as e:
                logger.warning(f"Failed to decode write request: {e.error_count()} errors")
                return PlainTextResponse("invalid write request", status_code=400)

            samples = 0
            for ts in batch.to_series():
                samples += len(ts.samples)
                self.storage.add_series(ts)

            self.self_metrics.record_ingest(samples, self.storage.series_count())
            logger.debug(f"Received write request with {len(batch.timeseries)} series")
            return Response(status_code=204)

        @self.app.get("/api/v1/query_simple")
        async def query_simple(query: str):
            """Instant query over the last five minutes of stored data."""
            if (failure := await self._simulate("/api/v1/query_simple")) is not None:
                return failure

            timestamp = unix_seconds(self.now()) * 1000
            try:
                result = self.query_engine.query(query, timestamp - DEFAULT_LOOKBACK_MS, timestamp)
            except QueryParseError as e:
                return self._bad_query(e)

            return prom_response("success", data=self._vector(result))

        @self.app.get("/api/v1/query_range_simple")
        async def query_range_simple(
            query: str,
            start: str,
            end: str,
            step: Optional[str] = None
        ):
            """Range query over stored data."""
            if (failure := await self._simulate("/api/v1/query_range_simple")) is not None:
                return failure

            try:
                result = self.query_engine.query(
                    query, self._time_param_ms(start), self._time_param_ms(end)
                )
            except QueryParseError as e:
                return self._bad_query(e)

            return prom_response("success", data=self._matrix(result))

    @staticmethod
    def _vector(result: QueryResult) -> Dict[str, Any]:
        return {
            "resultType": "vector",
            "result": [
                {"metric": labels_map(s.labels), "value": sample_pair(s.samples[-1])}
                for s in result.series
            ],
        }

    @staticmethod
    def _matrix(result: QueryResult) -> Dict[str, Any]:
        return {
            "resultType": "matrix",
            "result": [
                {"metric": labels_map(s.labels), "values": [sample_pair(x) for x in s.samples]}
                for s in result.series
            ],
        }

    def run(self, host: str = "127.0.0.1", port: int = 19090):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
