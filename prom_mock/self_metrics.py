"""Self-monitoring metrics for the mock server using prometheus_client."""
from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class SelfMetrics:
    """Counters and gauges describing what the mock has served and stored."""

    def __init__(self, registry=None, prefix="prom_mock_"):
        # Use a custom registry to avoid exporting default Python/process metrics
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.requests_total = Counter(
            f"{prefix}requests_total",
            "Total number of API requests handled",
            ["endpoint"],
            registry=registry
        )

        self.fixture_lookups_total = Counter(
            f"{prefix}fixture_lookups_total",
            "Fixture lookups by outcome",
            ["endpoint", "result"],
            registry=registry
        )

        self.samples_ingested_total = Counter(
            f"{prefix}samples_ingested_total",
            "Total number of samples written",
            registry=registry
        )

        self.query_errors_total = Counter(
            f"{prefix}query_errors_total",
            "Total number of rejected selector queries",
            registry=registry
        )

        self.simulated_failures_total = Counter(
            f"{prefix}simulated_failures_total",
            "Total number of injected 503 responses",
            registry=registry
        )

        self.active_series = Gauge(
            f"{prefix}active_series",
            "Number of series held in memory",
            registry=registry
        )

    def record_request(self, endpoint: str):
        self.requests_total.labels(endpoint=endpoint).inc()

    def record_fixture_lookup(self, endpoint: str, matched: bool):
        """Record a fixture lookup as hit or miss."""
        result = "hit" if matched else "miss"
        self.fixture_lookups_total.labels(endpoint=endpoint, result=result).inc()

    def record_ingest(self, samples: int, active_series: int):
        """Record written samples and the resulting series count."""
        self.samples_ingested_total.inc(samples)
        self.active_series.set(active_series)

    def record_query_error(self):
        self.query_errors_total.inc()

    def record_simulated_failure(self):
        self.simulated_failures_total.inc()

    def render(self) -> bytes:
        """Text exposition of all self metrics."""
        return generate_latest(self.registry)
