"""
Prometheus query client.

Runs instant PromQL queries for the scaling rules. A rule is only meaningful
against an instant vector, so any other result type is an error rather than
an empty result.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from vertiscale.errors import QueryFailed, UnexpectedResultShape
from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Sample:
    """One element of an instant vector."""

    labels: dict[str, str]
    timestamp: datetime
    value: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "labels": self.labels,
            "timestamp": self.timestamp.isoformat(),
            "value": self.value,
        }


@dataclass
class QueryStats:
    """Counters for the client."""

    queries_total: int = 0
    queries_failed: int = 0
    last_error: str | None = None
    last_query_at: datetime | None = None


class PrometheusMetrics:
    """
    Instant-query client for the Prometheus HTTP API.

    Supports:
    - Optional HTTP basic auth
    - Query at an explicit evaluation time
    - Strict vector result parsing
    """

    def __init__(
        self,
        prometheus_url: str,
        username: str | None = None,
        password: str | None = None,
        query_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            prometheus_url: Prometheus server URL
            username: Basic auth username (auth is used only with a password too)
            password: Basic auth password
            query_timeout: Timeout for Prometheus queries in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.prometheus_url = prometheus_url.rstrip("/")
        self.query_timeout = query_timeout
        self._auth = httpx.BasicAuth(username, password) if username and password else None
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.stats = QueryStats()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.prometheus_url,
                timeout=self.query_timeout,
                auth=self._auth,
                transport=self._transport,
            )
        return self._client

    async def _query_instant(self, query: str, at: datetime) -> dict[str, Any]:
        """
        Execute an instant query against Prometheus.

        Raises:
            QueryFailed: On transport errors, HTTP errors or an error status
        """
        client = await self._get_client()

        try:
            response = await client.get(
                "/api/v1/query",
                params={"query": query, "time": at.timestamp()},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise QueryFailed(
                f"failed to query prometheus: {e}",
                details={"query": query},
            ) from e
        except ValueError as e:
            raise QueryFailed(
                f"invalid prometheus response: {e}",
                details={"query": query},
            ) from e

        if data.get("status") != "success":
            error = data.get("error", "Unknown error")
            raise QueryFailed(
                f"Prometheus query failed: {error}",
                details={"query": query, "error_type": data.get("errorType")},
            )

        return data.get("data", {})

    def _parse_vector(self, query: str, result: dict[str, Any]) -> list[Sample]:
        """
        Parse an instant query result that must be a vector.

        Prometheus returns results in this format:
        {
            "resultType": "vector",
            "result": [
                {"metric": {"label1": "value1"}, "value": [timestamp, "value"]}
            ]
        }
        """
        result_type = result.get("resultType", "")
        if result_type != "vector":
            raise UnexpectedResultShape(query, result_type)

        samples = []
        for item in result.get("result", []):
            value_data = item.get("value", [])
            if len(value_data) < 2:
                continue
            try:
                value = float(value_data[1])
            except (ValueError, TypeError):
                value = float("nan")
            samples.append(
                Sample(
                    labels=item.get("metric", {}),
                    timestamp=datetime.fromtimestamp(float(value_data[0]), tz=UTC),
                    value=value,
                )
            )
        return samples

    async def query(self, query: str, at: datetime | None = None) -> list[Sample]:
        """
        Run an instant query.

        Args:
            query: PromQL expression
            at: Evaluation time (defaults to now)

        Returns:
            Samples of the resulting instant vector (possibly empty)

        Raises:
            QueryFailed: The query could not be executed
            UnexpectedResultShape: The result was not a vector
        """
        at = at or datetime.now(UTC)
        self.stats.queries_total += 1
        self.stats.last_query_at = at
        logger.debug("Querying Prometheus", query=query)

        try:
            result = await self._query_instant(query, at)
            samples = self._parse_vector(query, result)
        except (QueryFailed, UnexpectedResultShape) as e:
            self.stats.queries_failed += 1
            self.stats.last_error = str(e)
            raise

        logger.debug("Query result", query=query, samples=len(samples))
        return samples

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def health_check(self) -> bool:
        """Check if Prometheus is reachable."""
        try:
            client = await self._get_client()
            response = await client.get("/-/healthy")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def get_stats(self) -> dict[str, Any]:
        """Get client statistics."""
        return {
            "prometheus_url": self.prometheus_url,
            "queries_total": self.stats.queries_total,
            "queries_failed": self.stats.queries_failed,
            "last_error": self.stats.last_error,
            "last_query_at": self.stats.last_query_at.isoformat()
            if self.stats.last_query_at
            else None,
        }
