"""
Telemetry API Client - Query metrics collector REST client

Supports:
- Raw execution samples and per-query aggregates
- Top CPU/memory and slow-query panels
- Explain-analyze requests
- Envelope normalization into typed failures
- Ephemeral TTL caching of GET responses
"""

from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx

from dbpulse.api.response_cache import ResponseCache
from dbpulse.core.config import Settings, get_settings
from dbpulse.core.exceptions import BackendRejectedError, NetworkFailureError
from dbpulse.core.logger import get_logger
from dbpulse.models.query_metrics_models import (
    AggregatedQueryStat,
    ExplainResult,
    RawExecutionSample,
)

logger = get_logger('api.telemetry')

T = TypeVar('T')


class TelemetryEndpoints:
    """Collector endpoint paths"""
    HEALTH = "/query-metrics/health"
    DATABASE_SAMPLES = "/query-metrics/database/{database_id}"
    EXECUTION_STATS = "/query-metrics/execution-stats"
    TOP_CPU = "/query-metrics/top/cpu"
    TOP_MEMORY = "/query-metrics/top/memory"
    SLOW = "/query-metrics/slow"
    EXPLAIN_ANALYZE = "/query-metrics/explain-analyze"


class TelemetryClient:
    """
    Async client for the telemetry collector

    Every call either returns typed rows or raises:
    - NetworkFailureError: transport error, timeout, HTTP error status or a
      body that is not a valid envelope
    - BackendRejectedError: the envelope reported ``success: false``

    Rows that fail to parse are skipped with a warning instead of failing
    the whole feed.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache: Optional[ResponseCache] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.base_url = (base_url or settings.api.base_url).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.api.timeout_seconds
        self._transport = transport
        if cache is None and settings.cache.enabled:
            cache = ResponseCache(
                ttl_seconds=settings.cache.ttl_seconds,
                max_entries=settings.cache.max_entries,
            )
        self._cache = cache

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------

    async def fetch_raw_samples(self, database_id: int) -> List[RawExecutionSample]:
        """Per-execution samples for one database"""
        path = TelemetryEndpoints.DATABASE_SAMPLES.format(database_id=database_id)
        rows = await self._get_list(path)
        return self._parse_rows(path, rows, RawExecutionSample.from_api)

    async def fetch_aggregated_stats(self, database_id: int, window_hours: int) -> List[AggregatedQueryStat]:
        """Per-query-hash aggregates within the reporting window"""
        path = TelemetryEndpoints.EXECUTION_STATS
        rows = await self._get_list(path, {"databaseId": database_id, "hours": window_hours})
        return self._parse_rows(path, rows, AggregatedQueryStat.from_api)

    async def fetch_top_by_cpu(self, limit: int = 10) -> List[RawExecutionSample]:
        path = TelemetryEndpoints.TOP_CPU
        rows = await self._get_list(path, {"limit": limit})
        return self._parse_rows(path, rows, RawExecutionSample.from_api)

    async def fetch_top_by_memory(self, limit: int = 10) -> List[RawExecutionSample]:
        path = TelemetryEndpoints.TOP_MEMORY
        rows = await self._get_list(path, {"limit": limit})
        return self._parse_rows(path, rows, RawExecutionSample.from_api)

    async def fetch_slow_queries(self, threshold_ms: int = 1000) -> List[RawExecutionSample]:
        path = TelemetryEndpoints.SLOW
        rows = await self._get_list(path, {"thresholdMs": threshold_ms})
        return self._parse_rows(path, rows, RawExecutionSample.from_api)

    async def explain_analyze(self, database_id: int, query: str) -> ExplainResult:
        """
        Request an execution-plan analysis

        The collector decides whether the statement is actually run
        (ANALYZE) or only estimated (ESTIMATE); the mode is reported back.
        """
        path = TelemetryEndpoints.EXPLAIN_ANALYZE
        logger.debug(f"Explain requested for database {database_id}, query length: {len(query)}")
        data = await self._request("POST", path, json={"databaseId": database_id, "query": query})
        if not isinstance(data, dict):
            raise NetworkFailureError("Malformed explain response", endpoint=path)
        return ExplainResult.from_api(data)

    async def check_health(self) -> bool:
        """Check whether the collector service is reachable"""
        url = f"{self.base_url}{TelemetryEndpoints.HEALTH}"
        try:
            async with self._client() as client:
                response = await client.get(url)
                response.raise_for_status()
                payload = response.json()
                return str(payload.get("status", "")).upper() in ("UP", "OK", "HEALTHY")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error(f"Collector health check failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Drop every cached response (database switch)"""
        if self._cache is not None:
            self._cache.clear()

    @property
    def cache(self) -> Optional[ResponseCache]:
        return self._cache

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _get_list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        key = ResponseCache.build_key(path, params)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit: {key}")
                return cached

        data = await self._request("GET", path, params=params)
        if data is None:
            data = []
        if not isinstance(data, list):
            raise NetworkFailureError("Malformed response: data is not a list", endpoint=path)

        if self._cache is not None:
            self._cache.set(key, data)
        return data

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, params=params, json=json)
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"{method} {path} timed out after {self.timeout}s")
            raise NetworkFailureError("Request timed out", endpoint=path) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"{method} {path} failed with HTTP {status}")
            raise NetworkFailureError(f"HTTP {status}", endpoint=path, status_code=status) from e
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise NetworkFailureError(f"Transport error: {e}", endpoint=path) from e
        except ValueError as e:
            logger.error(f"{method} {path} returned a non-JSON body")
            raise NetworkFailureError("Malformed response body", endpoint=path) from e

        return self._unwrap(path, payload)

    @staticmethod
    def _unwrap(path: str, payload: Any) -> Any:
        """Normalize the ``{success, data, message}`` envelope"""
        if not isinstance(payload, dict) or "success" not in payload:
            raise NetworkFailureError("Malformed response envelope", endpoint=path)

        if payload["success"] is not True:
            message = payload.get("message") or ""
            logger.warning(f"{path} rejected by backend: {message or '(no message)'}")
            raise BackendRejectedError(message, endpoint=path)

        return payload.get("data")

    @staticmethod
    def _parse_rows(path: str, rows: List[Any], factory: Callable[[Dict[str, Any]], T]) -> List[T]:
        parsed: List[T] = []
        skipped = 0
        for row in rows:
            if not isinstance(row, dict):
                skipped += 1
                continue
            try:
                parsed.append(factory(row))
            except (KeyError, ValueError, TypeError) as e:
                skipped += 1
                logger.debug(f"Skipping unparseable row from {path}: {e}")
        if skipped:
            logger.warning(f"{path}: skipped {skipped} of {len(rows)} unparseable rows")
        return parsed
