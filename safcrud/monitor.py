# Performance monitoring
#
# The monitor records, per controller operation:
# - safcrud_performance_metrics: duration and allocated memory of the operation
# - safcrud_query_metrics: aggregated statistics per distinct SQL statement (sha256 of the text)
# - safcrud_slow_queries: statements slower than SLOW_QUERY_THRESHOLD_MS
#
# The records are written through a separate connection once the operation has finished,
# so a rolled back operation still leaves its metrics behind.
# Memory is traced process wide (tracemalloc is started once by install), the memory_bytes of an
# operation is the growth of the traced memory while it ran: approximate when requests run concurrently.
# Monitoring failures are logged and never change the api response.
#
import datetime
import hashlib
import time
import tracemalloc
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional
from sqlalchemy import Column, DateTime, Float, Integer, MetaData, String, Table, Text, event, select
import safcrud
from .config import get_config

metadata = MetaData()

performance_metrics = Table(
    "safcrud_performance_metrics",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("model", String(255), nullable=False),
    Column("action", String(32), nullable=False),
    Column("duration_ms", Float, nullable=False),
    Column("memory_bytes", Integer),
    Column("created_at", DateTime, nullable=False),
)

query_metrics = Table(
    "safcrud_query_metrics",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("query_hash", String(64), nullable=False, unique=True),
    Column("sql", Text, nullable=False),
    Column("count", Integer, nullable=False, default=0),
    Column("total_duration_ms", Float, nullable=False, default=0),
    Column("max_duration_ms", Float, nullable=False, default=0),
    Column("last_seen_at", DateTime, nullable=False),
)

slow_queries = Table(
    "safcrud_slow_queries",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("query_hash", String(64), nullable=False),
    Column("sql", Text, nullable=False),
    Column("duration_ms", Float, nullable=False),
    Column("model", String(255)),
    Column("action", String(32)),
    Column("created_at", DateTime, nullable=False),
)


@dataclass
class QueryRecord:
    sql: str
    duration_ms: float

    @property
    def query_hash(self) -> str:
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()


@dataclass
class OperationScope:
    model: str
    action: str
    queries: List[QueryRecord] = field(default_factory=list)


_SCOPE: ContextVar[Optional[OperationScope]] = ContextVar("safcrud_monitor_scope", default=None)


class Monitor:
    """
    Records operation and query metrics in the safcrud_* tables

    :param engine: sqlalchemy engine of the monitored session
    :param slow_query_threshold_ms: statements slower than this are stored as slow queries
    :param trace_memory: measure the allocated memory with tracemalloc
    """

    def __init__(self, engine, slow_query_threshold_ms: Optional[float] = None, trace_memory: Optional[bool] = None) -> None:
        self.engine = engine
        self.slow_query_threshold_ms = float(
            slow_query_threshold_ms if slow_query_threshold_ms is not None else get_config("SLOW_QUERY_THRESHOLD_MS")
        )
        self.trace_memory = bool(trace_memory if trace_memory is not None else get_config("MONITOR_TRACE_MEMORY"))
        self._installed = False
        self._started_tracing = False

    def install(self) -> "Monitor":
        """
        Create the tables and start listening to the engine statements
        """
        if self._installed:
            return self
        metadata.create_all(self.engine)
        event.listen(self.engine, "before_cursor_execute", self._before_cursor_execute)
        event.listen(self.engine, "after_cursor_execute", self._after_cursor_execute)
        if self.trace_memory and not tracemalloc.is_tracing():
            tracemalloc.start()
            self._started_tracing = True
        self._installed = True
        return self

    def uninstall(self) -> None:
        if not self._installed:
            return
        event.remove(self.engine, "before_cursor_execute", self._before_cursor_execute)
        event.remove(self.engine, "after_cursor_execute", self._after_cursor_execute)
        if self._started_tracing:
            tracemalloc.stop()
            self._started_tracing = False
        self._installed = False

    @staticmethod
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
        if _SCOPE.get() is None:
            return
        conn.info.setdefault("safcrud_query_start", []).append(time.perf_counter())

    @staticmethod
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
        scope = _SCOPE.get()
        start_times = conn.info.get("safcrud_query_start")
        if scope is None or not start_times:
            return
        duration_ms = (time.perf_counter() - start_times.pop()) * 1000
        scope.queries.append(QueryRecord(statement, duration_ms))

    @contextmanager
    def operation(self, model: str, action: str) -> Iterator[OperationScope]:
        """
        Measure the enclosed controller operation, the metrics are written when it exits (also on failure)
        """
        if _SCOPE.get() is not None:
            # nested operations are measured by the outer scope
            yield _SCOPE.get()
            return

        scope = OperationScope(model, action)
        token = _SCOPE.set(scope)
        trace_memory = self.trace_memory and tracemalloc.is_tracing()
        memory_start = tracemalloc.get_traced_memory()[0] if trace_memory else 0
        start = time.perf_counter()
        try:
            yield scope
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            memory_bytes = None
            if trace_memory:
                memory_bytes = max(tracemalloc.get_traced_memory()[0] - memory_start, 0)
            _SCOPE.reset(token)
            self.record(scope, duration_ms, memory_bytes)

    def record(self, scope: OperationScope, duration_ms: float, memory_bytes: Optional[int]) -> None:
        """
        Write the metrics of a finished operation
        """
        now = datetime.datetime.now(datetime.timezone.utc)
        slow = [query for query in scope.queries if query.duration_ms > self.slow_query_threshold_ms]
        for query in slow:
            safcrud.log.warning(f"Slow query ({query.duration_ms:.1f} ms) for {scope.model}.{scope.action}: {query.sql}")

        try:
            with self.engine.begin() as connection:
                connection.execute(
                    performance_metrics.insert().values(
                        model=scope.model, action=scope.action, duration_ms=duration_ms, memory_bytes=memory_bytes, created_at=now
                    )
                )
                for query_hash, stats in self._aggregate(scope.queries).items():
                    self._upsert_query_metric(connection, query_hash, stats, now)
                for query in slow:
                    connection.execute(
                        slow_queries.insert().values(
                            query_hash=query.query_hash,
                            sql=query.sql,
                            duration_ms=query.duration_ms,
                            model=scope.model,
                            action=scope.action,
                            created_at=now,
                        )
                    )
        except Exception as exc:
            safcrud.log.exception(exc)
            safcrud.log.error(f"Failed to write the metrics of {scope.model}.{scope.action}")

    @staticmethod
    def _aggregate(queries: List[QueryRecord]) -> Dict[str, Dict[str, Any]]:
        result = {}
        for query in queries:
            stats = result.setdefault(query.query_hash, {"sql": query.sql, "count": 0, "total": 0.0, "max": 0.0})
            stats["count"] += 1
            stats["total"] += query.duration_ms
            stats["max"] = max(stats["max"], query.duration_ms)
        return result

    @staticmethod
    def _upsert_query_metric(connection, query_hash: str, stats: Dict[str, Any], now: datetime.datetime) -> None:
        row = connection.execute(select(query_metrics).where(query_metrics.c.query_hash == query_hash)).first()
        if row is None:
            connection.execute(
                query_metrics.insert().values(
                    query_hash=query_hash,
                    sql=stats["sql"],
                    count=stats["count"],
                    total_duration_ms=stats["total"],
                    max_duration_ms=stats["max"],
                    last_seen_at=now,
                )
            )
            return
        connection.execute(
            query_metrics.update()
            .where(query_metrics.c.query_hash == query_hash)
            .values(
                count=row._mapping["count"] + stats["count"],
                total_duration_ms=row._mapping["total_duration_ms"] + stats["total"],
                max_duration_ms=max(row._mapping["max_duration_ms"], stats["max"]),
                last_seen_at=now,
            )
        )
