import tracemalloc
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, select

from safcrud import SafCrudApi
from safcrud.monitor import Monitor, OperationScope, QueryRecord, performance_metrics, query_metrics, slow_queries

from conftest import create_app
from demo_models import MODELS, db


@pytest.fixture
def monitored_app(tmp_path):
    app = create_app(
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'catalogue.db'}",
        ENABLE_MONITORING=True,
        SLOW_QUERY_THRESHOLD_MS=0,
        MONITOR_TRACE_MEMORY=True,
    )
    with app.app_context():
        db.create_all()
        api = SafCrudApi(app, db=db)
        api.expose(*MODELS)
        yield app
        api.monitor.uninstall()
        db.session.remove()
        db.drop_all()


def _rows(table):
    with db.engine.connect() as connection:
        return [row._mapping for row in connection.execute(select(table).order_by(table.c.id))]


def test_operations_are_recorded(monitored_app) -> None:
    client = monitored_app.test_client()

    assert client.post("/api/categories", json={"name": "Tools"}).status_code == 201
    assert client.get("/api/categories").status_code == 200
    assert client.get("/api/categories/999").status_code == 404

    metrics = _rows(performance_metrics)
    assert [(row["model"], row["action"]) for row in metrics] == [("Category", "store"), ("Category", "index"), ("Category", "show")]
    assert all(row["duration_ms"] >= 0 for row in metrics)
    assert all(row["memory_bytes"] is not None for row in metrics)


def test_query_statistics(monitored_app) -> None:
    client = monitored_app.test_client()
    client.get("/api/tags")
    client.get("/api/tags")

    stats = _rows(query_metrics)
    assert stats
    assert len({row["query_hash"] for row in stats}) == len(stats)
    assert max(row["count"] for row in stats) >= 2
    # every statement exceeds a zero threshold
    slow = _rows(slow_queries)
    assert {row["action"] for row in slow} == {"index"}
    assert {row["query_hash"] for row in slow} <= {row["query_hash"] for row in stats}


def test_monitor_is_disabled_by_default(api) -> None:
    assert api.monitor is None


def test_aggregate() -> None:
    queries = [QueryRecord("SELECT 1", 2.0), QueryRecord("SELECT 2", 1.0), QueryRecord("SELECT 1", 5.0)]

    stats = Monitor._aggregate(queries)

    assert stats[queries[0].query_hash] == {"sql": "SELECT 1", "count": 2, "total": 7.0, "max": 5.0}
    assert stats[queries[1].query_hash]["count"] == 1


def test_failing_metrics_writer_is_logged() -> None:
    def begin():
        raise RuntimeError("metrics database unavailable")

    monitor = Monitor(SimpleNamespace(begin=begin), slow_query_threshold_ms=10, trace_memory=False)

    # doesn't raise
    monitor.record(OperationScope("Product", "store", [QueryRecord("SELECT 1", 50.0)]), 60.0, None)


def test_nested_operations_share_the_outer_scope() -> None:
    recorded = []
    monitor = Monitor(None, slow_query_threshold_ms=10, trace_memory=False)
    monitor.record = lambda scope, duration_ms, memory_bytes: recorded.append(scope)

    with monitor.operation("Product", "store") as outer:
        with monitor.operation("Review", "store") as inner:
            assert inner is outer

    assert recorded == [outer]
    assert outer.model == "Product"


@pytest.fixture
def fake_tracemalloc(monkeypatch: pytest.MonkeyPatch):
    state = SimpleNamespace(tracing=False, calls=[], traced=iter([(1000, 5000), (1400, 9000)]))

    def start(*args):
        state.calls.append("start")
        state.tracing = True

    def stop():
        state.calls.append("stop")
        state.tracing = False

    monkeypatch.setattr(tracemalloc, "start", start)
    monkeypatch.setattr(tracemalloc, "stop", stop)
    monkeypatch.setattr(tracemalloc, "reset_peak", lambda: state.calls.append("reset_peak"))
    monkeypatch.setattr(tracemalloc, "is_tracing", lambda: state.tracing)
    monkeypatch.setattr(tracemalloc, "get_traced_memory", lambda: next(state.traced))
    return state


def test_memory_tracing_is_started_once_per_process(fake_tracemalloc) -> None:
    monitor = Monitor(create_engine("sqlite://"), slow_query_threshold_ms=10, trace_memory=True)

    monitor.install()
    monitor.install()
    assert fake_tracemalloc.calls == ["start"]

    monitor.uninstall()
    assert fake_tracemalloc.calls == ["start", "stop"]


def test_memory_tracing_started_elsewhere_is_left_running(fake_tracemalloc) -> None:
    fake_tracemalloc.tracing = True
    monitor = Monitor(create_engine("sqlite://"), slow_query_threshold_ms=10, trace_memory=True)

    monitor.install()
    monitor.uninstall()

    assert fake_tracemalloc.calls == []
    assert fake_tracemalloc.tracing is True


def test_operation_records_the_memory_growth(fake_tracemalloc) -> None:
    fake_tracemalloc.tracing = True
    recorded = []
    monitor = Monitor(None, slow_query_threshold_ms=10, trace_memory=True)
    monitor.record = lambda scope, duration_ms, memory_bytes: recorded.append(memory_bytes)

    with monitor.operation("Product", "index"):
        pass

    # the current traced size, not the process wide peak
    assert recorded == [400]
    assert fake_tracemalloc.calls == []


def test_operation_without_tracing(fake_tracemalloc) -> None:
    recorded = []
    monitor = Monitor(None, slow_query_threshold_ms=10, trace_memory=True)
    monitor.record = lambda scope, duration_ms, memory_bytes: recorded.append(memory_bytes)

    with monitor.operation("Product", "index"):
        pass

    assert recorded == [None]
    assert fake_tracemalloc.calls == []
