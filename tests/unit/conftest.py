"""Shared fixtures for trace-sql-adapter tests."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from trace_sql_adapter.models import KeyValue, Log, Process, Span, SpanRef, TraceID
from trace_sql_adapter.sql.queries import Queries
from trace_sql_adapter.sql.sqlite import SqliteExecutor
from trace_sql_adapter.store import SpanStore

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


# ------------------------------------------------------------------
# Span factory
# ------------------------------------------------------------------


def build_span(
    trace: int = 1,
    span_id: int = 1,
    *,
    service: str = "frontend",
    operation: str = "GET /",
    start: datetime = T0,
    duration: timedelta = timedelta(milliseconds=5),
    tags: list[KeyValue] | None = None,
    process_tags: list[KeyValue] | None = None,
    logs: list[Log] | None = None,
    refs: list[SpanRef] | None = None,
    warnings: list[str] | None = None,
) -> Span:
    return Span(
        trace_id=TraceID(high=0, low=trace),
        span_id=span_id,
        operation_name=operation,
        references=refs or [],
        start_time=start,
        duration=duration,
        tags=tags or [],
        logs=logs or [],
        process=Process(service_name=service, tags=process_tags or []),
        process_id="p1",
        warnings=warnings or [],
    )


@pytest.fixture
def make_span():
    return build_span


# ------------------------------------------------------------------
# Database fixtures
# ------------------------------------------------------------------


@pytest_asyncio.fixture
async def executor(tmp_path):
    ex = SqliteExecutor(db_path=str(tmp_path / "spans.db"))
    yield ex
    await ex.close()


@pytest.fixture
def queries(executor: SqliteExecutor) -> Queries:
    return Queries(executor)


@pytest.fixture
def store(executor: SqliteExecutor) -> SpanStore:
    return SpanStore(executor)
