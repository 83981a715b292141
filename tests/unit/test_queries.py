"""Tests for the statement layer, run against the SQLite executor."""

import asyncio
import re
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest
from trace_sql_adapter.errors import NotFound
from trace_sql_adapter.mapping import encode_trace_id
from trace_sql_adapter.models import KeyValue, StorageSpanKind, TraceID
from trace_sql_adapter.sql.queries import FindTraceIDsParams, InsertSpanParams, format_tags
from trace_sql_adapter.sql.statements import POSTGRES, SQLITE, statements_for

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
UTC = timezone.utc


def _placeholders(sql: str, marker: str) -> set[int]:
    return {int(n) for n in re.findall(re.escape(marker) + r"(\d+)", sql)}


async def _seed(store, make_span):
    """Four traces with distinct services, tags and timings."""
    await store.write_span(
        make_span(1, service="frontend", operation="GET /", tags=[KeyValue.string("env", "prod")])
    )
    await store.write_span(
        make_span(
            2,
            service="backend",
            operation="query",
            start=T0 + timedelta(minutes=1),
            duration=timedelta(milliseconds=50),
            tags=[KeyValue.string("env", "dev"), KeyValue.int64("http.status_code", 200)],
        )
    )
    await store.write_span(
        make_span(
            3,
            service="backend",
            operation="query",
            start=T0 + timedelta(minutes=2),
            duration=timedelta(seconds=2),
            process_tags=[KeyValue.string("env", "prod")],
        )
    )
    await store.write_span(
        make_span(
            4,
            service="worker",
            operation="consume",
            start=T0 + timedelta(minutes=3),
            tags=[KeyValue.string("env", "prod"), KeyValue.string("region", "eu")],
        )
    )


async def _find(queries, **kwargs) -> set[int]:
    raw = await queries.find_trace_ids(FindTraceIDsParams(**kwargs))
    return {int.from_bytes(trace_id[8:], "little") for trace_id in raw}


# ------------------------------------------------------------------
# Statement text
# ------------------------------------------------------------------


class TestStatements:
    def test_find_trace_ids_has_fifteen_params(self):
        assert _placeholders(POSTGRES.find_trace_ids, "$") == set(range(1, 16))
        assert _placeholders(SQLITE.find_trace_ids, "?") == set(range(1, 16))

    def test_insert_span_has_fourteen_params(self):
        assert _placeholders(POSTGRES.insert_span, "$") == set(range(1, 15))
        assert _placeholders(SQLITE.insert_span, "?") == set(range(1, 15))

    def test_soft_disable_predicates(self):
        for flag in (2, 4, 6, 8, 10, 12):
            assert f"OR ${flag}::BOOLEAN = FALSE" in POSTGRES.find_trace_ids
        assert "$14::BOOLEAN = FALSE OR" in POSTGRES.find_trace_ids
        assert "@> $13::JSONB" in POSTGRES.find_trace_ids

    def test_statements_for(self):
        assert statements_for("postgres") is POSTGRES
        assert statements_for("sqlite") is SQLITE
        with pytest.raises(ValueError):
            statements_for("mysql")


# ------------------------------------------------------------------
# Parameter models
# ------------------------------------------------------------------


class TestParams:
    def test_format_tags(self):
        assert format_tags({"env": "prod"}) == '[{"Key":"env","Value":"prod"}]'
        assert format_tags({}) == "[]"

    def test_find_args_order(self):
        params = FindTraceIDsParams(
            service_name="svc",
            service_name_enable_filter=True,
            start_time_minimum=datetime(2024, 1, 1, 1, tzinfo=timezone(timedelta(hours=1))),
            start_time_minimum_enable_filter=True,
            duration_maximum=timedelta(seconds=1),
            duration_maximum_enable_filter=True,
            tags={"env": "prod"},
            tags_enable_filter=True,
            num_traces=5,
        )
        assert params.as_args() == (
            "svc",
            True,
            "",
            False,
            datetime(2024, 1, 1),
            True,
            None,
            False,
            None,
            False,
            timedelta(seconds=1),
            True,
            '[{"Key":"env","Value":"prod"}]',
            True,
            5,
        )

    def test_num_traces_must_be_positive(self):
        with pytest.raises(ValueError):
            FindTraceIDsParams(num_traces=0)

    def test_insert_args(self):
        params = InsertSpanParams(
            span_id=b"\x01" * 8,
            trace_id=b"\x02" * 16,
            operation_id=3,
            start_time=datetime(2024, 1, 1, tzinfo=UTC),
            duration=timedelta(microseconds=1, milliseconds=2),
            service_id=4,
            warnings=["clock skew"],
            kind=StorageSpanKind.CLIENT,
        )
        args = params.as_args()
        assert len(args) == 14
        assert args[4] == datetime(2024, 1, 1)
        assert args[5] == timedelta(microseconds=2001)
        assert args[10] == ["clock skew"]
        assert args[11] == "client"
        assert args[12:] == ("[]", "[]")


# ------------------------------------------------------------------
# Services and operations
# ------------------------------------------------------------------


class TestServicesAndOperations:
    @pytest.mark.asyncio
    async def test_upsert_service_is_idempotent(self, queries):
        await queries.upsert_service("frontend")
        first = await queries.get_service_id("frontend")
        await queries.upsert_service("frontend")
        assert await queries.get_service_id("frontend") == first
        assert await queries.get_services() == ["frontend"]

    @pytest.mark.asyncio
    async def test_concurrent_upserts_leave_one_row(self, queries):
        await asyncio.gather(*(queries.upsert_service("frontend") for _ in range(10)))
        assert await queries.get_services() == ["frontend"]

    @pytest.mark.asyncio
    async def test_get_service_id_not_found(self, queries):
        with pytest.raises(NotFound):
            await queries.get_service_id("missing")

    @pytest.mark.asyncio
    async def test_operation_identity_includes_kind(self, queries):
        await queries.upsert_service("frontend")
        service_id = await queries.get_service_id("frontend")

        await queries.upsert_operation("GET /", service_id, StorageSpanKind.SERVER)
        await queries.upsert_operation("GET /", service_id, StorageSpanKind.SERVER)
        await queries.upsert_operation("GET /", service_id, StorageSpanKind.CLIENT)

        server_id = await queries.get_operation_id("GET /", service_id, StorageSpanKind.SERVER)
        client_id = await queries.get_operation_id("GET /", service_id, StorageSpanKind.CLIENT)
        assert server_id != client_id

        with pytest.raises(NotFound):
            await queries.get_operation_id("GET /", service_id, StorageSpanKind.PRODUCER)

        ops = await queries.get_operations("frontend")
        assert sorted((op.name, op.kind) for op in ops) == [("GET /", "client"), ("GET /", "server")]

    @pytest.mark.asyncio
    async def test_operations_of_unknown_service(self, queries):
        assert await queries.get_operations("missing") == []


# ------------------------------------------------------------------
# Spans
# ------------------------------------------------------------------


class TestSpans:
    @pytest.mark.asyncio
    async def test_duplicate_insert_raises(self, store, make_span):
        await store.write_span(make_span(1))
        with pytest.raises(sqlite3.IntegrityError):
            await store.write_span(make_span(1))
        assert await store.queries.get_spans_count() == 1

    @pytest.mark.asyncio
    async def test_get_trace_spans_row(self, store, make_span):
        await store.write_span(make_span(1, warnings=["late"]))
        rows = await store.queries.get_trace_spans(encode_trace_id(TraceID(high=0, low=1)))
        assert len(rows) == 1
        row = rows[0]
        assert row.operation_name == "GET /"
        assert row.process_name == "frontend"
        assert row.start_time == T0
        assert row.duration == timedelta(milliseconds=5)
        assert row.warnings == ["late"]
        assert row.kind == "unspecified"

    @pytest.mark.asyncio
    async def test_get_trace_spans_empty(self, queries):
        assert await queries.get_trace_spans(b"\x00" * 16) == []

    @pytest.mark.asyncio
    async def test_clean_spans(self, store, make_span):
        await _seed(store, make_span)
        deleted = await store.queries.clean_spans(T0 + timedelta(minutes=2))
        assert deleted == 2
        assert await store.queries.get_spans_count() == 2

    @pytest.mark.asyncio
    async def test_aggregates(self, store, make_span):
        assert await store.queries.get_spans_count() == 0
        await _seed(store, make_span)
        assert await store.queries.get_spans_count() == 4
        assert await store.queries.get_spans_disk_size() > 0


# ------------------------------------------------------------------
# Trace search
# ------------------------------------------------------------------


class TestFindTraceIDs:
    @pytest.mark.asyncio
    async def test_all_filters_off_matches_everything(self, store, make_span):
        await _seed(store, make_span)
        # Placeholder values of disabled filters must not constrain anything.
        assert await _find(
            store.queries,
            service_name="nobody",
            operation_name="nothing",
            start_time_minimum=T0 + timedelta(days=1),
            duration_maximum=timedelta(0),
            tags={"env": "staging"},
        ) == {1, 2, 3, 4}

    @pytest.mark.asyncio
    async def test_tag_filter_only(self, store, make_span):
        await _seed(store, make_span)
        assert await _find(store.queries, tags={"env": "prod"}, tags_enable_filter=True) == {1, 3, 4}

    @pytest.mark.asyncio
    async def test_tag_filter_requires_every_pair(self, store, make_span):
        await _seed(store, make_span)
        tags = {"env": "prod", "region": "eu"}
        assert await _find(store.queries, tags=tags, tags_enable_filter=True) == {4}

    @pytest.mark.asyncio
    async def test_tag_filter_ignores_stored_type(self, store, make_span):
        await _seed(store, make_span)
        tags = {"http.status_code": "200"}
        assert await _find(store.queries, tags=tags, tags_enable_filter=True) == {2}

    @pytest.mark.asyncio
    async def test_service_and_operation(self, store, make_span):
        await _seed(store, make_span)
        assert await _find(store.queries, service_name="backend", service_name_enable_filter=True) == {2, 3}
        assert await _find(
            store.queries,
            service_name="backend",
            service_name_enable_filter=True,
            operation_name="query",
            operation_name_enable_filter=True,
            tags={"env": "prod"},
            tags_enable_filter=True,
        ) == {3}

    @pytest.mark.asyncio
    async def test_start_time_bounds_are_inclusive(self, store, make_span):
        await _seed(store, make_span)
        assert await _find(
            store.queries,
            start_time_minimum=T0 + timedelta(minutes=1),
            start_time_minimum_enable_filter=True,
            start_time_maximum=T0 + timedelta(minutes=2),
            start_time_maximum_enable_filter=True,
        ) == {2, 3}

    @pytest.mark.asyncio
    async def test_duration_bounds(self, store, make_span):
        await _seed(store, make_span)
        assert await _find(
            store.queries, duration_minimum=timedelta(milliseconds=50), duration_minimum_enable_filter=True
        ) == {2, 3}
        assert await _find(
            store.queries, duration_maximum=timedelta(milliseconds=50), duration_maximum_enable_filter=True
        ) == {1, 2, 4}

    @pytest.mark.asyncio
    async def test_limit(self, store, make_span):
        await _seed(store, make_span)
        assert len(await _find(store.queries, num_traces=2)) == 2

    @pytest.mark.asyncio
    async def test_trace_ids_are_distinct(self, store, make_span):
        await store.write_span(make_span(7, span_id=1))
        await store.write_span(make_span(7, span_id=2))
        raw = await store.queries.find_trace_ids(FindTraceIDsParams())
        assert raw == [encode_trace_id(TraceID(high=0, low=7))]
