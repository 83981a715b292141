"""Span reader/writer composed from the codecs and the SQL queries.

This is the surface a storage-plugin server calls with already-deserialized
spans; it owns no state besides the executor it was given.
"""

import logging
from datetime import datetime, timedelta, timezone

from trace_sql_adapter.errors import NotFound
from trace_sql_adapter.mapping import (
    decode_logs,
    decode_span_id,
    decode_span_refs,
    decode_tags,
    decode_trace_id,
    encode_logs,
    encode_span_id,
    encode_span_kind,
    encode_span_refs,
    encode_tags,
    encode_trace_id,
)
from trace_sql_adapter.models import (
    Operation,
    Process,
    Span,
    StorageSpanKind,
    StoreConfig,
    Trace,
    TraceID,
    TraceQueryParameters,
)
from trace_sql_adapter.sql.base import Executor
from trace_sql_adapter.sql.queries import FindTraceIDsParams, InsertSpanParams, Queries, SpanRow

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Span <-> row
# ------------------------------------------------------------------


def encode_span(span: Span, service_id: int, operation_id: int, kind: StorageSpanKind) -> InsertSpanParams:
    return InsertSpanParams(
        span_id=encode_span_id(span.span_id),
        trace_id=encode_trace_id(span.trace_id),
        operation_id=operation_id,
        flags=span.flags,
        start_time=span.start_time,
        duration=span.duration,
        tags=encode_tags(span.tags),
        service_id=service_id,
        process_id=span.process_id,
        process_tags=encode_tags(span.process.tags),
        warnings=span.warnings,
        kind=kind,
        logs=encode_logs(span.logs),
        refs=encode_span_refs(span.references),
    )


def decode_span(row: SpanRow) -> Span:
    """Rebuild a span from a stored row.  Raises a ``DecodeError`` subclass on bad payloads."""
    return Span(
        trace_id=decode_trace_id(row.trace_id),
        span_id=decode_span_id(row.span_id),
        operation_name=row.operation_name,
        references=decode_span_refs(row.refs),
        flags=row.flags,
        start_time=row.start_time,
        duration=row.duration,
        tags=decode_tags(row.tags),
        logs=decode_logs(row.logs),
        process=Process(service_name=row.process_name, tags=decode_tags(row.process_tags)),
        process_id=row.process_id,
        warnings=row.warnings,
    )


def build_find_params(query: TraceQueryParameters, default_num_traces: int) -> FindTraceIDsParams:
    """Turn search filters into (value, enabled) pairs for the trace search statement."""
    return FindTraceIDsParams(
        service_name=query.service_name or "",
        service_name_enable_filter=bool(query.service_name),
        operation_name=query.operation_name or "",
        operation_name_enable_filter=bool(query.operation_name),
        start_time_minimum=query.start_time_min,
        start_time_minimum_enable_filter=query.start_time_min is not None,
        start_time_maximum=query.start_time_max,
        start_time_maximum_enable_filter=query.start_time_max is not None,
        duration_minimum=query.duration_min,
        duration_minimum_enable_filter=query.duration_min is not None,
        duration_maximum=query.duration_max,
        duration_maximum_enable_filter=query.duration_max is not None,
        tags=query.tags,
        tags_enable_filter=bool(query.tags),
        num_traces=query.num_traces if query.num_traces > 0 else default_num_traces,
    )


# ------------------------------------------------------------------
# Store
# ------------------------------------------------------------------


class SpanStore:
    """Writes spans and answers trace queries over an :class:`Executor`."""

    def __init__(
        self,
        executor: Executor,
        default_num_traces: int = 20,
        max_span_age: timedelta = timedelta(hours=24),
    ) -> None:
        self.executor = executor
        self.queries = Queries(executor)
        self.default_num_traces = default_num_traces
        self.max_span_age = max_span_age

    # -- Writes ------------------------------------------------------------

    async def write_span(self, span: Span) -> None:
        """Insert a span, creating its service and operation rows if needed.

        Inserting the same span twice surfaces the driver's unique violation.
        """
        service_name = span.process.service_name
        kind = encode_span_kind(span.kind())

        await self.queries.upsert_service(service_name)
        service_id = await self.queries.get_service_id(service_name)
        await self.queries.upsert_operation(span.operation_name, service_id, kind)
        operation_id = await self.queries.get_operation_id(span.operation_name, service_id, kind)

        await self.queries.insert_span(encode_span(span, service_id, operation_id, kind))
        logger.debug("Stored span %016x of trace %s (%s/%s)", span.span_id, span.trace_id, service_name, span.operation_name)

    async def purge(self, before: datetime) -> int:
        """Delete every span that started strictly before ``before``."""
        deleted = await self.queries.clean_spans(before)
        logger.info("Purged %d spans older than %s", deleted, before.isoformat())
        return deleted

    async def purge_older_than(self, max_age: timedelta | None = None, now: datetime | None = None) -> int:
        """Delete spans older than ``max_age``, the store's ``max_span_age`` by default."""
        if max_age is None:
            max_age = self.max_span_age
        now = now or datetime.now(timezone.utc)
        return await self.purge(now - max_age)

    # -- Reads -------------------------------------------------------------

    async def get_trace(self, trace_id: TraceID) -> Trace:
        rows = await self.queries.get_trace_spans(encode_trace_id(trace_id))
        if not rows:
            raise NotFound(f"Trace {trace_id} not found")
        return Trace(spans=[decode_span(row) for row in rows])

    async def find_trace_ids(self, query: TraceQueryParameters) -> list[TraceID]:
        params = build_find_params(query, self.default_num_traces)
        raw_ids = await self.queries.find_trace_ids(params)
        logger.debug("Trace search matched %d traces (limit %d)", len(raw_ids), params.num_traces)
        return [decode_trace_id(raw) for raw in raw_ids]

    async def find_traces(self, query: TraceQueryParameters) -> list[Trace]:
        traces: list[Trace] = []
        for trace_id in await self.find_trace_ids(query):
            try:
                traces.append(await self.get_trace(trace_id))
            except NotFound:
                # Purged between the search and the fetch.
                logger.debug("Trace %s disappeared during search", trace_id)
        return traces

    async def get_services(self) -> list[str]:
        return await self.queries.get_services()

    async def get_operations(self, service_name: str, span_kind: str | None = None) -> list[Operation]:
        rows = await self.queries.get_operations(service_name)
        return [Operation(name=row.name, span_kind=row.kind) for row in rows if not span_kind or row.kind == span_kind]

    async def spans_count(self) -> int:
        return await self.queries.get_spans_count()

    async def spans_disk_size(self) -> int:
        return await self.queries.get_spans_disk_size()

    async def close(self) -> None:
        await self.executor.close()


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------


def create_executor(config: StoreConfig) -> Executor:
    dialect = config.dialect
    if dialect == "sqlite":
        from trace_sql_adapter.sql.sqlite import SqliteExecutor

        return SqliteExecutor(db_path=config.db_path)
    elif dialect == "postgres":
        from trace_sql_adapter.sql.postgres import PostgresExecutor

        return PostgresExecutor(config.dsn, min_size=config.pool_min_size, max_size=config.pool_max_size)
    else:
        raise ValueError(f"Unknown SQL dialect: {dialect}")


def create_store(config: StoreConfig | None = None) -> SpanStore:
    if config is None:
        config = StoreConfig()
    return SpanStore(
        create_executor(config),
        default_num_traces=config.default_num_traces,
        max_span_age=config.max_span_age,
    )
