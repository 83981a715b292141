"""Typed wrappers around the statement set of an executor's dialect."""

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, field_validator

from trace_sql_adapter.errors import NotFound
from trace_sql_adapter.mapping import encode_interval, encode_timestamp
from trace_sql_adapter.models import StorageSpanKind, as_utc
from trace_sql_adapter.sql.base import Executor
from trace_sql_adapter.sql.statements import statements_for

logger = logging.getLogger(__name__)


def format_tags(tags: dict[str, str]) -> str:
    """Tag filter as a JSON array of ``{"Key", "Value"}`` objects.

    The objects are a subset of the stored tag shape, so the filter matches
    through JSON containment regardless of the stored ``Type``.
    """
    return json.dumps([{"Key": key, "Value": value} for key, value in tags.items()], separators=(",", ":"))


# ------------------------------------------------------------------
# Parameter and row models
# ------------------------------------------------------------------


class InsertSpanParams(BaseModel):
    span_id: bytes
    trace_id: bytes
    operation_id: int
    flags: int = 0
    start_time: datetime
    duration: timedelta
    tags: str = "[]"
    service_id: int
    process_id: str = ""
    process_tags: str = "[]"
    warnings: list[str] = Field(default_factory=list)
    kind: StorageSpanKind = StorageSpanKind.UNSPECIFIED
    logs: str = "[]"
    refs: str = "[]"

    def as_args(self) -> tuple[Any, ...]:
        return (
            self.span_id,
            self.trace_id,
            self.operation_id,
            self.flags,
            encode_timestamp(self.start_time),
            encode_interval(self.duration),
            self.tags,
            self.service_id,
            self.process_id,
            self.process_tags,
            list(self.warnings),
            self.kind.value,
            self.logs,
            self.refs,
        )


class FindTraceIDsParams(BaseModel):
    """Trace search arguments: every optional filter is a (value, enabled) pair."""

    service_name: str = ""
    service_name_enable_filter: bool = False
    operation_name: str = ""
    operation_name_enable_filter: bool = False
    start_time_minimum: datetime | None = None
    start_time_minimum_enable_filter: bool = False
    start_time_maximum: datetime | None = None
    start_time_maximum_enable_filter: bool = False
    duration_minimum: timedelta | None = None
    duration_minimum_enable_filter: bool = False
    duration_maximum: timedelta | None = None
    duration_maximum_enable_filter: bool = False
    tags: dict[str, str] = Field(default_factory=dict)
    tags_enable_filter: bool = False
    num_traces: int = Field(default=20, gt=0)

    def as_args(self) -> tuple[Any, ...]:
        """The 15 positional arguments of the trace search statement."""

        def ts(value: datetime | None) -> datetime | None:
            return None if value is None else encode_timestamp(value)

        def iv(value: timedelta | None) -> timedelta | None:
            return None if value is None else encode_interval(value)

        return (
            self.service_name,
            self.service_name_enable_filter,
            self.operation_name,
            self.operation_name_enable_filter,
            ts(self.start_time_minimum),
            self.start_time_minimum_enable_filter,
            ts(self.start_time_maximum),
            self.start_time_maximum_enable_filter,
            iv(self.duration_minimum),
            self.duration_minimum_enable_filter,
            iv(self.duration_maximum),
            self.duration_maximum_enable_filter,
            format_tags(self.tags),
            self.tags_enable_filter,
            self.num_traces,
        )


class SpanRow(BaseModel):
    """One row of the trace spans query, JSON payloads still encoded."""

    span_id: bytes
    trace_id: bytes
    operation_name: str
    flags: int
    start_time: datetime
    duration: timedelta
    tags: str | bytes
    process_id: str
    warnings: list[str] = Field(default_factory=list)
    kind: str
    process_name: str
    process_tags: str | bytes
    logs: str | bytes
    refs: str | bytes

    @field_validator("start_time")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("duration", mode="before")
    @classmethod
    def parse_micros(cls, value: Any) -> Any:
        # SQLite stores intervals as integer microseconds.
        if isinstance(value, int) and not isinstance(value, bool):
            return timedelta(microseconds=value)
        return value

    @field_validator("warnings", mode="before")
    @classmethod
    def parse_warnings(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return json.loads(value)
        return value


class OperationRow(BaseModel):
    name: str
    kind: str


# ------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------


class Queries:
    """One method per statement, bound to an :class:`Executor`."""

    def __init__(self, executor: Executor) -> None:
        self.executor = executor
        self.sql = statements_for(executor.dialect)

    async def upsert_service(self, name: str) -> None:
        await self.executor.execute(self.sql.upsert_service, name)

    async def get_service_id(self, name: str) -> int:
        row = await self.executor.fetchrow(self.sql.get_service_id, name)
        if row is None:
            raise NotFound(f"Service {name!r} not found")
        return row["id"]

    async def upsert_operation(self, name: str, service_id: int, kind: StorageSpanKind) -> None:
        await self.executor.execute(self.sql.upsert_operation, name, service_id, kind.value)

    async def get_operation_id(self, name: str, service_id: int, kind: StorageSpanKind) -> int:
        row = await self.executor.fetchrow(self.sql.get_operation_id, name, service_id, kind.value)
        if row is None:
            raise NotFound(f"Operation {name!r} ({kind.value}) not found for service {service_id}")
        return row["id"]

    async def insert_span(self, params: InsertSpanParams) -> None:
        await self.executor.execute(self.sql.insert_span, *params.as_args())

    async def get_trace_spans(self, trace_id: bytes) -> list[SpanRow]:
        return [SpanRow(**row) async for row in self.executor.iterate(self.sql.get_trace_spans, trace_id)]

    async def find_trace_ids(self, params: FindTraceIDsParams) -> list[bytes]:
        return [row["trace_id"] async for row in self.executor.iterate(self.sql.find_trace_ids, *params.as_args())]

    async def get_services(self) -> list[str]:
        return [row["name"] async for row in self.executor.iterate(self.sql.get_services)]

    async def get_operations(self, service_name: str) -> list[OperationRow]:
        return [OperationRow(**row) async for row in self.executor.iterate(self.sql.get_operations, service_name)]

    async def clean_spans(self, prune_before: datetime) -> int:
        deleted = await self.executor.execute(self.sql.clean_spans, encode_timestamp(prune_before))
        logger.debug("Deleted %d spans started before %s", deleted, prune_before.isoformat())
        return deleted

    async def get_spans_count(self) -> int:
        row = await self.executor.fetchrow(self.sql.get_spans_count)
        return int(row["count"]) if row is not None else 0

    async def get_spans_disk_size(self) -> int:
        row = await self.executor.fetchrow(self.sql.get_spans_disk_size)
        return int(row["size"] or 0) if row is not None else 0
