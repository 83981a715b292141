"""Pydantic data models for trace-sql-adapter."""

from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_UINT64 = 1 << 64


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ------------------------------------------------------------------
# Enumerations
# ------------------------------------------------------------------


class ValueType(IntEnum):
    """Type discriminant of a tag value.  The integers are the on-disk codes."""

    STRING = 0
    BOOL = 1
    INT64 = 2
    FLOAT64 = 3
    BINARY = 4


class SpanRefType(IntEnum):
    CHILD_OF = 0
    FOLLOWS_FROM = 1


class SpanKind(IntEnum):
    """Role a span plays, in the tracing model's vocabulary."""

    UNSPECIFIED = 0
    INTERNAL = 1
    SERVER = 2
    CLIENT = 3
    PRODUCER = 4
    CONSUMER = 5
    EPHEMERAL = 6

    @classmethod
    def from_tag(cls, value: str) -> "SpanKind":
        """Parse the value of a ``span.kind`` tag.  Unknown values are UNSPECIFIED."""
        return _KIND_TAG_VALUES.get(value.strip().lower(), cls.UNSPECIFIED)


_KIND_TAG_VALUES = {
    "internal": SpanKind.INTERNAL,
    "server": SpanKind.SERVER,
    "client": SpanKind.CLIENT,
    "producer": SpanKind.PRODUCER,
    "consumer": SpanKind.CONSUMER,
    "ephemeral": SpanKind.EPHEMERAL,
}

SPAN_KIND_TAG = "span.kind"


class StorageSpanKind(str, Enum):
    """Values of the ``spankind`` database enum."""

    SERVER = "server"
    CLIENT = "client"
    UNSPECIFIED = "unspecified"
    PRODUCER = "producer"
    CONSUMER = "consumer"
    EPHEMERAL = "ephemeral"
    INTERNAL = "internal"


# ------------------------------------------------------------------
# Identifiers and tags
# ------------------------------------------------------------------


class TraceID(BaseModel):
    """128-bit trace identifier split into two unsigned 64-bit halves."""

    model_config = ConfigDict(frozen=True)

    high: int = Field(default=0, ge=0, lt=_UINT64)
    low: int = Field(default=0, ge=0, lt=_UINT64)

    @classmethod
    def from_hex(cls, value: str) -> "TraceID":
        """Parse up to 32 hex digits; the high half comes first."""
        if not value or len(value) > 32:
            raise ValueError(f"Invalid trace id: {value!r}")
        number = int(value, 16)
        return cls(high=number >> 64, low=number & (_UINT64 - 1))

    def __str__(self) -> str:
        return f"{self.high:016x}{self.low:016x}"


class KeyValue(BaseModel):
    """A tag: key plus a value from a closed set of types.

    Only the field selected by ``v_type`` carries meaning; the others keep
    their defaults.
    """

    key: str
    v_type: ValueType = ValueType.STRING
    v_str: str = ""
    v_bool: bool = False
    v_int64: int = Field(default=0, ge=-(1 << 63), lt=1 << 63)
    v_float64: float = 0.0
    v_binary: bytes = b""

    @classmethod
    def string(cls, key: str, value: str) -> "KeyValue":
        return cls(key=key, v_type=ValueType.STRING, v_str=value)

    @classmethod
    def boolean(cls, key: str, value: bool) -> "KeyValue":
        return cls(key=key, v_type=ValueType.BOOL, v_bool=value)

    @classmethod
    def int64(cls, key: str, value: int) -> "KeyValue":
        return cls(key=key, v_type=ValueType.INT64, v_int64=value)

    @classmethod
    def float64(cls, key: str, value: float) -> "KeyValue":
        return cls(key=key, v_type=ValueType.FLOAT64, v_float64=value)

    @classmethod
    def binary(cls, key: str, value: bytes) -> "KeyValue":
        return cls(key=key, v_type=ValueType.BINARY, v_binary=value)

    @property
    def value(self) -> Any:
        """The populated value field."""
        return {
            ValueType.STRING: self.v_str,
            ValueType.BOOL: self.v_bool,
            ValueType.INT64: self.v_int64,
            ValueType.FLOAT64: self.v_float64,
            ValueType.BINARY: self.v_binary,
        }[self.v_type]


# ------------------------------------------------------------------
# Spans
# ------------------------------------------------------------------


class Log(BaseModel):
    """A timestamped event recorded on a span."""

    timestamp: datetime
    fields: list[KeyValue] = Field(default_factory=list)

    @field_validator("timestamp")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class SpanRef(BaseModel):
    trace_id: TraceID
    span_id: int = Field(ge=0, lt=_UINT64)
    ref_type: SpanRefType = SpanRefType.CHILD_OF


class Process(BaseModel):
    """The reporting service instance that emitted a span."""

    service_name: str
    tags: list[KeyValue] = Field(default_factory=list)


class Span(BaseModel):
    trace_id: TraceID
    span_id: int = Field(ge=0, lt=_UINT64)
    operation_name: str
    references: list[SpanRef] = Field(default_factory=list)
    flags: int = 0
    start_time: datetime
    duration: timedelta = timedelta(0)
    tags: list[KeyValue] = Field(default_factory=list)
    logs: list[Log] = Field(default_factory=list)
    process: Process
    process_id: str = ""
    warnings: list[str] = Field(default_factory=list)

    @field_validator("start_time")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def kind(self) -> SpanKind:
        """Span kind taken from the ``span.kind`` tag, UNSPECIFIED if absent."""
        for tag in self.tags:
            if tag.key == SPAN_KIND_TAG and tag.v_type == ValueType.STRING:
                return SpanKind.from_tag(tag.v_str)
        return SpanKind.UNSPECIFIED


class Trace(BaseModel):
    spans: list[Span] = Field(default_factory=list)


class Operation(BaseModel):
    """An operation name as reported for a service, with its storage kind."""

    name: str
    span_kind: str = ""


class TraceQueryParameters(BaseModel):
    """Trace search filters.  Unset fields do not constrain the search."""

    service_name: str | None = None
    operation_name: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)
    start_time_min: datetime | None = None
    start_time_max: datetime | None = None
    duration_min: timedelta | None = None
    duration_max: timedelta | None = None
    num_traces: int = 0

    @field_validator("start_time_min", "start_time_max")
    @classmethod
    def normalize_utc(cls, value: datetime | None) -> datetime | None:
        return None if value is None else as_utc(value)


# ------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------


class StoreConfig(BaseModel):
    """Top-level storage configuration."""

    dialect: str = "sqlite"
    dsn: str | None = None
    db_path: str | None = None
    pool_min_size: int = 1
    pool_max_size: int = 10
    default_num_traces: int = 20
    max_span_age: timedelta = timedelta(hours=24)
    log_level: str = "INFO"
