"""trace-sql-adapter: relational span storage for a distributed-tracing backend."""

from trace_sql_adapter._version import __version__
from trace_sql_adapter.config import configure_logging, load_config
from trace_sql_adapter.errors import (
    DecodeError,
    LogDecodeError,
    MalformedIdentifier,
    NotFound,
    SpanRefDecodeError,
    TagDecodeError,
    TraceStoreError,
)
from trace_sql_adapter.models import (
    KeyValue,
    Log,
    Operation,
    Process,
    Span,
    SpanKind,
    SpanRef,
    SpanRefType,
    StorageSpanKind,
    StoreConfig,
    Trace,
    TraceID,
    TraceQueryParameters,
    ValueType,
)
from trace_sql_adapter.store import SpanStore, create_store

__all__ = [
    "__version__",
    "create_store",
    "configure_logging",
    "load_config",
    "SpanStore",
    "StoreConfig",
    "KeyValue",
    "Log",
    "Operation",
    "Process",
    "Span",
    "SpanKind",
    "SpanRef",
    "SpanRefType",
    "StorageSpanKind",
    "Trace",
    "TraceID",
    "TraceQueryParameters",
    "ValueType",
    "TraceStoreError",
    "MalformedIdentifier",
    "DecodeError",
    "TagDecodeError",
    "LogDecodeError",
    "SpanRefDecodeError",
    "NotFound",
]
