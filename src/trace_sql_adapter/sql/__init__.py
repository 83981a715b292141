"""SQL layer: executor protocol, statement sets and typed query wrappers."""

from trace_sql_adapter.sql.base import Executor
from trace_sql_adapter.sql.queries import (
    FindTraceIDsParams,
    InsertSpanParams,
    OperationRow,
    Queries,
    SpanRow,
)

__all__ = [
    "Executor",
    "FindTraceIDsParams",
    "InsertSpanParams",
    "OperationRow",
    "Queries",
    "SpanRow",
]
