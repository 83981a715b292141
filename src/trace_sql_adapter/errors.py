"""Exception hierarchy for the trace storage adapter.

Executor failures (connectivity, timeouts, unique violations) are not wrapped:
they propagate from the driver unchanged.
"""


class TraceStoreError(Exception):
    """Base class for errors raised by this package."""


class MalformedIdentifier(TraceStoreError, ValueError):
    """A binary trace or span identifier has the wrong length."""


class DecodeError(TraceStoreError, ValueError):
    """A stored JSON payload could not be turned back into domain objects."""


class TagDecodeError(DecodeError):
    pass


class LogDecodeError(DecodeError):
    pass


class SpanRefDecodeError(DecodeError):
    pass


class NotFound(TraceStoreError, LookupError):
    """A point lookup (service, operation, trace) matched no row."""
