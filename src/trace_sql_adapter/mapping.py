"""Conversions between the span model and its relational representation.

Identifiers become fixed-width little-endian bytes.  Tags, logs and span
references become JSON documents stored in ``jsonb`` columns; their shapes are
part of the on-disk contract and must stay readable for rows that are already
persisted:

* span and process tags: ``[{"Key": str, "Value": str, "Type": int}, ...]``
* logs: ``[[timestamp, [[key, type, value], ...]], ...]``
* references: ``[[b64(trace_id), b64(span_id), ref_type], ...]``
"""

import base64
import binascii
import json
import logging
import math
import re
import struct
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from trace_sql_adapter.errors import (
    LogDecodeError,
    MalformedIdentifier,
    SpanRefDecodeError,
    TagDecodeError,
)
from trace_sql_adapter.models import (
    KeyValue,
    Log,
    SpanKind,
    SpanRef,
    SpanRefType,
    StorageSpanKind,
    TraceID,
    ValueType,
)

logger = logging.getLogger(__name__)

_TRACE_ID = struct.Struct("<QQ")
_SPAN_ID = struct.Struct("<Q")

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_INT_TEXT = re.compile(r"[+-]?[0-9]+")

_TRUE_TEXT = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_TEXT = frozenset({"0", "f", "F", "FALSE", "false", "False"})

# Decimal or special-value text accepted by Go's strconv.ParseFloat, minus hex floats.
_FLOAT_TEXT = re.compile(r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf|infinity|nan)", re.IGNORECASE)
_B64_RAW_TEXT = re.compile(r"[A-Za-z0-9+/]*")

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})"
    r"(?:\.(\d{1,9}))?"
    r"(?:([Zz])|([+-])(\d{2}):(\d{2}))"
)


def _dumps(value: Any) -> str:
    # JSONB rejects NaN and Infinity tokens.
    return json.dumps(value, separators=(",", ":"), allow_nan=False)


def _loads(raw: str | bytes | bytearray | memoryview) -> Any:
    if isinstance(raw, memoryview):
        raw = raw.tobytes()
    return json.loads(raw)


# ------------------------------------------------------------------
# Identifiers
# ------------------------------------------------------------------


def encode_trace_id(trace_id: TraceID) -> bytes:
    """16 bytes: high half then low half, each little-endian."""
    return _TRACE_ID.pack(trace_id.high, trace_id.low)


def decode_trace_id(raw: bytes) -> TraceID:
    if len(raw) != _TRACE_ID.size:
        raise MalformedIdentifier(f"trace id must be {_TRACE_ID.size} bytes, got {len(raw)}")
    high, low = _TRACE_ID.unpack(raw)
    return TraceID(high=high, low=low)


def encode_span_id(span_id: int) -> bytes:
    return _SPAN_ID.pack(span_id)


def decode_span_id(raw: bytes) -> int:
    if len(raw) != _SPAN_ID.size:
        raise MalformedIdentifier(f"span id must be {_SPAN_ID.size} bytes, got {len(raw)}")
    return _SPAN_ID.unpack(raw)[0]


# ------------------------------------------------------------------
# Time values
# ------------------------------------------------------------------


def encode_timestamp(value: datetime) -> datetime:
    """Naive UTC datetime for a ``TIMESTAMP`` (without time zone) column."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def encode_interval(value: timedelta) -> timedelta:
    """Duration truncated to whole microseconds, the resolution of ``INTERVAL``."""
    return timedelta(microseconds=value // timedelta(microseconds=1))


def format_log_timestamp(value: datetime) -> str:
    """RFC 3339 in UTC with nine fractional digits, e.g. ``2024-01-01T00:00:00.000000000Z``."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond * 1000:09d}Z"


def parse_log_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Accepts 0-9 fractional digits; anything below a microsecond is dropped.
    """
    match = _RFC3339.fullmatch(text)
    if match is None:
        raise ValueError(f"not an RFC 3339 timestamp: {text!r}")
    year, month, day, hour, minute, second, fraction, _zulu, sign, off_h, off_m = match.groups()
    tz = timezone.utc
    if sign is not None:
        offset = timedelta(hours=int(off_h), minutes=int(off_m))
        tz = timezone(-offset if sign == "-" else offset)
    micros = int((fraction or "").ljust(9, "0")[:6])
    parsed = datetime(int(year), int(month), int(day), int(hour), int(minute), int(second), micros, tzinfo=tz)
    return parsed.astimezone(timezone.utc)


# ------------------------------------------------------------------
# Tag values
# ------------------------------------------------------------------


def _b64_raw_encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii").rstrip("=")


def _b64_raw_decode(text: str) -> bytes:
    if not _B64_RAW_TEXT.fullmatch(text):
        raise ValueError(f"invalid unpadded base64: {text!r}")
    return base64.b64decode(text + "=" * (-len(text) % 4), validate=True)


def _format_float(value: float) -> str:
    """Shortest text that parses back to ``value``, without an exponent."""
    if not math.isfinite(value):
        return repr(value)
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _parse_bool(text: str) -> bool:
    if text in _TRUE_TEXT:
        return True
    if text in _FALSE_TEXT:
        return False
    raise ValueError(f"invalid boolean: {text!r}")


def _parse_float(text: str) -> float:
    if not _FLOAT_TEXT.fullmatch(text):
        raise ValueError(f"invalid float: {text!r}")
    return float(text)


def _parse_int(text: str) -> int:
    if not _INT_TEXT.fullmatch(text):
        raise ValueError(f"invalid integer: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"integer out of int64 range: {text}")
    return value


def _parse_type(raw: Any) -> ValueType:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise TagDecodeError(f"tag type is not a number: {raw!r}")
    if isinstance(raw, float) and not raw.is_integer():
        raise TagDecodeError(f"tag type is not an integer: {raw!r}")
    try:
        return ValueType(int(raw))
    except ValueError as exc:
        raise TagDecodeError(f"unknown tag type: {raw!r}") from exc


def _tag_text(kv: KeyValue) -> str:
    if kv.v_type == ValueType.STRING:
        return kv.v_str
    if kv.v_type == ValueType.BOOL:
        return "true" if kv.v_bool else "false"
    if kv.v_type == ValueType.INT64:
        return str(kv.v_int64)
    if kv.v_type == ValueType.FLOAT64:
        return _format_float(kv.v_float64)
    return _b64_raw_encode(kv.v_binary)


def _tag_from_text(key: str, v_type: ValueType, text: str) -> KeyValue:
    try:
        if v_type == ValueType.STRING:
            return KeyValue.string(key, text)
        if v_type == ValueType.BOOL:
            return KeyValue.boolean(key, _parse_bool(text))
        if v_type == ValueType.INT64:
            return KeyValue.int64(key, _parse_int(text))
        if v_type == ValueType.FLOAT64:
            return KeyValue.float64(key, _parse_float(text))
        return KeyValue.binary(key, _b64_raw_decode(text))
    except (ValueError, binascii.Error) as exc:
        raise TagDecodeError(f"tag {key!r}: cannot parse {v_type.name} value {text!r}") from exc


# ------------------------------------------------------------------
# Tags: struct shape (span and process tags)
# ------------------------------------------------------------------


def encode_tags(tags: list[KeyValue]) -> str:
    """Encode tags as the JSON array of ``{"Key", "Value", "Type"}`` objects."""
    return _dumps([{"Key": kv.key, "Value": _tag_text(kv), "Type": int(kv.v_type)} for kv in tags])


def decode_tag_structs(items: list[Any]) -> list[KeyValue]:
    tags: list[KeyValue] = []
    for item in items:
        if not isinstance(item, dict):
            raise TagDecodeError(f"tag is not an object: {item!r}")
        missing = [name for name in ("Key", "Value", "Type") if name not in item]
        if missing:
            raise TagDecodeError(f"tag is missing {', '.join(missing)}: {item!r}")
        key, text = item["Key"], item["Value"]
        if not isinstance(key, str) or not isinstance(text, str):
            raise TagDecodeError(f"tag key and value must be strings: {item!r}")
        tags.append(_tag_from_text(key, _parse_type(item["Type"]), text))
    return tags


def decode_tags(raw: str | bytes) -> list[KeyValue]:
    """Decode a stored span/process tag column.  Empty input gives ``[]``."""
    try:
        items = _loads(raw)
    except ValueError as exc:
        raise TagDecodeError("failed to decode tag json") from exc
    if items is None:
        return []
    if not isinstance(items, list):
        raise TagDecodeError(f"tags must be a JSON array, got {type(items).__name__}")
    return decode_tag_structs(items)


# ------------------------------------------------------------------
# Tags: tuple shape (log fields)
# ------------------------------------------------------------------


def encode_tag_tuples(tags: list[KeyValue]) -> list[list[Any]]:
    """Encode tags as ``[key, type, value]`` triples.

    Strings, bools and floats stay native JSON values; ints become base-10
    text and binary becomes unpadded base64.
    """
    encoded: list[list[Any]] = []
    for kv in tags:
        if kv.v_type == ValueType.STRING:
            value: Any = kv.v_str
        elif kv.v_type == ValueType.BOOL:
            value = kv.v_bool
        elif kv.v_type == ValueType.INT64:
            value = str(kv.v_int64)
        elif kv.v_type == ValueType.FLOAT64:
            value = kv.v_float64
        else:
            value = _b64_raw_encode(kv.v_binary)
        encoded.append([kv.key, int(kv.v_type), value])
    return encoded


def decode_tag_tuples(items: list[Any]) -> list[KeyValue]:
    tags: list[KeyValue] = []
    for item in items:
        if not isinstance(item, list) or len(item) != 3:
            raise TagDecodeError(f"tag is not a [key, type, value] triple: {item!r}")
        key, raw_type, value = item
        if not isinstance(key, str):
            raise TagDecodeError(f"tag key must be a string: {item!r}")
        v_type = _parse_type(raw_type)
        if v_type == ValueType.BOOL:
            if not isinstance(value, bool):
                raise TagDecodeError(f"tag {key!r}: BOOL value must be a JSON boolean, got {value!r}")
            tags.append(KeyValue.boolean(key, value))
        elif v_type == ValueType.FLOAT64:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TagDecodeError(f"tag {key!r}: FLOAT64 value must be a JSON number, got {value!r}")
            tags.append(KeyValue.float64(key, float(value)))
        else:
            if not isinstance(value, str):
                raise TagDecodeError(f"tag {key!r}: {v_type.name} value must be a string, got {value!r}")
            tags.append(_tag_from_text(key, v_type, value))
    return tags


def decode_legacy_tags(raw: str | bytes) -> list[KeyValue]:
    """Decode a JSON array of ``[key, type, value]`` triples."""
    try:
        items = _loads(raw)
    except ValueError as exc:
        raise TagDecodeError("failed to decode tag json") from exc
    if items is None:
        return []
    if not isinstance(items, list):
        raise TagDecodeError(f"tags must be a JSON array, got {type(items).__name__}")
    return decode_tag_tuples(items)


# ------------------------------------------------------------------
# Logs
# ------------------------------------------------------------------


def encode_logs(logs: list[Log]) -> str:
    return _dumps([[format_log_timestamp(log.timestamp), encode_tag_tuples(log.fields)] for log in logs])


def decode_logs(raw: str | bytes) -> list[Log]:
    try:
        entries = _loads(raw)
    except ValueError as exc:
        raise LogDecodeError("failed to decode logs json") from exc
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise LogDecodeError(f"logs must be a JSON array, got {type(entries).__name__}")

    logs: list[Log] = []
    for entry in entries:
        if not isinstance(entry, list) or len(entry) != 2:
            raise LogDecodeError(f"log is not a [timestamp, fields] pair: {entry!r}")
        stamp, fields = entry
        if not isinstance(stamp, str) or not isinstance(fields, list):
            raise LogDecodeError(f"log is not a [timestamp, fields] pair: {entry!r}")
        try:
            timestamp = parse_log_timestamp(stamp)
        except ValueError as exc:
            raise LogDecodeError(f"invalid log timestamp {stamp!r}") from exc
        try:
            decoded = decode_tag_tuples(fields)
        except TagDecodeError as exc:
            raise LogDecodeError(f"invalid fields in log at {stamp}") from exc
        logs.append(Log(timestamp=timestamp, fields=decoded))
    return logs


# ------------------------------------------------------------------
# Span references
# ------------------------------------------------------------------


def encode_span_refs(refs: list[SpanRef]) -> str:
    if not refs:
        return "[]"
    return _dumps(
        [
            [
                base64.b64encode(encode_trace_id(ref.trace_id)).decode("ascii"),
                base64.b64encode(encode_span_id(ref.span_id)).decode("ascii"),
                int(ref.ref_type),
            ]
            for ref in refs
        ]
    )


def decode_span_refs(raw: str | bytes) -> list[SpanRef]:
    try:
        entries = _loads(raw)
    except ValueError as exc:
        raise SpanRefDecodeError("failed to decode refs json") from exc
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise SpanRefDecodeError(f"refs must be a JSON array, got {type(entries).__name__}")

    refs: list[SpanRef] = []
    for entry in entries:
        if not isinstance(entry, list) or len(entry) != 3:
            raise SpanRefDecodeError(f"ref is not a [trace_id, span_id, type] triple: {entry!r}")
        trace_text, span_text, ref_type = entry
        if not isinstance(trace_text, str) or not isinstance(span_text, str):
            raise SpanRefDecodeError(f"ref identifiers must be base64 strings: {entry!r}")
        if isinstance(ref_type, bool) or not isinstance(ref_type, (int, float)):
            raise SpanRefDecodeError(f"ref type is not a number: {entry!r}")
        if isinstance(ref_type, float) and not ref_type.is_integer():
            raise SpanRefDecodeError(f"ref type is not an integer: {entry!r}")
        try:
            trace_id = decode_trace_id(base64.b64decode(trace_text, validate=True))
            span_id = decode_span_id(base64.b64decode(span_text, validate=True))
            kind = SpanRefType(int(ref_type))
        except (ValueError, binascii.Error) as exc:
            raise SpanRefDecodeError(f"invalid span ref: {entry!r}") from exc
        refs.append(SpanRef(trace_id=trace_id, span_id=span_id, ref_type=kind))
    return refs


# ------------------------------------------------------------------
# Span kind
# ------------------------------------------------------------------

_KIND_TO_STORAGE = {
    SpanKind.UNSPECIFIED: StorageSpanKind.UNSPECIFIED,
    SpanKind.INTERNAL: StorageSpanKind.INTERNAL,
    SpanKind.SERVER: StorageSpanKind.SERVER,
    SpanKind.CLIENT: StorageSpanKind.CLIENT,
    SpanKind.PRODUCER: StorageSpanKind.PRODUCER,
    SpanKind.CONSUMER: StorageSpanKind.CONSUMER,
    SpanKind.EPHEMERAL: StorageSpanKind.EPHEMERAL,
}

_STORAGE_TO_KIND = {storage: kind for kind, storage in _KIND_TO_STORAGE.items()}


def encode_span_kind(kind: Any) -> StorageSpanKind:
    """Map a domain span kind to the storage enum.  Never raises."""
    if isinstance(kind, bool) or not isinstance(kind, int):
        return StorageSpanKind.UNSPECIFIED
    try:
        return _KIND_TO_STORAGE[SpanKind(kind)]
    except ValueError:
        return StorageSpanKind.UNSPECIFIED


def decode_span_kind(kind: StorageSpanKind | str) -> SpanKind:
    try:
        return _STORAGE_TO_KIND[StorageSpanKind(kind)]
    except ValueError:
        logger.debug("Unknown storage span kind %r, using unspecified", kind)
        return SpanKind.UNSPECIFIED
