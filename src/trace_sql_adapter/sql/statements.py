"""SQL text for every operation, one statement set per dialect.

Both sets take the same positional arguments in the same order, so callers
build one argument tuple regardless of the backing database.

Trace search uses one static statement for every combination of filters: each
optional predicate is paired with a boolean flag and written as
``(predicate OR flag = FALSE)``, which holds whatever the placeholder value is
when the filter is off.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Statements:
    upsert_service: str
    get_service_id: str
    upsert_operation: str
    get_operation_id: str
    insert_span: str
    get_trace_spans: str
    find_trace_ids: str
    get_services: str
    get_operations: str
    clean_spans: str
    get_spans_count: str
    get_spans_disk_size: str


_TRACE_SPANS_COLUMNS = """\
  spans.span_id AS span_id,
  spans.trace_id AS trace_id,
  operations.name AS operation_name,
  spans.flags AS flags,
  spans.start_time AS start_time,
  spans.duration AS duration,
  spans.tags AS tags,
  spans.process_id AS process_id,
  spans.warnings AS warnings,
  spans.kind AS kind,
  services.name AS process_name,
  spans.process_tags AS process_tags,
  spans.logs AS logs,
  spans.refs AS refs"""


# ------------------------------------------------------------------
# PostgreSQL
# ------------------------------------------------------------------

POSTGRES = Statements(
    upsert_service="""\
INSERT INTO services (name)
VALUES ($1::VARCHAR)
ON CONFLICT (name) DO NOTHING
""",
    get_service_id="""\
SELECT id
FROM services
WHERE name = $1::TEXT
""",
    upsert_operation="""\
INSERT INTO operations (name, service_id, kind)
VALUES ($1::TEXT, $2::BIGINT, $3::SPANKIND)
ON CONFLICT (name, service_id, kind) DO NOTHING
""",
    get_operation_id="""\
SELECT id
FROM operations
WHERE
  name = $1::TEXT AND
  service_id = $2::BIGINT AND
  kind = $3::SPANKIND
""",
    insert_span="""\
INSERT INTO spans (
  span_id, trace_id, operation_id, flags, start_time, duration, tags,
  service_id, process_id, process_tags, warnings, kind, logs, refs
)
VALUES (
  $1::BYTEA, $2::BYTEA, $3::BIGINT, $4::BIGINT, $5::TIMESTAMP, $6::INTERVAL, $7::JSONB,
  $8::BIGINT, $9::TEXT, $10::JSONB, $11::TEXT[], $12::SPANKIND, $13::JSONB, $14::JSONB
)
""",
    get_trace_spans=f"""\
SELECT
{_TRACE_SPANS_COLUMNS}
FROM spans
  INNER JOIN operations ON (spans.operation_id = operations.id)
  INNER JOIN services ON (spans.service_id = services.id)
WHERE spans.trace_id = $1::BYTEA
""",
    find_trace_ids="""\
SELECT DISTINCT spans.trace_id AS trace_id
FROM spans
  INNER JOIN operations ON (operations.id = spans.operation_id)
  INNER JOIN services ON (services.id = spans.service_id)
WHERE
  (services.name = $1::VARCHAR OR $2::BOOLEAN = FALSE) AND
  (operations.name = $3::VARCHAR OR $4::BOOLEAN = FALSE) AND
  (spans.start_time >= $5::TIMESTAMP OR $6::BOOLEAN = FALSE) AND
  (spans.start_time <= $7::TIMESTAMP OR $8::BOOLEAN = FALSE) AND
  (spans.duration >= $9::INTERVAL OR $10::BOOLEAN = FALSE) AND
  (spans.duration <= $11::INTERVAL OR $12::BOOLEAN = FALSE) AND
  ($14::BOOLEAN = FALSE OR (spans.tags @> $13::JSONB) OR (spans.process_tags @> $13::JSONB))
LIMIT $15
""",
    get_services="""\
SELECT services.name AS name
FROM services
ORDER BY services.name ASC
""",
    get_operations="""\
SELECT operations.name AS name, operations.kind AS kind
FROM operations
  INNER JOIN services ON (operations.service_id = services.id)
WHERE services.name = $1::VARCHAR
ORDER BY operations.name ASC
""",
    clean_spans="""\
DELETE FROM spans
WHERE spans.start_time < $1::TIMESTAMP
""",
    get_spans_count="""\
SELECT COUNT(*) AS count FROM spans
""",
    get_spans_disk_size="""\
SELECT pg_total_relation_size('spans') AS size
""",
)


# ------------------------------------------------------------------
# SQLite
# ------------------------------------------------------------------

# JSONB containment (``haystack @> needle``) for arrays of tag objects: every
# needle element must match some haystack element on both Key and Value.
_SQLITE_TAGS_CONTAIN = """\
NOT EXISTS (
      SELECT 1 FROM json_each(?13) AS wanted
      WHERE NOT EXISTS (
        SELECT 1 FROM json_each(spans.{column}) AS have
        WHERE json_extract(have.value, '$.Key') = json_extract(wanted.value, '$.Key')
          AND json_extract(have.value, '$.Value') = json_extract(wanted.value, '$.Value')
      )
    )"""
_SQLITE_SPAN_TAGS_CONTAIN = _SQLITE_TAGS_CONTAIN.format(column="tags")
_SQLITE_PROCESS_TAGS_CONTAIN = _SQLITE_TAGS_CONTAIN.format(column="process_tags")

SQLITE = Statements(
    upsert_service="""\
INSERT INTO services (name)
VALUES (?1)
ON CONFLICT (name) DO NOTHING
""",
    get_service_id="""\
SELECT id
FROM services
WHERE name = ?1
""",
    upsert_operation="""\
INSERT INTO operations (name, service_id, kind)
VALUES (?1, ?2, ?3)
ON CONFLICT (name, service_id, kind) DO NOTHING
""",
    get_operation_id="""\
SELECT id
FROM operations
WHERE
  name = ?1 AND
  service_id = ?2 AND
  kind = ?3
""",
    insert_span="""\
INSERT INTO spans (
  span_id, trace_id, operation_id, flags, start_time, duration, tags,
  service_id, process_id, process_tags, warnings, kind, logs, refs
)
VALUES (?1, ?2, ?3, ?4, ?5, ?6, ?7, ?8, ?9, ?10, ?11, ?12, ?13, ?14)
""",
    get_trace_spans=f"""\
SELECT
{_TRACE_SPANS_COLUMNS}
FROM spans
  INNER JOIN operations ON (spans.operation_id = operations.id)
  INNER JOIN services ON (spans.service_id = services.id)
WHERE spans.trace_id = ?1
""",
    find_trace_ids=f"""\
SELECT DISTINCT spans.trace_id AS trace_id
FROM spans
  INNER JOIN operations ON (operations.id = spans.operation_id)
  INNER JOIN services ON (services.id = spans.service_id)
WHERE
  (services.name = ?1 OR ?2 = 0) AND
  (operations.name = ?3 OR ?4 = 0) AND
  (spans.start_time >= ?5 OR ?6 = 0) AND
  (spans.start_time <= ?7 OR ?8 = 0) AND
  (spans.duration >= ?9 OR ?10 = 0) AND
  (spans.duration <= ?11 OR ?12 = 0) AND
  (?14 = 0 OR {_SQLITE_SPAN_TAGS_CONTAIN} OR {_SQLITE_PROCESS_TAGS_CONTAIN})
LIMIT ?15
""",
    get_services="""\
SELECT services.name AS name
FROM services
ORDER BY services.name ASC
""",
    get_operations="""\
SELECT operations.name AS name, operations.kind AS kind
FROM operations
  INNER JOIN services ON (operations.service_id = services.id)
WHERE services.name = ?1
ORDER BY operations.name ASC
""",
    clean_spans="""\
DELETE FROM spans
WHERE spans.start_time < ?1
""",
    get_spans_count="""\
SELECT COUNT(*) AS count FROM spans
""",
    get_spans_disk_size="""\
SELECT page_count * page_size AS size
FROM pragma_page_count(), pragma_page_size()
""",
)

STATEMENTS = {
    "postgres": POSTGRES,
    "sqlite": SQLITE,
}


def statements_for(dialect: str) -> Statements:
    try:
        return STATEMENTS[dialect]
    except KeyError:
        raise ValueError(f"Unknown SQL dialect: {dialect}") from None
