from __future__ import annotations

CREATE_EVENTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS events (
  ts_ms BIGINT,
  endpoint TEXT,
  engine TEXT,
  mode TEXT,
  level INTEGER,
  view_zoom DOUBLE,
  north DOUBLE,
  south DOUBLE,
  east DOUBLE,
  west DOUBLE,
  total BIGINT,
  stats_json TEXT
);
"""

SUMMARY_SQL_TEMPLATE = """
SELECT
  engine,
  endpoint,
  mode,
  COUNT(*) AS n,
  AVG(try_cast(json_extract(stats_json, '$.timingsMs.total') AS DOUBLE)) AS avg_total_ms,
  quantile_cont(try_cast(json_extract(stats_json, '$.timingsMs.total') AS DOUBLE), 0.50) AS p50_total_ms,
  quantile_cont(try_cast(json_extract(stats_json, '$.timingsMs.total') AS DOUBLE), 0.95) AS p95_total_ms,
  quantile_cont(try_cast(json_extract(stats_json, '$.timingsMs.total') AS DOUBLE), 0.99) AS p99_total_ms,
  AVG(total) AS avg_results,
  AVG(CASE WHEN json_extract_string(stats_json, '$.mapTruncated') = 'true' THEN 1 ELSE 0 END) AS truncated_rate
FROM events
{where_sql}
GROUP BY engine, endpoint, mode
ORDER BY engine, endpoint, mode
"""

SLOWEST_SQL_TEMPLATE = """
SELECT
  ts_ms,
  engine,
  endpoint,
  mode,
  level,
  try_cast(json_extract(stats_json, '$.timingsMs.total') AS DOUBLE) AS total_ms,
  total,
  view_zoom
FROM events
WHERE {where_sql}
ORDER BY total_ms DESC
LIMIT ?
"""

INSERT_EVENTS_SQL = """
INSERT INTO events
  (ts_ms, endpoint, engine, mode, level, view_zoom, north, south, east, west, total, stats_json)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""
