from __future__ import annotations

import json
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb

from telemetry.config import telemetry_enabled, telemetry_path
from telemetry.sql import (
    CREATE_EVENTS_TABLE_SQL,
    INSERT_EVENTS_SQL,
    SLOWEST_SQL_TEMPLATE,
    SUMMARY_SQL_TEMPLATE,
)

__all__ = ["TelemetryStore", "telemetry_enabled", "telemetry_path"]


def _safe_float(v) -> float | None:
    try:
        if v is None:
            return None
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass
class TelemetryStore:
    """
    One row per search, written by a single background thread in small batches.

    `record` never blocks the request path; events are dropped if the queue is full.
    """

    path: Path
    conn: duckdb.DuckDBPyConnection
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _q: "queue.Queue[dict[str, Any]]" = field(default_factory=lambda: queue.Queue(maxsize=10_000), repr=False)
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)
    _worker: threading.Thread | None = field(default=None, repr=False)

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_EVENTS_TABLE_SQL)

    def start(self) -> None:
        if self._worker is not None:
            return
        self._stop.clear()
        self._worker = threading.Thread(target=self._run, name="telemetry-writer", daemon=True)
        self._worker.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        """
        Stop the writer thread (best-effort) and prevent further flushes.
        """
        self._stop.set()
        w = self._worker
        if w is not None and w.is_alive():
            w.join(timeout=timeout_s)
        self._worker = None

    def record(
        self,
        *,
        endpoint: str,
        engine: str,
        mode: str | None,
        level: int | None,
        view_zoom: float,
        bounds: dict[str, float],
        total: int | None,
        stats: dict[str, Any],
    ) -> None:
        # Best-effort, non-blocking: enqueue and return.
        self.start()
        try:
            self._q.put_nowait(
                {
                    "ts_ms": int(time.time() * 1000),
                    "endpoint": str(endpoint),
                    "engine": str(engine),
                    "mode": mode,
                    "level": int(level) if level is not None else None,
                    "view_zoom": float(view_zoom),
                    "north": float(bounds["north"]),
                    "south": float(bounds["south"]),
                    "east": float(bounds["east"]),
                    "west": float(bounds["west"]),
                    "total": int(total) if total is not None else None,
                    "stats_json": json.dumps(stats, ensure_ascii=False),
                }
            )
        except queue.Full:
            # drop telemetry on overload
            pass

    def flush(self, *, timeout_s: float = 2.0) -> None:
        """
        Best-effort: wait until queued events are processed (used by tests).
        """
        if self._worker is None:
            return
        deadline = time.time() + timeout_s
        while time.time() < deadline:
            if self._q.unfinished_tasks == 0:
                break
            time.sleep(0.01)
        # Give the writer thread time to flush on its time-based trigger.
        time.sleep(0.55)

    def query(self, sql: str, params: list[Any] | None = None) -> list[tuple]:
        """
        Run a read query inside the service process.

        DuckDB holds a file lock; querying through the API avoids opening the file twice.
        """
        with self._lock:
            if params:
                return self.conn.execute(sql, params).fetchall()
            return self.conn.execute(sql).fetchall()

    def summary(
        self,
        *,
        engine: str | None = None,
        endpoint: str | None = None,
        since_ms: int | None = None,
    ) -> list[dict[str, Any]]:
        where = []
        params: list[Any] = []
        if engine:
            where.append("engine = ?")
            params.append(engine)
        if endpoint:
            where.append("endpoint = ?")
            params.append(endpoint)
        if since_ms is not None:
            where.append("ts_ms >= ?")
            params.append(int(since_ms))

        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        rows = self.query(SUMMARY_SQL_TEMPLATE.format(where_sql=where_sql), params)

        out: list[dict[str, Any]] = []
        for engine_v, endpoint_v, mode_v, n, avg_ms, p50, p95, p99, avg_results, trunc_rate in rows:
            out.append(
                {
                    "engine": engine_v,
                    "endpoint": endpoint_v,
                    "mode": mode_v,
                    "n": int(n),
                    "avgTotalMs": _safe_float(avg_ms),
                    "p50TotalMs": _safe_float(p50),
                    "p95TotalMs": _safe_float(p95),
                    "p99TotalMs": _safe_float(p99),
                    "avgResults": _safe_float(avg_results),
                    "truncatedRate": _safe_float(trunc_rate),
                }
            )
        return out

    def slowest(
        self,
        *,
        engine: str | None = None,
        endpoint: str | None = None,
        limit: int = 25,
    ) -> list[dict[str, Any]]:
        where = ["json_extract(stats_json, '$.timingsMs.total') IS NOT NULL"]
        params: list[Any] = []
        if engine:
            where.append("engine = ?")
            params.append(engine)
        if endpoint:
            where.append("endpoint = ?")
            params.append(endpoint)
        params.append(int(max(1, min(200, limit))))

        rows = self.query(SLOWEST_SQL_TEMPLATE.format(where_sql=" AND ".join(where)), params)
        return [
            {
                "tsMs": int(ts_ms),
                "engine": engine_v,
                "endpoint": endpoint_v,
                "mode": mode_v,
                "level": int(level) if level is not None else None,
                "totalMs": _safe_float(total_ms),
                "total": int(total) if total is not None else None,
                "viewZoom": _safe_float(view_zoom),
            }
            for ts_ms, engine_v, endpoint_v, mode_v, level, total_ms, total, view_zoom in rows
        ]

    def reset(self) -> None:
        # Stop the writer first so it can't write to a closed connection, then drop the file.
        self.stop(timeout_s=2.0)
        with self._lock:
            try:
                self.conn.close()
            except duckdb.Error:
                pass
            self.path.unlink(missing_ok=True)

    def _run(self) -> None:
        self.ensure_schema()
        batch: list[dict[str, Any]] = []
        last_flush = time.time()

        def flush_batch() -> None:
            nonlocal batch
            if not batch:
                return
            with self._lock:
                self.conn.executemany(
                    INSERT_EVENTS_SQL,
                    [
                        (
                            e["ts_ms"],
                            e["endpoint"],
                            e["engine"],
                            e["mode"],
                            e["level"],
                            e["view_zoom"],
                            e["north"],
                            e["south"],
                            e["east"],
                            e["west"],
                            e["total"],
                            e["stats_json"],
                        )
                        for e in batch
                    ],
                )
                # Make results visible to readers immediately.
                try:
                    self.conn.execute("CHECKPOINT;")
                except duckdb.Error:
                    pass
            batch = []

        while not self._stop.is_set():
            try:
                e = self._q.get(timeout=0.1)
            except queue.Empty:
                e = None

            if e is not None:
                batch.append(e)
                self._q.task_done()

            # Flush on size or time.
            now = time.time()
            if len(batch) >= 250 or (batch and (now - last_flush) >= 0.5):
                flush_batch()
                last_flush = now

        # Drain remaining
        try:
            while True:
                e = self._q.get_nowait()
                batch.append(e)
                self._q.task_done()
        except queue.Empty:
            pass
        flush_batch()
