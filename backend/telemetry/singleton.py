from __future__ import annotations

import logging
import threading

import duckdb

from telemetry.store import TelemetryStore, telemetry_enabled, telemetry_path

logger = logging.getLogger(__name__)

_STORE: TelemetryStore | None = None
_STORE_LOCK = threading.RLock()


def get_store() -> TelemetryStore | None:
    global _STORE
    if not telemetry_enabled():
        return None
    with _STORE_LOCK:
        path = telemetry_path()
        if _STORE is not None:
            # Env can point at a new path between tests or dev sessions; reopen there.
            if _STORE.path.resolve() == path.resolve():
                return _STORE
            _STORE.stop(timeout_s=2.0)
            try:
                _STORE.conn.close()
            except duckdb.Error:
                pass
            _STORE = None

        path.parent.mkdir(parents=True, exist_ok=True)
        # Writes are serialized in a single writer thread.
        conn = duckdb.connect(str(path))
        _STORE = TelemetryStore(path=path, conn=conn)
        _STORE.ensure_schema()
        _STORE.start()
        logger.info("telemetry store opened at %s", path)
        return _STORE


def reset_store() -> None:
    global _STORE
    with _STORE_LOCK:
        if _STORE is not None:
            _STORE.reset()
            _STORE = None
        else:
            telemetry_path().unlink(missing_ok=True)
