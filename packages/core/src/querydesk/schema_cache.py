"""Versioned schema cache.

Holds at most one SchemaSnapshot. Readers get the current snapshot or block
while one is built; invalidate() drops it without re-introspecting, so the
next read builds a fresh snapshot with a higher version.
"""

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace

from querydesk.errors import BackendError
from querydesk_models import SchemaSnapshot, SchemaVersion, TableMeta

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("querydesk.schema_cache")


class SchemaCache:
    """Cache of the introspected database schema.

    Two locks: a short state lock guarding the snapshot fields and a build
    lock serializing introspection. invalidate() only takes the state lock,
    so it never waits for a build. A build that was in flight when
    invalidate() ran is returned to its own caller but not published.
    """

    def __init__(
        self,
        introspect: Callable[[], list[TableMeta]],
        *,
        ttl_seconds: float | None = 300.0,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._introspect = introspect
        self._ttl = ttl_seconds
        self._retry_attempts = max(retry_attempts, 1)
        self._retry_delay = retry_delay_seconds
        self._clock = clock
        self._sleep = sleep

        self._state_lock = threading.Lock()
        self._build_lock = threading.Lock()
        self._snapshot: SchemaSnapshot | None = None
        self._built_at = 0.0
        self._generation = 0
        self._version = 0

    def _is_fresh(self) -> bool:
        # Caller holds the state lock
        if self._snapshot is None:
            return False
        return self._ttl is None or self._clock() - self._built_at < self._ttl

    def peek(self) -> SchemaSnapshot | None:
        """Current snapshot, even if expired, without ever building one."""
        with self._state_lock:
            return self._snapshot

    def read(self) -> SchemaSnapshot:
        """Current snapshot, building it synchronously when absent or expired.

        Raises:
            BackendError: If introspection keeps failing and there is no
                stale snapshot to fall back to
        """
        with self._state_lock:
            if self._is_fresh():
                return self._snapshot

        with self._build_lock:
            with self._state_lock:
                # Another reader may have published while we waited
                if self._is_fresh():
                    return self._snapshot
                generation = self._generation
                stale = self._snapshot

            try:
                tables = self._introspect_with_retry()
            except BackendError as e:
                if stale is None:
                    raise
                logger.warning(
                    "Schema re-introspection failed, serving stale snapshot v%d: %s",
                    stale.version,
                    e,
                )
                return stale

            with self._state_lock:
                self._version += 1
                snapshot = SchemaSnapshot(
                    version=self._version,
                    last_modified=datetime.now(timezone.utc),
                    table_count=len(tables),
                    tables=tuple(sorted(tables, key=lambda t: (t.schema_name or "", t.name))),
                )
                if self._generation == generation:
                    self._snapshot = snapshot
                    self._built_at = self._clock()
                    logger.info(
                        "Published schema snapshot v%d (%d tables)",
                        snapshot.version,
                        snapshot.table_count,
                    )
                else:
                    logger.info(
                        "Schema snapshot v%d was invalidated during introspection; not publishing",
                        snapshot.version,
                    )
            return snapshot

    def invalidate(self) -> bool:
        """Discard the current snapshot. The next read re-introspects."""
        with self._state_lock:
            previous = self._snapshot
            self._snapshot = None
            self._generation += 1
        if previous is not None:
            logger.info("Schema cache invalidated (was v%d)", previous.version)
        else:
            logger.debug("Schema cache invalidated (no snapshot)")
        return True

    def record_samples(self, version: int, table_name: str, rows: list[dict[str, Any]]) -> None:
        """Remember distinct sample values of a table for completion.

        Ignored unless ``version`` is still the published snapshot, so samples
        never outlive the structure they were read against.
        """
        with self._state_lock:
            if self._snapshot is None or self._snapshot.version != version:
                return
            self._snapshot = self._snapshot.with_sample_rows(table_name, rows)

    def header(self) -> SchemaVersion:
        return self.read().header

    def version(self) -> int:
        return self.header().version

    def last_modified(self) -> datetime:
        return self.header().last_modified

    def table_count(self) -> int:
        return self.header().table_count

    def _introspect_with_retry(self) -> list[TableMeta]:
        with tracer.start_as_current_span("introspect_schema") as span:
            for attempt in range(1, self._retry_attempts + 1):
                span.set_attribute("schema.attempts", attempt)
                try:
                    tables = list(self._introspect())
                    span.set_attribute("schema.table_count", len(tables))
                    return tables
                except BackendError as e:
                    if attempt == self._retry_attempts:
                        span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                        raise
                    logger.warning(
                        "Schema introspection failed (attempt %d/%d): %s",
                        attempt,
                        self._retry_attempts,
                        e,
                    )
                    self._sleep(self._retry_delay)
        raise AssertionError("unreachable")
