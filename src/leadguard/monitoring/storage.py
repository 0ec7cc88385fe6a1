"""Persistence for security events.

:class:`PostgresSecurityEventStore` is the production backend and follows
the usual ``asyncpg.Pool`` patterns: one pool, connections acquired per call,
schema created on :meth:`initialize`. :class:`InMemorySecurityEventStore`
keeps the same contract for development and tests.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID, uuid4

import asyncpg  # type: ignore[import-not-found,import-untyped]

from leadguard.logging import get_logger
from leadguard.security.models import SecurityEvent, SecurityEventType, Severity

log = get_logger("leadguard.monitoring.storage")

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS security_incidents (
    id           UUID         PRIMARY KEY,
    type         VARCHAR(40)  NOT NULL,
    severity     VARCHAR(10)  NOT NULL
                 CHECK (severity IN ('low', 'medium', 'high', 'critical')),
    description  TEXT         NOT NULL,
    lead_id      BIGINT,
    message_id   TEXT,
    user_id      BIGINT,
    metadata     JSONB        NOT NULL DEFAULT '{}'::jsonb,
    resolved     BOOLEAN      NOT NULL DEFAULT FALSE,
    created_at   TIMESTAMPTZ  NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_security_incidents_created_at
    ON security_incidents (created_at DESC);
CREATE INDEX IF NOT EXISTS idx_security_incidents_lead_id
    ON security_incidents (lead_id, created_at DESC);
"""


def _row_to_event(row: asyncpg.Record) -> SecurityEvent:
    """Convert an ``asyncpg.Record`` to a :class:`SecurityEvent`."""
    metadata = row["metadata"]
    if isinstance(metadata, str):
        metadata = json.loads(metadata)
    return SecurityEvent(
        id=str(row["id"]),
        type=SecurityEventType(row["type"]),
        severity=Severity(row["severity"]),
        description=row["description"],
        lead_id=row["lead_id"],
        message_id=row["message_id"],
        user_id=row["user_id"],
        metadata=metadata or {},
        timestamp=row["created_at"],
        resolved=row["resolved"],
    )


class SecurityEventStore(ABC):
    """Append-only log of security events."""

    async def initialize(self) -> None:  # noqa: B027
        """Prepare the backend."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""

    @abstractmethod
    async def save(self, event: SecurityEvent) -> str:
        """Persist *event* and return its id."""
        raise NotImplementedError

    @abstractmethod
    async def list_events(
        self,
        since: datetime,
        until: datetime | None = None,
        *,
        lead_id: int | None = None,
        limit: int | None = None,
    ) -> list[SecurityEvent]:
        """Return events created in ``[since, until]``, newest first."""
        raise NotImplementedError


class InMemorySecurityEventStore(SecurityEventStore):
    """Process-local event log."""

    def __init__(self) -> None:
        self._events: list[SecurityEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    async def save(self, event: SecurityEvent) -> str:
        event.id = event.id or str(uuid4())
        self._events.append(event)
        return event.id

    async def list_events(
        self,
        since: datetime,
        until: datetime | None = None,
        *,
        lead_id: int | None = None,
        limit: int | None = None,
    ) -> list[SecurityEvent]:
        matched = [
            event
            for event in self._events
            if event.timestamp >= since
            and (until is None or event.timestamp <= until)
            and (lead_id is None or event.lead_id == lead_id)
        ]
        matched.sort(key=lambda event: event.timestamp, reverse=True)
        return matched[:limit] if limit is not None else matched


class PostgresSecurityEventStore(SecurityEventStore):
    """PostgreSQL-backed event log in the ``security_incidents`` table."""

    def __init__(
        self,
        dsn: str | None = None,
        *,
        pool: asyncpg.Pool | None = None,  # type: ignore[type-arg]
    ) -> None:
        """Initialise with either a DSN or an existing pool.

        Args:
            dsn: PostgreSQL connection string, used to create a pool.
            pool: An existing ``asyncpg.Pool`` shared with the application.
        """
        if dsn is None and pool is None:
            raise ValueError("PostgresSecurityEventStore needs a dsn or a pool")
        self._dsn = dsn
        self._pool: asyncpg.Pool | None = pool  # type: ignore[type-arg]
        self._owns_pool = pool is None

    async def initialize(self) -> None:
        """Create the connection pool if needed and ensure the schema exists."""
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(dsn=self._dsn)
                log.info("postgres_pool_created", dsn=(self._dsn or "").split("@")[-1])
            except (asyncpg.PostgresError, OSError) as exc:
                log.error("postgres_pool_creation_failed", error=str(exc))
                raise

        async with self._pool.acquire() as conn:
            await conn.execute(_SCHEMA_SQL)
        log.info("security_incidents_schema_ensured")

    async def close(self) -> None:
        """Close the pool if this store created it."""
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
            self._pool = None

    async def save(self, event: SecurityEvent) -> str:
        event_id = event.id or str(uuid4())
        async with self._pool.acquire() as conn:  # type: ignore[union-attr]
            row = await conn.fetchrow(
                """
                INSERT INTO security_incidents
                    (id, type, severity, description, lead_id,
                     message_id, user_id, metadata, resolved, created_at)
                VALUES ($1, $2, $3, $4, $5,
                        $6, $7, $8::jsonb, $9, $10)
                RETURNING id
                """,
                UUID(event_id),
                event.type.value,
                event.severity.value,
                event.description,
                event.lead_id,
                event.message_id,
                event.user_id,
                json.dumps(event.metadata, default=str),
                event.resolved,
                event.timestamp,
            )
        event.id = str(row["id"])  # type: ignore[index]
        return event.id

    async def list_events(
        self,
        since: datetime,
        until: datetime | None = None,
        *,
        lead_id: int | None = None,
        limit: int | None = None,
    ) -> list[SecurityEvent]:
        async with self._pool.acquire() as conn:  # type: ignore[union-attr]
            rows = await conn.fetch(
                """
                SELECT * FROM security_incidents
                WHERE created_at >= $1
                  AND ($2::timestamptz IS NULL OR created_at <= $2)
                  AND ($3::bigint IS NULL OR lead_id = $3)
                ORDER BY created_at DESC
                LIMIT $4
                """,
                since,
                until,
                lead_id,
                limit,
            )
        return [_row_to_event(row) for row in rows]
