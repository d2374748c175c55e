from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

import asyncpg

from opsdesk.services.postgres import translate_errors

from .models import NewTicket, Ticket, TicketFilters
from .state import TicketStatus, VerificationStatus

_TICKET_COLUMNS = """
    id, ticket_num, title, description, type, priority, status, completion,
    created_by, assigned_to, asset_id, is_internal, verification_status,
    verification_notes, verified_by, verified_at, created_at, updated_at, closed_at
"""

# Serialises ticket number allocation across concurrent creates.
_TICKET_NUMBER_LOCK_KEY = 7_301_001


def format_ticket_number(prefix: str, year: int, sequence: int) -> str:
    """Render a human ticket number such as ``TCK-2025-0001``."""

    return f"{prefix}-{year}-{sequence:04d}"


class TicketRepository:
    """Data access layer for ticket records."""

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id BIGSERIAL PRIMARY KEY,
        ticket_num TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        description TEXT,
        type TEXT NOT NULL,
        priority TEXT NOT NULL DEFAULT 'normal',
        status TEXT NOT NULL DEFAULT 'open',
        completion INTEGER NOT NULL DEFAULT 0 CHECK (completion BETWEEN 0 AND 100),
        created_by BIGINT,
        assigned_to BIGINT,
        asset_id BIGINT,
        is_internal BOOLEAN NOT NULL DEFAULT true,
        verification_status TEXT NOT NULL DEFAULT 'not_required',
        verification_notes TEXT NOT NULL DEFAULT '',
        verified_by BIGINT,
        verified_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        closed_at TIMESTAMPTZ
    )
    """

    _CREATE_COMMENTS_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_comments (
        id BIGSERIAL PRIMARY KEY,
        ticket_id BIGINT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        author_id BIGINT,
        comment TEXT NOT NULL,
        is_internal BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _LOCK_TICKET_NUMBERS_SQL = "SELECT pg_advisory_xact_lock($1)"

    _MAX_SEQUENCE_SQL = """
    SELECT COALESCE(MAX(split_part(ticket_num, '-', 3)::INTEGER), 0)
    FROM tickets
    WHERE ticket_num ~ ('^' || $1 || '-[0-9]+-[0-9]+$')
    """

    _INSERT_TICKET_SQL = f"""
    INSERT INTO tickets (
        ticket_num, title, description, type, priority, status, completion,
        created_by, asset_id, is_internal, verification_status, verification_notes,
        created_at, updated_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, '', $12, $12)
    RETURNING {_TICKET_COLUMNS}
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE id = $1
    """

    _LIST_TICKETS_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE 1=1
    """

    # closed_at is only ever filled in, never overwritten.
    _PERSIST_TICKET_SQL = f"""
    UPDATE tickets
    SET title = $2,
        description = $3,
        type = $4,
        priority = $5,
        status = $6,
        completion = $7,
        assigned_to = $8,
        asset_id = $9,
        is_internal = $10,
        verification_status = $11,
        verification_notes = $12,
        verified_by = $13,
        verified_at = $14,
        closed_at = COALESCE(closed_at, $15),
        updated_at = $16
    WHERE id = $1
    RETURNING {_TICKET_COLUMNS}
    """

    _DELETE_TICKET_SQL = """
    DELETE FROM tickets WHERE id = $1 RETURNING id
    """

    _USER_EXISTS_SQL = "SELECT EXISTS(SELECT 1 FROM users WHERE id = $1)"

    _ASSET_EXISTS_SQL = "SELECT EXISTS(SELECT 1 FROM assets WHERE id = $1)"

    def __init__(self, pool: asyncpg.Pool, *, ticket_number_prefix: str = "TCK") -> None:
        self._pool = pool
        self._prefix = ticket_number_prefix

    async def ensure_schema(self) -> None:
        async with translate_errors("Creating ticket schema"):
            async with self._pool.acquire() as connection:
                await connection.execute(self._CREATE_TICKETS_SQL)
                await connection.execute(self._CREATE_COMMENTS_SQL)

    async def create_ticket(
        self,
        fields: NewTicket,
        *,
        created_by: int,
        status: TicketStatus,
        completion: int,
        verification_status: VerificationStatus,
        created_at: datetime,
    ) -> Ticket:
        async with translate_errors("Inserting ticket"):
            async with self._pool.acquire() as connection:
                async with connection.transaction():
                    await connection.execute(self._LOCK_TICKET_NUMBERS_SQL, _TICKET_NUMBER_LOCK_KEY)
                    last_sequence = await connection.fetchval(self._MAX_SEQUENCE_SQL, self._prefix)
                    ticket_num = format_ticket_number(
                        self._prefix, created_at.year, int(last_sequence or 0) + 1
                    )
                    row = await connection.fetchrow(
                        self._INSERT_TICKET_SQL,
                        ticket_num,
                        fields.title,
                        fields.description,
                        fields.type,
                        fields.priority,
                        status.value,
                        completion,
                        created_by,
                        fields.asset_id,
                        fields.is_internal,
                        verification_status.value,
                        created_at,
                    )
        if row is None:
            raise RuntimeError("Failed to insert ticket")
        return self._row_to_ticket(row)

    async def get_ticket(self, ticket_id: int) -> Ticket | None:
        async with translate_errors("Loading ticket"):
            async with self._pool.acquire() as connection:
                row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def list_tickets(self, filters: TicketFilters | None = None) -> list[Ticket]:
        filters = filters or TicketFilters()
        query = self._LIST_TICKETS_SQL
        args: list[Any] = []

        for column, value in (
            ("status", filters.status.value if filters.status else None),
            ("type", filters.type),
            ("priority", filters.priority),
            ("assigned_to", filters.assigned_to),
            ("created_by", filters.created_by),
        ):
            if value is None:
                continue
            args.append(value)
            query += f" AND {column} = ${len(args)}"

        query += " ORDER BY created_at DESC"
        if filters.limit > 0:
            args.append(filters.limit)
            query += f" LIMIT ${len(args)}"
            if filters.offset > 0:
                args.append(filters.offset)
                query += f" OFFSET ${len(args)}"

        async with translate_errors("Listing tickets"):
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(query, *args)
        return [self._row_to_ticket(row) for row in rows]

    async def persist_ticket(self, ticket: Ticket) -> Ticket | None:
        """Write every mutable field of ``ticket`` in a single transactional update."""

        async with translate_errors("Persisting ticket"):
            async with self._pool.acquire() as connection:
                async with connection.transaction():
                    row = await connection.fetchrow(
                        self._PERSIST_TICKET_SQL,
                        ticket.id,
                        ticket.title,
                        ticket.description,
                        ticket.type,
                        ticket.priority,
                        ticket.status.value,
                        ticket.completion,
                        ticket.assigned_to,
                        ticket.asset_id,
                        ticket.is_internal,
                        ticket.verification_status.value,
                        ticket.verification_notes,
                        ticket.verified_by,
                        ticket.verified_at,
                        ticket.closed_at,
                        ticket.updated_at,
                    )
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def delete_ticket(self, ticket_id: int) -> bool:
        async with translate_errors("Deleting ticket"):
            async with self._pool.acquire() as connection:
                row = await connection.fetchrow(self._DELETE_TICKET_SQL, ticket_id)
        return row is not None

    async def user_exists(self, user_id: int) -> bool:
        async with translate_errors("Checking user"):
            async with self._pool.acquire() as connection:
                return bool(await connection.fetchval(self._USER_EXISTS_SQL, user_id))

    async def asset_exists(self, asset_id: int) -> bool:
        async with translate_errors("Checking asset"):
            async with self._pool.acquire() as connection:
                return bool(await connection.fetchval(self._ASSET_EXISTS_SQL, asset_id))

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        return Ticket(
            id=int(row["id"]),
            ticket_num=str(row["ticket_num"]),
            title=str(row["title"]),
            description=str(row["description"] or ""),
            type=str(row["type"]),
            priority=str(row["priority"]),
            status=TicketStatus(str(row["status"])),
            completion=int(row["completion"]),
            created_by=_optional_int(row["created_by"]),
            assigned_to=_optional_int(row["assigned_to"]),
            asset_id=_optional_int(row["asset_id"]),
            is_internal=bool(row["is_internal"]),
            verification_status=VerificationStatus(str(row["verification_status"])),
            verification_notes=str(row["verification_notes"] or ""),
            verified_by=_optional_int(row["verified_by"]),
            verified_at=_optional_datetime(row["verified_at"]),
            created_at=_ensure_datetime(row["created_at"]),
            updated_at=_ensure_datetime(row["updated_at"]),
            closed_at=_optional_datetime(row["closed_at"]),
        )


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromisoformat(str(value))


def _optional_datetime(value: Any) -> datetime | None:
    return None if value is None else _ensure_datetime(value)
