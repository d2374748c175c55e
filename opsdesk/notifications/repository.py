from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import asyncpg

from opsdesk.services.postgres import translate_errors


@dataclass(slots=True)
class NotificationRecord:
    """In-app notification addressed to a single user."""

    user_id: int
    title: str
    message: str
    type: str
    related_id: int | None
    related_type: str = "ticket"


class NotificationRepository:
    """Persistence for in-app notifications and their recipients."""

    _CREATE_NOTIFICATIONS_SQL = """
    CREATE TABLE IF NOT EXISTS notifications (
        id BIGSERIAL PRIMARY KEY,
        user_id BIGINT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        type TEXT NOT NULL,
        related_id BIGINT,
        related_type TEXT,
        is_read BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _RECIPIENTS_SQL = """
    SELECT u.id
    FROM users u
    JOIN roles r ON u.role_id = r.id
    WHERE u.is_active = true AND r.name = ANY($1::text[])
    ORDER BY u.id
    """

    _INSERT_NOTIFICATION_SQL = """
    INSERT INTO notifications (user_id, title, message, type, related_id, related_type)
    VALUES ($1, $2, $3, $4, $5, $6)
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with translate_errors("Creating notification schema"):
            async with self._pool.acquire() as connection:
                await connection.execute(self._CREATE_NOTIFICATIONS_SQL)

    async def recipients(self, role_names: Sequence[str]) -> list[int]:
        async with translate_errors("Loading notification recipients"):
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(self._RECIPIENTS_SQL, list(role_names))
        return [int(row["id"]) for row in rows]

    async def create_bulk(self, records: Sequence[NotificationRecord]) -> None:
        if not records:
            return
        async with translate_errors("Inserting notifications"):
            async with self._pool.acquire() as connection:
                await connection.executemany(
                    self._INSERT_NOTIFICATION_SQL,
                    [
                        (
                            record.user_id,
                            record.title,
                            record.message,
                            record.type,
                            record.related_id,
                            record.related_type,
                        )
                        for record in records
                    ],
                )
