"""Permission lookups and the role capability tiers derived from them."""

from __future__ import annotations

import logging
from typing import Protocol

import asyncpg

from opsdesk.services.postgres import translate_errors

from .models import RoleCapability

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_PERMISSION = "system:admin"
DEFAULT_ELEVATED_PERMISSION = "tickets:assign"


class PermissionLookup(Protocol):
    async def role_has_permission(self, role_id: int, permission: str) -> bool:
        ...


class PermissionRepository:
    """Reads role permission bundles from ``role_permissions``."""

    _HAS_PERMISSION_SQL = """
    SELECT EXISTS(
        SELECT 1 FROM role_permissions rp
        JOIN permissions p ON rp.permission_id = p.id
        WHERE rp.role_id = $1 AND p.name = $2
    )
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def role_has_permission(self, role_id: int, permission: str) -> bool:
        async with translate_errors("Permission lookup"):
            async with self._pool.acquire() as connection:
                return bool(await connection.fetchval(self._HAS_PERMISSION_SQL, role_id, permission))


class PermissionResolver:
    """Answer whether a role holds a named ``resource:action`` permission.

    A failed lookup raises :class:`~opsdesk.tickets.errors.DependencyError`; it is
    never reported as a missing permission.
    """

    def __init__(self, lookup: PermissionLookup) -> None:
        self._lookup = lookup

    async def has_permission(self, role_id: int, permission: str) -> bool:
        granted = await self._lookup.role_has_permission(role_id, permission)
        logger.debug("Role %s %s permission %s", role_id, "holds" if granted else "lacks", permission)
        return granted


class CapabilityResolver:
    """Map a role onto :class:`RoleCapability` using its permission bundle."""

    def __init__(
        self,
        resolver: PermissionResolver,
        *,
        admin_permission: str = DEFAULT_ADMIN_PERMISSION,
        elevated_permission: str = DEFAULT_ELEVATED_PERMISSION,
    ) -> None:
        self._resolver = resolver
        self.admin_permission = admin_permission
        self.elevated_permission = elevated_permission

    @property
    def permissions(self) -> PermissionResolver:
        return self._resolver

    async def resolve(self, role_id: int) -> RoleCapability:
        if await self._resolver.has_permission(role_id, self.admin_permission):
            return RoleCapability.ADMINISTRATIVE
        if await self._resolver.has_permission(role_id, self.elevated_permission):
            return RoleCapability.ELEVATED
        return RoleCapability.STANDARD
