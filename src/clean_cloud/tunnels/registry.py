"""Tunnel records, one per organization."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clean_cloud.common.exceptions import ConflictError
from clean_cloud.tunnels.cloudflare import TunnelCreateResult
from clean_cloud.tunnels.models import STATUS_ACTIVE, STATUS_ROTATING, TunnelModel


class TunnelRegistry:
    """Reads and writes tunnel rows.

    ``org_lock`` serialises check-then-act sequences for one organization
    within this process. Across processes the UNIQUE ``org_id`` column is
    the guard: a losing insert raises ConflictError.
    """

    def __init__(self):
        # org_id -> (lock, number of tasks holding or waiting on it)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def org_lock(self, org_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(org_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[org_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            _, users = self._locks[org_id]
            if users <= 1:
                del self._locks[org_id]
            else:
                self._locks[org_id] = (lock, users - 1)

    async def get_by_org(
        self, session: AsyncSession, org_id: str
    ) -> TunnelModel | None:
        result = await session.execute(
            select(TunnelModel).where(TunnelModel.org_id == org_id)
        )
        return result.scalar_one_or_none()

    async def add(
        self, session: AsyncSession, org_id: str, created: TunnelCreateResult
    ) -> TunnelModel:
        """Insert the org's tunnel row.

        On a uniqueness violation the session's transaction is rolled back,
        so callers should commit earlier work first.

        Raises:
            ConflictError: If the organization (or hostname) already has one.
        """
        tunnel = TunnelModel(
            org_id=org_id,
            provider_tunnel_id=created.tunnel_id,
            hostname=created.hostname,
            dns_record_id=created.dns_record_id,
            token=created.token,
            status=STATUS_ACTIVE,
        )
        session.add(tunnel)
        try:
            await session.flush()
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError("Tunnel already exists for this organization") from exc
        return tunnel

    async def mark_rotating(self, session: AsyncSession, tunnel: TunnelModel) -> TunnelModel:
        tunnel.status = STATUS_ROTATING
        await session.flush()
        return tunnel

    async def replace_endpoint(
        self, session: AsyncSession, tunnel: TunnelModel, created: TunnelCreateResult
    ) -> TunnelModel:
        """Point an existing row at a new provider tunnel (same row id)."""
        tunnel.provider_tunnel_id = created.tunnel_id
        tunnel.hostname = created.hostname
        tunnel.dns_record_id = created.dns_record_id
        tunnel.token = created.token
        tunnel.status = STATUS_ACTIVE
        await session.flush()
        return tunnel

    async def remove(self, session: AsyncSession, tunnel: TunnelModel) -> None:
        await session.delete(tunnel)
        await session.flush()
