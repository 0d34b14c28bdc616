"""
PostgreSQL lookup adapters for the Entity Access service.

Read-only. Every query is keyed by an identifier and served by an index on
the owning table; none of them scan a whole table. Query failures are not
caught: a broken database has to surface as a 5xx, not as a denial.
"""

from typing import List, Optional

import asyncpg

from shared.errors import AccessLayerException
from shared.logging import get_logger
from .ports import (
    ContactRecord, WorkerRecord, EmployerContactRecord, ProviderContactRecord,
    WorkerBenefitRecord, EmploymentRecord, EntityDirectory, PermissionChecker,
)


class PostgresEntityDirectory(EntityDirectory):
    """Entity directory over the administrative database."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("entity_access.lookups.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )
            self.logger.info("PostgreSQL entity directory started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL entity directory", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL entity directory stopped")

    async def health_check(self) -> bool:
        if not self.pool:
            return False
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1

    async def get_contact(self, contact_id: str) -> Optional[ContactRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, email FROM contacts WHERE id = $1",
                contact_id
            )
        return ContactRecord(id=str(row["id"]), email=row["email"]) if row else None

    async def get_contact_by_email(self, email: str) -> Optional[ContactRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, email FROM contacts WHERE lower(email) = lower($1) LIMIT 1",
                email
            )
        return ContactRecord(id=str(row["id"]), email=row["email"]) if row else None

    async def get_worker(self, worker_id: str) -> Optional[WorkerRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, contact_id FROM workers WHERE id = $1",
                worker_id
            )
        return _worker(row) if row else None

    async def get_worker_by_contact_id(self, contact_id: str) -> Optional[WorkerRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, contact_id FROM workers WHERE contact_id = $1 LIMIT 1",
                contact_id
            )
        return _worker(row) if row else None

    async def list_employer_contacts_by_employer(self, employer_id: str) -> List[EmployerContactRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT employer_id, contact_id FROM employer_contacts WHERE employer_id = $1",
                employer_id
            )
        return [
            EmployerContactRecord(employer_id=str(row["employer_id"]), contact_id=str(row["contact_id"]))
            for row in rows
        ]

    async def list_provider_contacts_by_contact(self, contact_id: str) -> List[ProviderContactRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT provider_id, contact_id FROM trust_provider_contacts WHERE contact_id = $1",
                contact_id
            )
        return [
            ProviderContactRecord(provider_id=str(row["provider_id"]), contact_id=str(row["contact_id"]))
            for row in rows
        ]

    async def list_active_benefits_by_worker(self, worker_id: str) -> List[WorkerBenefitRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, worker_id, provider_id
                FROM trust_worker_benefits
                WHERE worker_id = $1 AND active
                """,
                worker_id
            )
        return [
            WorkerBenefitRecord(
                worker_id=str(row["worker_id"]),
                provider_id=str(row["provider_id"]),
                benefit_id=str(row["id"])
            )
            for row in rows
        ]

    async def list_employments_by_worker(self, worker_id: str) -> List[EmploymentRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT DISTINCT worker_id, employer_id FROM worker_employments WHERE worker_id = $1",
                worker_id
            )
        return [
            EmploymentRecord(worker_id=str(row["worker_id"]), employer_id=str(row["employer_id"]))
            for row in rows
        ]


class PostgresPermissionChecker(PermissionChecker):
    """Role based permission checks sharing the directory's pool."""

    def __init__(self, directory: PostgresEntityDirectory):
        self.directory = directory

    async def has_permission(self, user_id: str, permission: str) -> bool:
        async with self.directory.pool.acquire() as conn:
            found = await conn.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1
                    FROM user_roles ur
                    JOIN role_permissions rp ON rp.role_id = ur.role_id
                    WHERE ur.user_id = $1 AND rp.permission_key = $2
                )
                """,
                user_id,
                permission
            )
        return bool(found)


def _worker(row) -> WorkerRecord:
    contact_id = row["contact_id"]
    return WorkerRecord(id=str(row["id"]), contact_id=str(contact_id) if contact_id is not None else None)
