from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from automated_tasks.core.config import Settings, require_settings


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


@dataclass(frozen=True, slots=True)
class UserRecord:
    id: str
    email: str


@dataclass(frozen=True, slots=True)
class NamePattern:
    first_name: str
    last_name: str
    wildcard: bool = False

    @property
    def operator(self) -> str:
        # Exact names contain "_", which like would treat as a wildcard.
        return "like" if self.wildcard else "="


# Names given to accounts by the automated test suites.
GENERATED_TEST_NAME_PATTERNS: tuple[NamePattern, ...] = (
    NamePattern("CreateAccount", "Test"),
    NamePattern("Selenium_InviteUserTest", "Test"),
    NamePattern("InviteUserTest %", "AutomationTest %", wildcard=True),
    NamePattern("SeleniumInviteUserTest%", "Test%", wildcard=True),
)
GENERATED_TEST_EMAIL_PATTERN = "%mailosaur%"


def generated_test_filter(first_name_column: str, last_name_column: str, first_param: int = 1) -> tuple[str, list[str]]:
    """Build the where clause matching generated test accounts and its positional args."""
    clauses: list[str] = []
    args: list[str] = [GENERATED_TEST_EMAIL_PATTERN]
    position = first_param + 1
    for pattern in GENERATED_TEST_NAME_PATTERNS:
        op = pattern.operator
        clauses.append(f"({first_name_column} {op} ${position} and {last_name_column} {op} ${position + 1})")
        args.extend((pattern.first_name, pattern.last_name))
        position += 2
    return f"email like ${first_param} and ({' or '.join(clauses)})", args


class PostgresRepository:
    database_setting: str = ""

    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
        *,
        pool: Any | None = None,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: Any | None = pool

    @classmethod
    def from_settings(cls, settings: Settings) -> PostgresRepository:
        require_settings(settings, (cls.database_setting,), "database")
        return cls(
            getattr(settings, cls.database_setting),
            settings.database_pool_min_size,
            settings.database_pool_max_size,
        )

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def _get_pool(self) -> Any:
        if self._pool is not None:
            return self._pool

        if not self.database_url:
            raise RepositoryUnavailableError(f"{self.database_setting} is required")

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _delete_where_any(self, statements: Sequence[str], ids: Sequence[str]) -> None:
        if not ids:
            return
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for statement in statements:
                    await conn.execute(statement, list(ids))


class DirectoriesRepository(PostgresRepository):
    database_setting = "database_directories_url"

    async def find_inactive_users(self, cutoff: datetime) -> list[UserRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select sub::text as id, email
            from "user"
            where status = 1
              and (
                last_login < $1
                or (last_login is null and "createdAt" < $1)
              )
            order by "createdAt"
            """,
            cutoff,
        )
        return [UserRecord(id=row["id"], email=row["email"]) for row in rows]

    async def find_generated_test_user_ids(self) -> list[str]:
        where, args = generated_test_filter("given_name", "family_name")
        pool = await self._get_pool()
        rows = await pool.fetch(f'select sub::text as id from "user" where {where}', *args)
        return [row["id"] for row in rows]

    async def find_generated_test_invitation_ids(self) -> list[str]:
        where, args = generated_test_filter('"firstName"', '"lastName"')
        pool = await self._get_pool()
        rows = await pool.fetch(f"select id::text as id from invitation where {where}", *args)
        return [row["id"] for row in rows]

    async def find_unresolved_invitation_ids(self, cutoff: datetime) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select id::text as id
            from invitation
            where "createdAt" < $1
              and uid is null
              and completed = false
              and deactivated = false
            """,
            cutoff,
        )
        return [row["id"] for row in rows]

    async def delete_users(self, user_ids: Sequence[str]) -> None:
        await self._delete_where_any(
            (
                "delete from user_password_policy where uid = any($1::uuid[])",
                'delete from "user" where sub = any($1::uuid[])',
            ),
            user_ids,
        )

    async def delete_invitations(self, invitation_ids: Sequence[str]) -> None:
        await self._delete_where_any(
            (
                'delete from invitation_callback where "invitationId" = any($1::uuid[])',
                "delete from invitation where id = any($1::uuid[])",
            ),
            invitation_ids,
        )


class OrganisationsRepository(PostgresRepository):
    database_setting = "database_organisations_url"

    async def delete_user_records(self, user_ids: Sequence[str]) -> None:
        await self._delete_where_any(
            (
                'delete from user_banners where "userId" = any($1::uuid[])',
                "delete from user_organisation_requests where user_id = any($1::uuid[])",
                "delete from user_service_requests where user_id = any($1::uuid[])",
            ),
            user_ids,
        )
