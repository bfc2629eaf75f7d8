from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest

from automated_tasks.core.config import ConfigurationError, Settings
from automated_tasks.services.repository import (
    DirectoriesRepository,
    OrganisationsRepository,
    RepositoryUnavailableError,
    UserRecord,
    generated_test_filter,
)


class FakeTransaction:
    def __init__(self, log: list[str]) -> None:
        self.log = log

    async def __aenter__(self) -> None:
        self.log.append("begin")

    async def __aexit__(self, exc_type: Any, *exc_info: Any) -> None:
        self.log.append("rollback" if exc_type else "commit")


class FakeConnection:
    def __init__(self, pool: FakePool) -> None:
        self.pool = pool

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self.pool.log)

    async def execute(self, query: str, *args: Any) -> str:
        self.pool.executed.append((" ".join(query.split()), args))
        return "DELETE 1"


class FakeAcquire:
    def __init__(self, pool: FakePool) -> None:
        self.pool = pool

    async def __aenter__(self) -> FakeConnection:
        return FakeConnection(self.pool)

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class FakePool:
    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self.rows = rows or []
        self.fetched: list[tuple[str, tuple[Any, ...]]] = []
        self.executed: list[tuple[str, tuple[Any, ...]]] = []
        self.log: list[str] = []
        self.closed = False

    async def fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        self.fetched.append((" ".join(query.split()), args))
        return self.rows

    def acquire(self) -> FakeAcquire:
        return FakeAcquire(self)

    async def close(self) -> None:
        self.closed = True


def test_generated_test_filter_matches_every_known_name_pattern() -> None:
    where, args = generated_test_filter('"firstName"', '"lastName"')

    assert where == (
        "email like $1 and ("
        '("firstName" = $2 and "lastName" = $3) or '
        '("firstName" = $4 and "lastName" = $5) or '
        '("firstName" like $6 and "lastName" like $7) or '
        '("firstName" like $8 and "lastName" like $9))'
    )
    assert args == [
        "%mailosaur%",
        "CreateAccount",
        "Test",
        "Selenium_InviteUserTest",
        "Test",
        "InviteUserTest %",
        "AutomationTest %",
        "SeleniumInviteUserTest%",
        "Test%",
    ]


def test_generated_test_filter_compares_names_with_underscores_exactly() -> None:
    where, args = generated_test_filter("given_name", "family_name")

    position = args.index("Selenium_InviteUserTest") + 1
    assert f"given_name = ${position}" in where
    assert f"given_name like ${position}" not in where


def test_find_inactive_users_returns_active_users_past_the_cutoff() -> None:
    pool = FakePool([{"id": "user-1", "email": "a@example.com"}])
    repository = DirectoriesRepository("postgresql://directories", pool=pool)
    cutoff = datetime(2024, 1, 1, tzinfo=timezone.utc)

    users = asyncio.run(repository.find_inactive_users(cutoff))

    assert users == [UserRecord(id="user-1", email="a@example.com")]
    query, args = pool.fetched[0]
    assert "where status = 1" in query
    assert 'or (last_login is null and "createdAt" < $1)' in query
    assert args == (cutoff,)


def test_find_generated_test_user_ids_uses_user_name_columns() -> None:
    pool = FakePool([{"id": "user-1"}, {"id": "user-2"}])
    repository = DirectoriesRepository("postgresql://directories", pool=pool)

    assert asyncio.run(repository.find_generated_test_user_ids()) == ["user-1", "user-2"]
    query, args = pool.fetched[0]
    assert query.startswith('select sub::text as id from "user" where email like $1')
    assert "(given_name = $2 and family_name = $3)" in query
    assert "(given_name like $8 and family_name like $9)" in query
    assert len(args) == 9


def test_find_unresolved_invitation_ids_filters_open_invitations() -> None:
    pool = FakePool([{"id": "inv-1"}])
    repository = DirectoriesRepository("postgresql://directories", pool=pool)
    cutoff = datetime(2026, 1, 1, tzinfo=timezone.utc)

    assert asyncio.run(repository.find_unresolved_invitation_ids(cutoff)) == ["inv-1"]
    query, _ = pool.fetched[0]
    assert 'where "createdAt" < $1 and uid is null and completed = false and deactivated = false' in query


def test_delete_users_removes_policy_rows_then_users_in_one_transaction() -> None:
    pool = FakePool()
    repository = DirectoriesRepository("postgresql://directories", pool=pool)

    asyncio.run(repository.delete_users(["user-1", "user-2"]))

    assert pool.log == ["begin", "commit"]
    assert pool.executed == [
        ("delete from user_password_policy where uid = any($1::uuid[])", (["user-1", "user-2"],)),
        ('delete from "user" where sub = any($1::uuid[])', (["user-1", "user-2"],)),
    ]


def test_delete_invitations_removes_callbacks_first() -> None:
    pool = FakePool()
    repository = DirectoriesRepository("postgresql://directories", pool=pool)

    asyncio.run(repository.delete_invitations(["inv-1"]))

    assert [query for query, _ in pool.executed] == [
        'delete from invitation_callback where "invitationId" = any($1::uuid[])',
        "delete from invitation where id = any($1::uuid[])",
    ]


def test_delete_user_records_clears_organisation_tables() -> None:
    pool = FakePool()
    repository = OrganisationsRepository("postgresql://organisations", pool=pool)

    asyncio.run(repository.delete_user_records(["user-1"]))

    assert [query.split(" where ")[0] for query, _ in pool.executed] == [
        "delete from user_banners",
        "delete from user_organisation_requests",
        "delete from user_service_requests",
    ]


def test_deletes_with_no_ids_do_nothing() -> None:
    pool = FakePool()

    asyncio.run(OrganisationsRepository("postgresql://organisations", pool=pool).delete_user_records([]))

    assert pool.executed == []
    assert pool.log == []


def test_close_releases_the_pool() -> None:
    pool = FakePool()
    repository = DirectoriesRepository("postgresql://directories", pool=pool)

    asyncio.run(repository.close())

    assert pool.closed is True


def test_missing_database_url_is_reported() -> None:
    with pytest.raises(RepositoryUnavailableError):
        asyncio.run(DirectoriesRepository(None).find_generated_test_user_ids())

    with pytest.raises(ConfigurationError, match="^AUTOMATED_TASKS_DATABASE_ORGANISATIONS_URL is missing"):
        OrganisationsRepository.from_settings(Settings(database_organisations_url=None))


def test_from_settings_uses_pool_sizes() -> None:
    settings = Settings(database_directories_url="postgresql://directories", database_pool_max_size=3)

    repository = DirectoriesRepository.from_settings(settings)

    assert isinstance(repository, DirectoriesRepository)
    assert (repository.database_url, repository.min_pool_size, repository.max_pool_size) == (
        "postgresql://directories",
        1,
        3,
    )
