from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import pytest

from automated_tasks.jobs.base import JobContext, JobFailedError
from automated_tasks.jobs.invitations import ApiRecords, InvitationRemover
from automated_tasks.jobs.remove_unresolved_invitations import RemoveUnresolvedInvitationsJob
from automated_tasks.jobs.results import ActionError
from automated_tasks.schemas.access import ServiceRecord
from automated_tasks.schemas.organisations import OrganisationLink
from automated_tasks.services.api_client import ApiError

STARTED_AT = datetime(2026, 8, 20, 6, 0, tzinfo=timezone.utc)


def service(service_id: str, organisation_id: str) -> ServiceRecord:
    return ServiceRecord(serviceId=service_id, organisationId=organisation_id)


def link(organisation_id: str) -> OrganisationLink:
    return OrganisationLink.model_validate({"organisation": {"id": organisation_id, "name": organisation_id}})


class FakeAccessApi:
    def __init__(self, services: dict[str, Any] | None = None, delete_results: dict[str, Any] | None = None) -> None:
        self.services = services or {}
        self.delete_results = delete_results or {}
        self.deleted: list[tuple[str, str, str, str]] = []

    async def get_invitation_services(self, invitation_id: str, correlation_id: str) -> list[ServiceRecord]:
        result = self.services.get(invitation_id, [])
        if isinstance(result, Exception):
            raise result
        return result

    async def delete_invitation_service(
        self,
        invitation_id: str,
        service_id: str,
        organisation_id: str,
        correlation_id: str,
    ) -> bool:
        self.deleted.append((invitation_id, service_id, organisation_id, correlation_id))
        result = self.delete_results.get(service_id, True)
        if isinstance(result, Exception):
            raise result
        return result


class FakeOrganisationsApi:
    def __init__(self, links: dict[str, Any] | None = None, delete_results: dict[str, Any] | None = None) -> None:
        self.links = links or {}
        self.delete_results = delete_results or {}
        self.deleted: list[tuple[str, str, str]] = []

    async def get_invitation_organisations(self, invitation_id: str, correlation_id: str) -> list[OrganisationLink]:
        result = self.links.get(invitation_id, [])
        if isinstance(result, Exception):
            raise result
        return result

    async def delete_invitation_organisation(self, invitation_id: str, organisation_id: str, correlation_id: str) -> bool:
        self.deleted.append((invitation_id, organisation_id, correlation_id))
        result = self.delete_results.get(organisation_id, True)
        if isinstance(result, Exception):
            raise result
        return result


class FakeDirectoriesRepository:
    def __init__(self, invitation_ids: list[str] | None = None) -> None:
        self.invitation_ids = invitation_ids or []
        self.cutoffs: list[datetime] = []
        self.deleted_invitations: list[list[str]] = []
        self.closed = False

    async def find_unresolved_invitation_ids(self, cutoff: datetime) -> list[str]:
        self.cutoffs.append(cutoff)
        return self.invitation_ids

    async def delete_invitations(self, invitation_ids: list[str]) -> None:
        self.deleted_invitations.append(list(invitation_ids))

    async def close(self) -> None:
        self.closed = True


def remover(
    access: FakeAccessApi | None = None,
    organisations: FakeOrganisationsApi | None = None,
    repository: FakeDirectoriesRepository | None = None,
) -> InvitationRemover:
    return InvitationRemover(
        access or FakeAccessApi(),  # type: ignore[arg-type]
        organisations or FakeOrganisationsApi(),  # type: ignore[arg-type]
        repository or FakeDirectoriesRepository(),  # type: ignore[arg-type]
    )


def test_get_invitation_api_records_collects_services_and_organisations() -> None:
    access = FakeAccessApi(services={"inv-1": [service("svc-1", "org-1")]})
    organisations = FakeOrganisationsApi(links={"inv-1": [link("org-1"), link("org-2")]})

    records = asyncio.run(remover(access, organisations).get_invitation_api_records("inv-1", "corr"))

    assert [record.service_id for record in records.services] == ["svc-1"]
    assert [item.organisation.id for item in records.organisations] == ["org-1", "org-2"]


def test_get_invitation_api_records_reports_every_failure() -> None:
    access = FakeAccessApi(services={"inv-1": ApiError("access down")})
    organisations = FakeOrganisationsApi(links={"inv-1": ApiError("organisations down")})

    with pytest.raises(ActionError) as exc_info:
        asyncio.run(remover(access, organisations).get_invitation_api_records("inv-1", "corr"))

    assert str(exc_info.value) == "access down; organisations down"


def test_delete_invitation_api_records_deletes_every_grant() -> None:
    access = FakeAccessApi()
    organisations = FakeOrganisationsApi()
    records = ApiRecords(services=[service("svc-1", "org-1"), service("svc-2", "org-2")], organisations=[link("org-1")])

    result = asyncio.run(remover(access, organisations).delete_invitation_api_records("inv-1", records, "corr"))

    assert result.object == "inv-1"
    assert result.success is True
    assert access.deleted == [("inv-1", "svc-1", "org-1", "corr"), ("inv-1", "svc-2", "org-2", "corr")]
    assert organisations.deleted == [("inv-1", "org-1", "corr")]


def test_delete_invitation_api_records_fails_when_any_delete_is_refused() -> None:
    access = FakeAccessApi(delete_results={"svc-2": False})
    records = ApiRecords(services=[service("svc-1", "org-1"), service("svc-2", "org-1")])

    result = asyncio.run(remover(access).delete_invitation_api_records("inv-1", records, "corr"))

    assert result.success is False


def test_delete_invitation_api_records_raises_after_every_delete_settled() -> None:
    access = FakeAccessApi(delete_results={"svc-1": ApiError("svc failed")})
    organisations = FakeOrganisationsApi(delete_results={"org-2": ApiError("org failed")})
    records = ApiRecords(
        services=[service("svc-1", "org-1")],
        organisations=[link("org-1"), link("org-2")],
    )

    with pytest.raises(ActionError) as exc_info:
        asyncio.run(remover(access, organisations).delete_invitation_api_records("inv-1", records, "corr"))

    assert str(exc_info.value) == "svc failed; org failed"
    assert len(organisations.deleted) == 2


def test_invitations_without_api_records_count_as_removed() -> None:
    result = asyncio.run(remover().remove("inv-1", "corr"))

    assert result.success is True


def test_unresolved_invitations_are_selected_with_a_three_month_cutoff(caplog) -> None:
    caplog.set_level(logging.INFO)
    repository = FakeDirectoriesRepository(["inv-1", "inv-2", "inv-3"])
    access = FakeAccessApi(services={"inv-2": [service("svc-1", "org-1")]}, delete_results={"svc-1": False})
    job = RemoveUnresolvedInvitationsJob(access, FakeOrganisationsApi(), repository)  # type: ignore[arg-type]

    asyncio.run(job.invoke(JobContext(job_name=job.name, invocation_id="inv-run", started_at=STARTED_AT)))

    assert repository.cutoffs == [datetime(2026, 5, 20, 6, 0, tzinfo=timezone.utc)]
    assert repository.deleted_invitations == [["inv-1", "inv-3"]]
    assert caplog.messages[:2] == [
        "remove_unresolved_invitations: 3 invitations found",
        "remove_unresolved_invitations: Removing invitations 1 to 3",
    ]
    assert (
        "remove_unresolved_invitations: 2 successful, 1 failed, and 0 errored API record removals for invitations 1 to 3"
        in caplog.messages
    )
    assert (
        "remove_unresolved_invitations: Removing database records for the 2 invitations with successful API record removals"
        in caplog.messages
    )


def test_unresolved_invitations_job_fails_when_every_removal_errored() -> None:
    repository = FakeDirectoriesRepository(["inv-1"])
    access = FakeAccessApi(services={"inv-1": ApiError("access down")})
    job = RemoveUnresolvedInvitationsJob(access, FakeOrganisationsApi(), repository)  # type: ignore[arg-type]

    with pytest.raises(JobFailedError, match="^remove_unresolved_invitations: Entire batch had an error"):
        asyncio.run(job.invoke(JobContext.create(job.name)))

    assert repository.deleted_invitations == []
