"""Invitation removal shared by the generated-account and unresolved-invitation jobs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from automated_tasks.jobs.base import JobContext
from automated_tasks.jobs.batching import BatchPolicy, DEFAULT_POLICY, process_batches
from automated_tasks.jobs.results import ActionError, ActionResult, settle
from automated_tasks.schemas.access import ServiceRecord
from automated_tasks.schemas.organisations import OrganisationLink
from automated_tasks.services.dsi_internal import AccessApi, OrganisationsApi
from automated_tasks.services.repository import DirectoriesRepository


@dataclass(slots=True)
class ApiRecords:
    services: list[ServiceRecord] = field(default_factory=list)
    organisations: list[OrganisationLink] = field(default_factory=list)


def raise_for_errors(settled: Sequence[object]) -> None:
    errors = [result for result in settled if isinstance(result, BaseException)]
    if errors:
        raise ActionError(*errors)


def all_true(settled: Sequence[object]) -> bool:
    return all(result is True for result in settled)


class InvitationRemover:
    def __init__(
        self,
        access: AccessApi,
        organisations: OrganisationsApi,
        directories_db: DirectoriesRepository,
        *,
        policy: BatchPolicy = DEFAULT_POLICY,
    ) -> None:
        self.access = access
        self.organisations = organisations
        self.directories_db = directories_db
        self.policy = policy

    async def get_invitation_api_records(self, invitation_id: str, correlation_id: str) -> ApiRecords:
        settled = await settle(
            (
                self.access.get_invitation_services(invitation_id, correlation_id),
                self.organisations.get_invitation_organisations(invitation_id, correlation_id),
            )
        )
        raise_for_errors(settled)
        services, organisations = settled
        return ApiRecords(services=list(services), organisations=list(organisations))

    async def delete_invitation_api_records(
        self,
        invitation_id: str,
        records: ApiRecords,
        correlation_id: str,
    ) -> ActionResult[str]:
        settled = await settle(
            [
                *(
                    self.access.delete_invitation_service(
                        invitation_id,
                        record.service_id,
                        record.organisation_id,
                        correlation_id,
                    )
                    for record in records.services
                ),
                *(
                    self.organisations.delete_invitation_organisation(
                        invitation_id,
                        link.organisation.id,
                        correlation_id,
                    )
                    for link in records.organisations
                ),
            ]
        )
        raise_for_errors(settled)
        return ActionResult(object=invitation_id, success=all_true(settled))

    async def delete_invitation_db_records(self, invitation_ids: Sequence[str]) -> None:
        await self.directories_db.delete_invitations(invitation_ids)

    async def remove(self, invitation_id: str, correlation_id: str) -> ActionResult[str]:
        records = await self.get_invitation_api_records(invitation_id, correlation_id)
        return await self.delete_invitation_api_records(invitation_id, records, correlation_id)

    async def remove_all(self, invitation_ids: Sequence[str], context: JobContext) -> None:
        async def action(invitation_id: str) -> ActionResult[str]:
            return await self.remove(invitation_id, context.correlation_id)

        async def on_success(removed: list[str]) -> None:
            context.log.info(
                "Removing database records for the %s invitations with successful API record removals",
                len(removed),
            )
            await self.delete_invitation_db_records(removed)

        await process_batches(
            invitation_ids,
            action,
            on_success,
            log=context.log,
            subject="invitations",
            progress_verb="Removing",
            outcome_noun="API record removals",
            policy=self.policy,
        )
