from __future__ import annotations

from collections.abc import Sequence

from automated_tasks.core.config import Settings
from automated_tasks.jobs.base import JobContext, MaintenanceJob
from automated_tasks.jobs.batching import BatchPolicy, DEFAULT_POLICY, process_batches
from automated_tasks.jobs.invitations import ApiRecords, InvitationRemover, all_true, raise_for_errors
from automated_tasks.jobs.results import ActionResult, settle
from automated_tasks.services.dsi_internal import AccessApi, DirectoriesApi, OrganisationsApi
from automated_tasks.services.repository import DirectoriesRepository, OrganisationsRepository


class RemoveGeneratedTestAccountsJob(MaintenanceJob):
    """Removes users and invitations created by the automated test suites."""

    name = "remove_generated_test_accounts"

    def __init__(
        self,
        access: AccessApi,
        directories: DirectoriesApi,
        organisations: OrganisationsApi,
        directories_db: DirectoriesRepository,
        organisations_db: OrganisationsRepository,
        *,
        policy: BatchPolicy = DEFAULT_POLICY,
    ) -> None:
        self.access = access
        self.directories = directories
        self.organisations = organisations
        self.directories_db = directories_db
        self.organisations_db = organisations_db
        self.policy = policy
        self.invitations = InvitationRemover(access, organisations, directories_db, policy=policy)

    @classmethod
    def from_settings(cls, settings: Settings) -> RemoveGeneratedTestAccountsJob:
        return cls(
            AccessApi.from_settings(settings),
            DirectoriesApi.from_settings(settings),
            OrganisationsApi.from_settings(settings),
            DirectoriesRepository.from_settings(settings),
            OrganisationsRepository.from_settings(settings),
        )

    async def aclose(self) -> None:
        await self.directories_db.close()
        await self.organisations_db.close()

    async def run(self, context: JobContext) -> None:
        user_ids = await self.directories_db.find_generated_test_user_ids()
        invitation_ids = await self.directories_db.find_generated_test_invitation_ids()
        context.log.info("%s users and %s invitations found", len(user_ids), len(invitation_ids))

        await self.remove_users(user_ids, context)
        await self.invitations.remove_all(invitation_ids, context)

    async def get_user_api_records(self, user_id: str, correlation_id: str) -> ApiRecords:
        settled = await settle(
            (
                self.access.get_user_services(user_id, correlation_id),
                self.organisations.get_user_organisations(user_id, correlation_id),
            )
        )
        raise_for_errors(settled)
        services, organisations = settled
        return ApiRecords(services=list(services), organisations=list(organisations))

    async def delete_user_api_records(
        self,
        user_id: str,
        records: ApiRecords,
        correlation_id: str,
    ) -> ActionResult[str]:
        settled = await settle(
            [
                self.directories.delete_user_code(user_id, correlation_id),
                *(
                    self.access.delete_user_service(
                        user_id,
                        record.service_id,
                        record.organisation_id,
                        correlation_id,
                    )
                    for record in records.services
                ),
                *(
                    self.organisations.delete_user_organisation(user_id, link.organisation.id, correlation_id)
                    for link in records.organisations
                ),
            ]
        )
        raise_for_errors(settled)
        return ActionResult(object=user_id, success=all_true(settled))

    async def delete_user_db_records(self, user_ids: Sequence[str]) -> None:
        # Organisation-side rows reference the user, so they go first.
        await self.organisations_db.delete_user_records(user_ids)
        await self.directories_db.delete_users(user_ids)

    async def remove_users(self, user_ids: Sequence[str], context: JobContext) -> None:
        async def remove(user_id: str) -> ActionResult[str]:
            records = await self.get_user_api_records(user_id, context.correlation_id)
            return await self.delete_user_api_records(user_id, records, context.correlation_id)

        async def on_success(removed: list[str]) -> None:
            context.log.info(
                "Removing database records for the %s users with successful API record removals",
                len(removed),
            )
            await self.delete_user_db_records(removed)

        await process_batches(
            user_ids,
            remove,
            on_success,
            log=context.log,
            subject="users",
            progress_verb="Removing",
            outcome_noun="API record removals",
            policy=self.policy,
        )
