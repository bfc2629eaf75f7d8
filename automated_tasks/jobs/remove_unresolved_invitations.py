from __future__ import annotations

from automated_tasks.core.config import Settings
from automated_tasks.jobs.base import JobContext, MaintenanceJob, months_before
from automated_tasks.jobs.batching import BatchPolicy, DEFAULT_POLICY
from automated_tasks.jobs.invitations import InvitationRemover
from automated_tasks.services.dsi_internal import AccessApi, OrganisationsApi
from automated_tasks.services.repository import DirectoriesRepository

INVITATION_AGE_MONTHS = 3


class RemoveUnresolvedInvitationsJob(MaintenanceJob):
    """Removes invitations older than three months that were never completed or deactivated."""

    name = "remove_unresolved_invitations"

    def __init__(
        self,
        access: AccessApi,
        organisations: OrganisationsApi,
        directories_db: DirectoriesRepository,
        *,
        policy: BatchPolicy = DEFAULT_POLICY,
    ) -> None:
        self.directories_db = directories_db
        self.invitations = InvitationRemover(access, organisations, directories_db, policy=policy)

    @classmethod
    def from_settings(cls, settings: Settings) -> RemoveUnresolvedInvitationsJob:
        return cls(
            AccessApi.from_settings(settings),
            OrganisationsApi.from_settings(settings),
            DirectoriesRepository.from_settings(settings),
        )

    async def aclose(self) -> None:
        await self.directories_db.close()

    async def run(self, context: JobContext) -> None:
        cutoff = months_before(context.started_at, INVITATION_AGE_MONTHS)
        invitation_ids = await self.directories_db.find_unresolved_invitation_ids(cutoff)
        context.log.info("%s invitations found", len(invitation_ids))

        await self.invitations.remove_all(invitation_ids, context)
