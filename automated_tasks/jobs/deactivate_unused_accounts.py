from __future__ import annotations

from automated_tasks.core.config import Settings
from automated_tasks.jobs.base import JobContext, MaintenanceJob, months_before
from automated_tasks.jobs.batching import BatchPolicy, DEFAULT_POLICY, process_batches
from automated_tasks.jobs.results import ActionResult
from automated_tasks.schemas.audit import AuditLog
from automated_tasks.schemas.directories import ACTIVE_USER_STATUS, DEACTIVATED_USER_STATUS
from automated_tasks.services.audit import AuditLogger
from automated_tasks.services.dsi_internal import DirectoriesApi
from automated_tasks.services.repository import DirectoriesRepository, UserRecord

INACTIVITY_MONTHS = 24
DEACTIVATION_REASON = "Automated task - Deactivate accounts with 2 years of inactivity."


def deactivation_audit_record(user: UserRecord) -> AuditLog:
    user_id = user.id.upper()
    return AuditLog(
        message=f"Automated deactivation of user {user.email} (id: {user_id})",
        type="support",
        sub_type="user-edit",
        meta={
            "reason": DEACTIVATION_REASON,
            "editedUser": user_id,
            "editedFields": [
                {
                    "name": "status",
                    "oldValue": ACTIVE_USER_STATUS,
                    "newValue": DEACTIVATED_USER_STATUS,
                }
            ],
        },
    )


class DeactivateUnusedAccountsJob(MaintenanceJob):
    """Deactivates active accounts with no login (or creation) in the last two years."""

    name = "deactivate_unused_accounts"

    def __init__(
        self,
        directories: DirectoriesApi,
        directories_db: DirectoriesRepository,
        audit: AuditLogger,
        *,
        policy: BatchPolicy = DEFAULT_POLICY,
    ) -> None:
        self.directories = directories
        self.directories_db = directories_db
        self.audit = audit
        self.policy = policy

    @classmethod
    def from_settings(cls, settings: Settings) -> DeactivateUnusedAccountsJob:
        return cls(
            DirectoriesApi.from_settings(settings),
            DirectoriesRepository.from_settings(settings),
            AuditLogger.from_settings(settings),
        )

    async def aclose(self) -> None:
        await self.directories_db.close()
        await self.audit.aclose()

    async def run(self, context: JobContext) -> None:
        cutoff = months_before(context.started_at, INACTIVITY_MONTHS)
        users = await self.directories_db.find_inactive_users(cutoff)
        context.log.info("%s users found", len(users))

        async def deactivate(user: UserRecord) -> ActionResult[UserRecord]:
            deactivated = await self.directories.deactivate_user(user.id, DEACTIVATION_REASON, context.correlation_id)
            return ActionResult(object=user, success=deactivated)

        async def audit_deactivations(deactivated: list[UserRecord]) -> None:
            context.log.info("Sending audit messages for the %s successful deactivations", len(deactivated))
            await self.audit.batched_log([deactivation_audit_record(user) for user in deactivated])

        await process_batches(
            users,
            deactivate,
            audit_deactivations,
            log=context.log,
            subject="users",
            progress_verb="Deactivating",
            outcome_noun="deactivations",
            policy=self.policy,
        )
