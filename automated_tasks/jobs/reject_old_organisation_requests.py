from __future__ import annotations

from automated_tasks.core.config import Settings, require_settings
from automated_tasks.jobs.base import JobContext, MaintenanceJob, as_utc, format_date, months_before
from automated_tasks.jobs.batching import BatchPolicy, DEFAULT_POLICY, process_batches
from automated_tasks.jobs.results import ActionResult, unique
from automated_tasks.schemas.audit import AuditLog
from automated_tasks.schemas.directories import SafeUser
from automated_tasks.schemas.organisations import (
    OVERDUE_REQUEST_STATUS,
    REJECTED_REQUEST_STATUS,
    OrganisationRequest,
)
from automated_tasks.services.audit import AuditLogger
from automated_tasks.services.dsi_internal import DirectoriesApi, OrganisationsApi
from automated_tasks.services.notifications import NotificationClient

REQUEST_AGE_MONTHS = 3
REJECTION_REASON = "Automated task - Approvers did not action request within 3 months"
REJECTION_AUDIT_MESSAGE = "Automated rejection of requests older than 3 months"


def rejection_audit_record(request: OrganisationRequest) -> AuditLog:
    return AuditLog(
        message=REJECTION_AUDIT_MESSAGE,
        type="approver",
        sub_type="rejected-org",
        organisation_id=request.org_id,
        meta={
            "editedUser": request.user_id,
            "reason": REJECTION_REASON,
        },
    )


def rejection_email_reason(request: OrganisationRequest) -> str:
    return (
        "The approver(s) at the organisation haven't taken any action on your request, "
        f"which was made on {format_date(request.created_date)}."
    )


def pair_active_users(
    requests: list[OrganisationRequest],
    users: list[SafeUser],
) -> list[tuple[OrganisationRequest, SafeUser]]:
    users_by_id = {user.id: user for user in users}
    pairs: list[tuple[OrganisationRequest, SafeUser]] = []
    for request in requests:
        user = users_by_id.get(request.user_id)
        if user is not None and user.is_active:
            pairs.append((request, user))
    return pairs


class RejectOldOrganisationRequestsJob(MaintenanceJob):
    """Rejects overdue organisation requests older than three months and e-mails the requesters.

    The overdue listing is sorted oldest first and rejected requests drop out of it,
    so page 1 is read again after every processed page. Requests already attempted
    in this run are skipped; a page holding nothing new moves on to the next page.
    """

    name = "reject_old_organisation_requests"

    def __init__(
        self,
        organisations: OrganisationsApi,
        directories: DirectoriesApi,
        audit: AuditLogger,
        notifications: NotificationClient,
        *,
        policy: BatchPolicy = DEFAULT_POLICY,
    ) -> None:
        self.organisations = organisations
        self.directories = directories
        self.audit = audit
        self.notifications = notifications
        self.policy = policy

    @classmethod
    def from_settings(cls, settings: Settings) -> RejectOldOrganisationRequestsJob:
        require_settings(settings, ("redis_connection_string",), "Redis")
        return cls(
            OrganisationsApi.from_settings(settings),
            DirectoriesApi.from_settings(settings),
            AuditLogger.from_settings(settings),
            NotificationClient.from_settings(settings),
        )

    async def aclose(self) -> None:
        await self.audit.aclose()
        await self.notifications.aclose()

    async def run(self, context: JobContext) -> None:
        cutoff = months_before(context.started_at, REQUEST_AGE_MONTHS)
        cutoff_label = format_date(cutoff)
        actioned_at = int(context.started_at.timestamp() * 1000)
        attempted: set[str] = set()
        page_number = 1

        while True:
            page = await self.organisations.get_organisation_request_page(
                page_number,
                context.correlation_id,
                [OVERDUE_REQUEST_STATUS],
            )
            overdue = [request for request in page.requests if as_utc(request.created_date) < cutoff]
            pending = [request for request in overdue if request.id not in attempted]

            if not pending:
                if overdue and page_number < page.total_number_of_pages:
                    page_number += 1
                    continue
                context.log.info("No more overdue organisation requests available older than %s", cutoff_label)
                return

            context.log.info(
                "Rejecting %s overdue organisation requests older than %s in page %s",
                len(pending),
                cutoff_label,
                page_number,
            )
            attempted.update(request.id for request in pending)
            await self._reject(pending, actioned_at, context)
            page_number = 1

    async def _reject(self, requests: list[OrganisationRequest], actioned_at: int, context: JobContext) -> None:
        properties = {
            "status": REJECTED_REQUEST_STATUS,
            "actioned_at": actioned_at,
            "actioned_reason": REJECTION_REASON,
        }

        async def reject(request: OrganisationRequest) -> ActionResult[OrganisationRequest]:
            updated = await self.organisations.update_organisation_request(
                request.id,
                dict(properties),
                context.correlation_id,
            )
            return ActionResult(object=request, success=updated)

        async def after_rejection(rejected: list[OrganisationRequest]) -> None:
            await self._audit_rejections(rejected, context)
            await self._notify_requesters(rejected, context)

        await process_batches(
            requests,
            reject,
            after_rejection,
            log=context.log,
            subject="organisation requests",
            progress_verb=None,
            outcome_noun="rejections",
            policy=self.policy,
            label=lambda _start, items: f"{len(items)} organisation requests",
        )

    async def _audit_rejections(self, rejected: list[OrganisationRequest], context: JobContext) -> None:
        context.log.info("Sending audit messages for the %s successfully rejected requests", len(rejected))
        await self.audit.batched_log([rejection_audit_record(request) for request in rejected])

    async def _notify_requesters(self, rejected: list[OrganisationRequest], context: JobContext) -> None:
        context.log.info("Retrieving user information for the %s successfully rejected requests", len(rejected))
        user_ids = unique(request.user_id for request in rejected)
        users = await self.directories.get_users_by_ids(user_ids, context.correlation_id)

        pairs = pair_active_users(rejected, users)
        if not pairs:
            return

        context.log.info(
            "Sending rejection emails for the %s successfully rejected requests with active users",
            len(pairs),
        )
        for request, user in pairs:
            await self.notifications.send_access_request(
                user.email,
                user.full_name,
                request.org_name,
                False,
                rejection_email_reason(request),
            )
