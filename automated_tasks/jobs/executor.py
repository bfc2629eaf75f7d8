from __future__ import annotations

from collections.abc import Mapping

from automated_tasks.core.config import Settings, get_settings
from automated_tasks.core.telemetry import bind_invocation_id
from automated_tasks.jobs.base import JobContext, JobFailedError, MaintenanceJob
from automated_tasks.jobs.deactivate_unused_accounts import DeactivateUnusedAccountsJob
from automated_tasks.jobs.reject_old_organisation_requests import RejectOldOrganisationRequestsJob
from automated_tasks.jobs.remove_generated_test_accounts import RemoveGeneratedTestAccountsJob
from automated_tasks.jobs.remove_unresolved_invitations import RemoveUnresolvedInvitationsJob

JOBS: dict[str, type[MaintenanceJob]] = {
    job.name: job
    for job in (
        DeactivateUnusedAccountsJob,
        RejectOldOrganisationRequestsJob,
        RemoveGeneratedTestAccountsJob,
        RemoveUnresolvedInvitationsJob,
    )
}


async def execute_job(
    name: str,
    *,
    settings: Settings | None = None,
    invocation_id: str | None = None,
    jobs: Mapping[str, type[MaintenanceJob]] = JOBS,
) -> JobContext:
    job_class = jobs.get(name)
    if job_class is None:
        raise JobFailedError(name, f"unknown job, expected one of {', '.join(sorted(jobs))}")

    context = JobContext.create(name, invocation_id)
    try:
        job = job_class.from_settings(settings or get_settings())
    except Exception as exc:
        raise JobFailedError(name, exc) from exc

    with bind_invocation_id(context.invocation_id):
        try:
            await job.invoke(context)
        except BaseException:
            await _close_quietly(job, context)
            raise

        try:
            await job.aclose()
        except Exception as exc:
            raise JobFailedError(name, exc) from exc
    return context


async def _close_quietly(job: MaintenanceJob, context: JobContext) -> None:
    # The job's own failure is the one reported.
    try:
        await job.aclose()
    except Exception:
        context.log.exception("failed to release resources")
