from __future__ import annotations

import calendar
import logging
from abc import ABC, abstractmethod
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar
from uuid import uuid4

from opentelemetry import trace

from automated_tasks.core.config import Settings
from automated_tasks.core.telemetry import bind_invocation_id

tracer = trace.get_tracer(__name__)


def months_before(moment: datetime, months: int) -> datetime:
    """Same wall-clock time ``months`` calendar months earlier, clamping the day to the month end."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def format_date(moment: datetime) -> str:
    return moment.strftime("%d/%m/%Y")


class JobFailedError(Exception):
    """The single error a job invocation raises, prefixed with the job name."""

    def __init__(self, job_name: str, cause: BaseException | str) -> None:
        message = str(cause)
        super().__init__(f"{job_name}: {message}")
        self.job_name = job_name
        self.cause = cause


class JobLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the job name and stamps records with the invocation id."""

    def __init__(self, logger: logging.Logger, job_name: str, invocation_id: str) -> None:
        super().__init__(logger, {"job_name": job_name})
        self.invocation_id = invocation_id

    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        with bind_invocation_id(self.invocation_id):
            super().log(level, msg, *args, **kwargs)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"{extra['job_name']}: {msg}", kwargs


@dataclass(slots=True)
class JobContext:
    job_name: str
    invocation_id: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    log: JobLogAdapter = field(init=False)

    def __post_init__(self) -> None:
        self.log = JobLogAdapter(
            logging.getLogger(f"automated_tasks.jobs.{self.job_name}"),
            self.job_name,
            self.invocation_id,
        )

    @classmethod
    def create(cls, job_name: str, invocation_id: str | None = None) -> JobContext:
        return cls(job_name=job_name, invocation_id=invocation_id or str(uuid4()))

    @property
    def correlation_id(self) -> str:
        return self.invocation_id


class MaintenanceJob(ABC):
    name: ClassVar[str]

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings) -> MaintenanceJob:
        """Build the job and every collaborator it needs, failing fast on missing settings."""

    @abstractmethod
    async def run(self, context: JobContext) -> None: ...

    async def aclose(self) -> None:
        return None

    async def invoke(self, context: JobContext) -> None:
        with bind_invocation_id(context.invocation_id), tracer.start_as_current_span(f"job.{self.name}") as span:
            span.set_attribute("job.invocation_id", context.invocation_id)
            try:
                await self.run(context)
            except JobFailedError:
                raise
            except Exception as exc:
                span.record_exception(exc)
                raise JobFailedError(self.name, exc) from exc
