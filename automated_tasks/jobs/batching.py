from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from opentelemetry import trace

from automated_tasks.jobs.results import ActionResult, ClassificationReport, filter_results, settle_actions

C = TypeVar("C")
T = TypeVar("T")

BATCH_SIZE = 100
ENTIRE_BATCH_ERRORED_MESSAGE = "Entire batch had an error, failing execution so it can retry."

tracer = trace.get_tracer(__name__)


class BatchAbortedError(Exception):
    """Raised when every candidate in a batch errored, so the scheduler retries the run."""

    def __init__(self, message: str = ENTIRE_BATCH_ERRORED_MESSAGE) -> None:
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class BatchPolicy:
    batch_size: int = BATCH_SIZE

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

    def should_abort(self, report: ClassificationReport[Any], size: int) -> bool:
        # Only a fully errored batch aborts; logical failures never do.
        return size > 0 and report.errored.count == size


DEFAULT_POLICY = BatchPolicy()


@dataclass(frozen=True, slots=True)
class BatchResult(Generic[C, T]):
    start: int
    items: list[C]
    report: ClassificationReport[T]

    @property
    def range_label(self) -> str:
        return f"{self.start + 1} to {self.start + len(self.items)}"


def describe_range(subject: str, start: int, items: Sequence[Any]) -> str:
    return f"{subject} {start + 1} to {start + len(items)}"


def chunked(items: Sequence[C], size: int) -> Iterator[tuple[int, list[C]]]:
    for start in range(0, len(items), size):
        yield start, list(items[start : start + size])


async def run_batch(
    items: Sequence[C],
    action: Callable[[C], Awaitable[ActionResult[T]]],
) -> ClassificationReport[T]:
    return filter_results(await settle_actions(items, action))


async def run_batches(
    candidates: Sequence[C],
    action: Callable[[C], Awaitable[ActionResult[T]]],
    *,
    log: logging.LoggerAdapter | logging.Logger,
    subject: str,
    progress_verb: str | None,
    outcome_noun: str,
    policy: BatchPolicy = DEFAULT_POLICY,
    label: Callable[[int, list[C]], str] | None = None,
) -> AsyncIterator[BatchResult[C, T]]:
    """Run ``action`` over ``candidates`` one batch at a time.

    Candidates within a batch are processed concurrently; batches are strictly
    sequential, the next one only starts once the consumer asks for it. Raises
    ``BatchAbortedError`` when every candidate in a batch errored.
    """
    for start, items in chunked(candidates, policy.batch_size):
        batch_label = label(start, items) if label is not None else describe_range(subject, start, items)
        if progress_verb:
            log.info("%s %s", progress_verb, batch_label)

        with tracer.start_as_current_span("job.batch") as span:
            span.set_attribute("batch.start", start)
            span.set_attribute("batch.size", len(items))
            report = await run_batch(items, action)
            span.set_attribute("batch.successful", report.successful.count)
            span.set_attribute("batch.failed", report.failed.count)
            span.set_attribute("batch.errored", report.errored.count)

        log.info(
            "%s successful, %s failed, and %s errored %s for %s",
            report.successful.count,
            report.failed.count,
            report.errored.count,
            outcome_noun,
            batch_label,
        )
        if report.errored.count > 0:
            for error in report.errored.errors:
                log.error("%s", error)
        if policy.should_abort(report, len(items)):
            raise BatchAbortedError()

        yield BatchResult(start=start, items=items, report=report)


async def process_batches(
    candidates: Sequence[C],
    action: Callable[[C], Awaitable[ActionResult[T]]],
    on_success: Callable[[list[T]], Awaitable[None]],
    *,
    log: logging.LoggerAdapter | logging.Logger,
    subject: str,
    progress_verb: str | None,
    outcome_noun: str,
    policy: BatchPolicy = DEFAULT_POLICY,
    label: Callable[[int, list[C]], str] | None = None,
) -> list[BatchResult[C, T]]:
    """Run every batch and hand each batch's successful objects to ``on_success``."""
    results: list[BatchResult[C, T]] = []
    async for batch in run_batches(
        candidates,
        action,
        log=log,
        subject=subject,
        progress_verb=progress_verb,
        outcome_noun=outcome_noun,
        policy=policy,
        label=label,
    ):
        results.append(batch)
        if batch.report.successful.count > 0:
            await on_success(batch.report.successful.objects)
    return results
