"""Classification of concurrently executed per-candidate actions.

Every action run by a job settles in one of three ways: it returns an
``ActionResult`` with ``success=True`` (succeeded), returns one with
``success=False`` (logically failed), or raises (errored). ``filter_results``
partitions a batch of settled outcomes into those three buckets.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")
C = TypeVar("C")


@dataclass(frozen=True, slots=True)
class ActionResult(Generic[T]):
    """Value returned by an action that completed without raising."""

    object: T
    success: bool


class ActionError(Exception):
    """Raised by an action to report one or more underlying failure reasons.

    Compound actions fan out to several API calls; when any of them raise, the
    action raises this with every sub-error so each one is reported.
    """

    def __init__(self, *reasons: Any) -> None:
        super().__init__(*reasons)
        self.reasons = list(reasons)

    def __str__(self) -> str:
        return "; ".join(str(message) for message in error_messages(self))


@dataclass(frozen=True, slots=True)
class Succeeded(Generic[T]):
    object: T


@dataclass(frozen=True, slots=True)
class LogicallyFailed(Generic[T]):
    object: T


@dataclass(frozen=True, slots=True)
class Errored:
    reason: Any
    candidate: Any = None


ActionOutcome = Succeeded[T] | LogicallyFailed[T] | Errored


@dataclass(frozen=True, slots=True)
class ObjectGroup(Generic[T]):
    count: int = 0
    objects: list[T] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ErrorGroup:
    count: int = 0
    errors: list[Any] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ClassificationReport(Generic[T]):
    successful: ObjectGroup[T]
    failed: ObjectGroup[T]
    errored: ErrorGroup

    @property
    def total(self) -> int:
        return self.successful.count + self.failed.count + self.errored.count


async def settle(awaitables: Iterable[Awaitable[T]]) -> list[T | BaseException]:
    """Wait for every awaitable, returning values and raised exceptions in order."""
    return await asyncio.gather(*awaitables, return_exceptions=True)


def to_outcome(settled: ActionResult[T] | BaseException, candidate: Any = None) -> ActionOutcome[T]:
    if isinstance(settled, BaseException):
        return Errored(reason=settled, candidate=candidate)
    if settled.success is True:
        return Succeeded(settled.object)
    return LogicallyFailed(settled.object)


async def settle_actions(
    candidates: Sequence[C],
    action: Callable[[C], Awaitable[ActionResult[T]]],
) -> list[ActionOutcome[T]]:
    """Run ``action`` concurrently for every candidate and collect one outcome each."""
    settled = await settle(_call(action, candidate) for candidate in candidates)
    return [to_outcome(result, candidate) for result, candidate in zip(settled, candidates)]


async def _call(action: Callable[[C], Awaitable[ActionResult[T]]], candidate: C) -> ActionResult[T]:
    # A synchronous raise inside ``action`` has to settle like any other error.
    return await action(candidate)


def error_messages(reason: Any) -> list[Any]:
    """Flatten a rejection reason into individual messages.

    Exceptions contribute their message, collections (``ActionError``,
    exception groups, lists and tuples) contribute each member, anything else
    is kept as it is.
    """
    if isinstance(reason, ActionError):
        return _flatten(reason.reasons)
    if isinstance(reason, BaseExceptionGroup):
        return _flatten(reason.exceptions)
    if isinstance(reason, (list, tuple)):
        return _flatten(reason)
    if isinstance(reason, BaseException):
        return [str(reason)]
    return [reason]


def _flatten(reasons: Iterable[Any]) -> list[Any]:
    return [message for reason in reasons for message in error_messages(reason)]


def unique(values: Iterable[Any]) -> list[Any]:
    """Deduplicate values keeping first-seen order.

    ``1`` and ``1.0`` are the same number, ``1`` and ``True`` stay distinct.
    """
    seen: set[tuple[type, Any]] = set()
    unhashable: list[Any] = []
    result: list[Any] = []
    for value in values:
        try:
            key = (_kind(value), value)
            if key in seen:
                continue
            seen.add(key)
        except TypeError:
            if any(_kind(existing) is _kind(value) and existing == value for existing in unhashable):
                continue
            unhashable.append(value)
        result.append(value)
    return result


def _kind(value: Any) -> type:
    if type(value) in (int, float):
        return float
    return type(value)


def filter_results(outcomes: Iterable[ActionOutcome[T]]) -> ClassificationReport[T]:
    """Partition settled outcomes into successful, failed and errored groups."""
    successful: list[T] = []
    failed: list[T] = []
    errored: list[Errored] = []
    for outcome in outcomes:
        if isinstance(outcome, Succeeded):
            successful.append(outcome.object)
        elif isinstance(outcome, LogicallyFailed):
            failed.append(outcome.object)
        elif isinstance(outcome, Errored):
            errored.append(outcome)
        else:
            raise TypeError(f"unexpected action outcome {outcome!r}")

    return ClassificationReport(
        successful=ObjectGroup(count=len(successful), objects=successful),
        failed=ObjectGroup(count=len(failed), objects=failed),
        errored=ErrorGroup(
            count=len(errored),
            errors=unique(_flatten(outcome.reason for outcome in errored)),
        ),
    )
