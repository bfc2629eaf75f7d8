"""Audit sink writing DSi audit records onto a Redis list consumed by the audit writer."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import redis.asyncio as aioredis

from automated_tasks.core.config import Settings, require_settings
from automated_tasks.schemas.audit import AuditLog

logger = logging.getLogger(__name__)

AUDIT_BATCH_SIZE = 100
DEFAULT_LEVEL = "audit"
DEFAULT_APPLICATION = "automated-tasks"


class AuditLogError(Exception):
    """Raised when audit messages could not be delivered."""


class AuditLogger:
    def __init__(self, client: Any, topic_name: str, *, environment: str = "dev") -> None:
        self._client = client
        self.topic_name = topic_name
        self.environment = environment

    @classmethod
    def from_settings(cls, settings: Settings) -> AuditLogger:
        require_settings(settings, ("audit_connection_string", "audit_topic_name"), "audit")
        client = aioredis.from_url(settings.audit_connection_string, decode_responses=True)
        return cls(client, settings.audit_topic_name or "", environment=settings.environment)

    def _fill_defaults(self, record: AuditLog) -> AuditLog:
        return record.model_copy(
            update={
                "level": record.level or DEFAULT_LEVEL,
                "application": record.application or DEFAULT_APPLICATION,
                "env": record.env or self.environment,
            }
        )

    def encode(self, record: AuditLog) -> str:
        # The audit writer expects a JSON array of JSON-encoded records.
        return json.dumps([json.dumps(self._fill_defaults(record).to_message())])

    async def log(self, record: AuditLog) -> None:
        try:
            await self._client.rpush(self.topic_name, self.encode(record))
        except Exception as exc:
            raise AuditLogError(f'Audit message failed to send with error "{exc}"') from exc

    async def batched_log(self, records: Sequence[AuditLog]) -> None:
        for start in range(0, len(records), AUDIT_BATCH_SIZE):
            chunk = records[start : start + AUDIT_BATCH_SIZE]
            try:
                async with self._client.pipeline(transaction=False) as pipe:
                    for record in chunk:
                        pipe.rpush(self.topic_name, self.encode(record))
                    await pipe.execute()
            except Exception as exc:
                raise AuditLogError(f'Audit message batch failed to send with error "{exc}"') from exc
            logger.debug("sent %s audit messages to %s", len(chunk), self.topic_name)

    async def aclose(self) -> None:
        await self._client.aclose()
