from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import redis.asyncio as aioredis

from automated_tasks.core.config import Settings, require_settings

logger = logging.getLogger(__name__)

ACCESS_REQUEST_JOB_TYPE = "accessrequest_v1"
QUEUE_KEY_PREFIX = "jobs"


class NotificationClient:
    """Enqueues e-mail notification jobs on the shared jobs Redis database."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> NotificationClient:
        require_settings(settings, ("redis_connection_string",), "Redis")
        client = aioredis.from_url(
            settings.redis_connection_string,
            db=settings.notifications_redis_db,
            decode_responses=True,
        )
        return cls(client)

    @staticmethod
    def queue_key(job_type: str) -> str:
        return f"{QUEUE_KEY_PREFIX}:{job_type}"

    async def enqueue(self, job_type: str, data: dict[str, Any]) -> str:
        job_id = str(uuid4())
        payload = {
            "id": job_id,
            "type": job_type,
            "data": data,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._client.rpush(self.queue_key(job_type), json.dumps(payload))
        logger.debug("enqueued %s job id=%s", job_type, job_id)
        return job_id

    async def send_access_request(
        self,
        email: str,
        name: str,
        org_name: str | None,
        approved: bool,
        reason: str,
    ) -> str:
        return await self.enqueue(
            ACCESS_REQUEST_JOB_TYPE,
            {
                "email": email,
                "name": name,
                "orgName": org_name,
                "approved": approved,
                "reason": reason,
            },
        )

    async def aclose(self) -> None:
        await self._client.aclose()
