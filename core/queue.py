"""
Outbound notification queue.

The engine only ever calls `enqueue(kind, payload)`; delivery happens in a
separate worker (workers/email_worker.py). Both backends are bounded: once
`max_length` jobs are waiting, the oldest ones are dropped.
"""

import json
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from redis import Redis
from utils.logger import get_logger, sanitize_log_data

logger = get_logger(__name__)

SEND_VERIFICATION_EMAIL = "send-verification-email"
SEND_PASSWORD_RESET_EMAIL = "send-password-reset-email"
SEND_WELCOME_EMAIL = "send-welcome-email"

JOB_KINDS = {SEND_VERIFICATION_EMAIL, SEND_PASSWORD_RESET_EMAIL, SEND_WELCOME_EMAIL}


def build_job(kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    if kind not in JOB_KINDS:
        raise ValueError(f"Unknown notification job kind: {kind}")
    return {
        "id": uuid.uuid4().hex,
        "kind": kind,
        "payload": payload,
        "enqueued_at": datetime.now(timezone.utc).isoformat(),
    }


class RedisNotificationQueue:
    def __init__(self, url: str, name: str, max_length: int, *, socket_timeout: float = 5.0,
                 client: Optional[Redis] = None):
        self.key = f"queue:{name}"
        self.max_length = max_length
        if client is None:
            client = Redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        self.client = client

    def enqueue(self, kind: str, payload: Dict[str, Any]) -> str:
        job = build_job(kind, payload)
        pipe = self.client.pipeline()
        pipe.lpush(self.key, json.dumps(job))
        pipe.ltrim(self.key, 0, self.max_length - 1)
        pipe.execute()
        return job["id"]

    def dequeue(self, timeout: int = 5) -> Optional[Dict[str, Any]]:
        item = self.client.brpop([self.key], timeout=timeout)
        if item is None:
            return None
        _, raw = item
        return json.loads(raw)

    def __len__(self) -> int:
        return int(self.client.llen(self.key))

    def close(self) -> None:
        self.client.close()


class InMemoryNotificationQueue:
    def __init__(self, max_length: int = 10000):
        self.max_length = max_length
        self._jobs: deque = deque(maxlen=max_length)
        self._ready = threading.Condition()

    def enqueue(self, kind: str, payload: Dict[str, Any]) -> str:
        job = build_job(kind, payload)
        with self._ready:
            self._jobs.appendleft(job)
            self._ready.notify()
        return job["id"]

    def dequeue(self, timeout: int = 5) -> Optional[Dict[str, Any]]:
        with self._ready:
            if not self._jobs:
                self._ready.wait(timeout)
            if not self._jobs:
                return None
            return self._jobs.pop()

    def jobs(self, kind: Optional[str] = None) -> list:
        """Waiting jobs, oldest first."""
        with self._ready:
            items = list(reversed(self._jobs))
        if kind is None:
            return items
        return [job for job in items if job["kind"] == kind]

    def __len__(self) -> int:
        return len(self._jobs)

    def close(self) -> None:
        with self._ready:
            self._jobs.clear()


def create_notification_queue(url: str, name: str, max_length: int, timeout: float = 5.0):
    if url.startswith("memory://"):
        logger.warning("Using in-memory notification queue; jobs are lost on restart")
        return InMemoryNotificationQueue(max_length=max_length)
    return RedisNotificationQueue(url, name, max_length, socket_timeout=timeout)


def dispatch_notification(queue, kind: str, payload: Dict[str, Any]) -> Optional[str]:
    """
    Best-effort enqueue. A failure is logged and never raised, the request
    that triggered the notification has already succeeded.
    """
    try:
        job_id = queue.enqueue(kind, payload)
    except Exception as e:
        logger.warning(
            f"Failed to enqueue notification job: {str(e)}",
            extra={
                "job_kind": kind,
                "payload": sanitize_log_data(payload),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        return None

    logger.debug("Notification job enqueued", extra={"job_kind": kind, "job_id": job_id})
    return job_id
