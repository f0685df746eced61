"""
Redis backed job queue.

A job is a JSON record stored under `queue:<name>:job:<id>`. Its id sits in
one of three places:
    queue:<name>:waiting  - list, ready to run
    queue:<name>:delayed  - sorted set scored by the due time (ms), after a failed attempt
    queue:<name>:failed   - list, attempts exhausted (kept only when removeOnFail is False)

A failed attempt is retried after `backoffDelay * 2 ** (attempt - 1)` ms until
`attempts` runs out.
"""

import json
from time import time
from uuid import uuid4
from logging import getLogger
from typing import Callable, Dict, Optional
from redis import Redis

from fleetcore.src.redis import redisClient
from fleetcore.src.constants import (
    JOB_ATTEMPTS,
    JOB_BACKOFF_DELAY,
    JOB_REMOVE_ON_COMPLETE,
    JOB_REMOVE_ON_FAIL,
)

logger = getLogger("Worker")

# Queues
EMAIL = "email"
MAINTENANCE = "maintenance"
ANALYTICS = "analytics"
NOTIFICATION = "notification"
QUEUES = (EMAIL, MAINTENANCE, ANALYTICS, NOTIFICATION)

# Job names
SEND_EMAIL = "send-email"
CHECK_REMINDERS = "check-reminders"
DAILY_AGGREGATION = "daily-aggregation"

# Job states
WAITING = "waiting"
DELAYED = "delayed"
COMPLETED = "completed"
FAILED = "failed"


def nowMs() -> int:
    return int(time() * 1000)


def backoff(attempt: int, delay: int = JOB_BACKOFF_DELAY) -> int:
    """Delay in ms before retrying after failed attempt number `attempt` (1-based)."""
    return delay * 2 ** (attempt - 1)


class JobQueue:
    def __init__(
        self,
        name: str,
        client: Optional[Redis] = None,
        attempts: int = JOB_ATTEMPTS,
        backoffDelay: int = JOB_BACKOFF_DELAY,
        removeOnComplete: bool = JOB_REMOVE_ON_COMPLETE,
        removeOnFail: bool = JOB_REMOVE_ON_FAIL,
    ):
        if name not in QUEUES:
            raise ValueError(f"Unknown queue {name}")
        self.name = name
        self.client = client or redisClient
        self.attempts = attempts
        self.backoffDelay = backoffDelay
        self.removeOnComplete = removeOnComplete
        self.removeOnFail = removeOnFail

    # -----------------------------------------------------------------------
    # Keys
    # -----------------------------------------------------------------------
    def _key(self, suffix: str) -> str:
        return f"queue:{self.name}:{suffix}"

    def _jobKey(self, jobId: str) -> str:
        return self._key(f"job:{jobId}")

    def _save(self, job: dict) -> None:
        self.client.set(self._jobKey(job["id"]), json.dumps(job, default=str))

    def get(self, jobId: str) -> Optional[dict]:
        data = self.client.get(self._jobKey(jobId))
        return json.loads(data) if data else None

    # -----------------------------------------------------------------------
    # Producer
    # -----------------------------------------------------------------------
    def add(self, jobName: str, payload: dict, attempts: Optional[int] = None) -> dict:
        job = {
            "id": uuid4().hex,
            "queue": self.name,
            "name": jobName,
            "payload": payload,
            "attempts": attempts or self.attempts,
            "attempts_made": 0,
            "state": WAITING,
            "error": None,
            "created_on": nowMs(),
        }
        self._save(job)
        self.client.lpush(self._key(WAITING), job["id"])
        logger.info(f"Queued {jobName} on {self.name} as {job['id']}")
        return job

    # -----------------------------------------------------------------------
    # Consumer
    # -----------------------------------------------------------------------
    def promote(self, now: Optional[int] = None) -> int:
        """Move delayed jobs whose retry time has come back to the waiting list."""
        now = nowMs() if now is None else now
        due = self.client.zrangebyscore(self._key(DELAYED), 0, now)
        for jobId in due:
            if self.client.zrem(self._key(DELAYED), jobId):
                job = self.get(jobId)
                if job is not None:
                    job["state"] = WAITING
                    self._save(job)
                self.client.lpush(self._key(WAITING), jobId)
        return len(due)

    def next(self) -> Optional[dict]:
        jobId = self.client.rpop(self._key(WAITING))
        if jobId is None:
            return None
        return self.get(jobId)

    def complete(self, job: dict) -> None:
        if self.removeOnComplete:
            self.client.delete(self._jobKey(job["id"]))
            return
        job["state"] = COMPLETED
        self._save(job)

    def fail(self, job: dict, error: str, now: Optional[int] = None) -> str:
        """Record a failed attempt. Returns the job's new state."""
        now = nowMs() if now is None else now
        job["attempts_made"] += 1
        job["error"] = error
        if job["attempts_made"] < job["attempts"]:
            job["state"] = DELAYED
            self._save(job)
            self.client.zadd(
                self._key(DELAYED),
                {job["id"]: now + backoff(job["attempts_made"], self.backoffDelay)},
            )
            return DELAYED
        logger.error(f"Job {job['name']} ({job['id']}) failed: {error}")
        if self.removeOnFail:
            self.client.delete(self._jobKey(job["id"]))
        else:
            job["state"] = FAILED
            self._save(job)
            self.client.lpush(self._key(FAILED), job["id"])
        return FAILED

    def process(
        self, handlers: Dict[str, Callable[[dict], object]], now: Optional[int] = None
    ) -> Optional[dict]:
        """
        Run the next ready job, if any. Handler errors count as failed attempts.

        Returns:
            dict | None: The processed job, None if nothing was ready.
        """
        self.promote(now)
        job = self.next()
        if job is None:
            return None
        handler = handlers.get(job["name"])
        try:
            if handler is None:
                raise LookupError(f"No handler for job {job['name']}")
            handler(job["payload"])
        except Exception as e:
            self.fail(job, str(e), now)
            return job
        self.complete(job)
        job["state"] = COMPLETED
        return job

    def counts(self) -> dict:
        return {
            WAITING: self.client.llen(self._key(WAITING)),
            DELAYED: self.client.zcard(self._key(DELAYED)),
            FAILED: self.client.llen(self._key(FAILED)),
        }

    def failedJobs(self) -> list:
        return [
            job
            for job in (self.get(jobId) for jobId in self.client.lrange(self._key(FAILED), 0, -1))
            if job is not None
        ]
