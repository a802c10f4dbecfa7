"""CronLock aggregate and scoped acquisition for scheduled jobs.

One record per job name, stored next to the orders so overlapping
invocations on different instances see each other. A lock carries an
expiry: a holder that crashes without releasing is taken over once the
lock expires.

Usage::

    with cron_lock("retry-stuck-orders") as lock:
        if lock is None:
            return  # another instance is running the job
        ...
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import uuid4

import structlog
from protean.exceptions import ExpectedVersionError, ValidationError
from protean.fields import DateTime, String
from protean.utils.globals import current_domain
from sqlalchemy.exc import IntegrityError

from provisioning.config import get_settings
from provisioning.domain import provisioning

logger = structlog.get_logger(__name__)

MAX_WAIT_SECONDS = 30.0


class LockStatus(Enum):
    ACTIVE = "active"
    RELEASED = "released"
    EXPIRED = "expired"


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@provisioning.aggregate
class CronLock:
    job_name = String(required=True, max_length=100)
    instance_id = String(required=True, max_length=100)
    token = String(required=True, max_length=64)
    status = String(
        max_length=20,
        choices=LockStatus,
        default=LockStatus.ACTIVE.value,
    )
    acquired_at = DateTime(required=True)
    expires_at = DateTime(required=True)

    def is_held(self, now: datetime) -> bool:
        return self.status == LockStatus.ACTIVE.value and _aware(self.expires_at) > now

    def take_over(self, instance_id: str, token: str, ttl: timedelta, now: datetime) -> None:
        if self.is_held(now):
            raise ValidationError({"job_name": [f"Lock {self.job_name} is held by {self.instance_id}"]})
        if self.status == LockStatus.ACTIVE.value:
            logger.warning("cron_lock_expired", job_name=self.job_name, previous_holder=self.instance_id)
        self.instance_id = instance_id
        self.token = token
        self.status = LockStatus.ACTIVE.value
        self.acquired_at = now
        self.expires_at = now + ttl

    def extend(self, ttl: timedelta, now: datetime) -> None:
        if not self.is_held(now):
            raise ValidationError({"status": [f"Lock {self.job_name} is no longer held"]})
        self.expires_at = now + ttl

    def release(self) -> None:
        self.status = LockStatus.RELEASED.value


_instance_id: str | None = None
_process_lock = threading.Lock()


def instance_id() -> str:
    """Identifier of this process in lock records."""
    global _instance_id
    if _instance_id is None:
        _instance_id = get_settings().instance_id or f"local-{uuid4().hex[:8]}"
    return _instance_id


@dataclass
class LockHandle:
    job_name: str
    instance_id: str
    token: str
    expires_at: datetime

    def extend(self, ttl_seconds: int | None = None) -> bool:
        """Push the expiry out while a long job is still running."""
        ttl = timedelta(seconds=ttl_seconds or get_settings().cron_lock_ttl_seconds)
        with _process_lock:
            repo = current_domain.repository_for(CronLock)
            record = repo.get(self.job_name)
            if record.token != self.token:
                return False
            now = datetime.now(UTC)
            try:
                record.extend(ttl, now)
            except ValidationError:
                return False
            repo.add(record)
            self.expires_at = record.expires_at
            return True


def _existing_record(repo, job_name: str) -> CronLock | None:
    return repo._dao.query.filter(id=job_name).all().first


def _try_acquire(job_name: str, ttl: timedelta) -> LockHandle | None:
    with _process_lock:
        repo = current_domain.repository_for(CronLock)
        now = datetime.now(UTC)
        token = uuid4().hex
        holder = instance_id()

        record = _existing_record(repo, job_name)
        if record is None:
            record = CronLock(
                id=job_name,
                job_name=job_name,
                instance_id=holder,
                token=token,
                acquired_at=now,
                expires_at=now + ttl,
            )
        else:
            try:
                record.take_over(holder, token, ttl, now)
            except ValidationError:
                return None

        # A competing instance may have written the record since our read
        try:
            repo.add(record)
        except (ValidationError, ExpectedVersionError, IntegrityError) as exc:
            logger.info("cron_lock_write_conflict", job_name=job_name, instance_id=holder, error=str(exc))
            return None

        # Last writer wins in the store; only the writer whose token survived holds the lock
        if repo.get(job_name).token != token:
            return None
        return LockHandle(job_name=job_name, instance_id=holder, token=token, expires_at=record.expires_at)


def acquire_lock(
    job_name: str,
    ttl_seconds: int | None = None,
    wait_seconds: float = 0,
    retry_interval: float = 1.0,
) -> LockHandle | None:
    """Acquire ``job_name``, optionally waiting (at most 30s) for the current holder."""
    ttl = timedelta(seconds=ttl_seconds or get_settings().cron_lock_ttl_seconds)
    deadline = time.monotonic() + min(wait_seconds, MAX_WAIT_SECONDS)
    while True:
        handle = _try_acquire(job_name, ttl)
        if handle is not None:
            logger.info("cron_lock_acquired", job_name=job_name, instance_id=handle.instance_id)
            return handle
        if time.monotonic() + retry_interval > deadline:
            return None
        time.sleep(retry_interval)


def release_lock(handle: LockHandle) -> bool:
    """Release a lock this process holds. A lock taken over after expiry is left alone."""
    with _process_lock:
        repo = current_domain.repository_for(CronLock)
        record = repo.get(handle.job_name)
        if record.token != handle.token:
            logger.warning("cron_lock_lost", job_name=handle.job_name, instance_id=handle.instance_id)
            return False
        record.release()
        repo.add(record)
    logger.info("cron_lock_released", job_name=handle.job_name, instance_id=handle.instance_id)
    return True


def current_holder(job_name: str) -> CronLock | None:
    """The active, unexpired lock record for ``job_name``, if any."""
    record = current_domain.repository_for(CronLock)._dao.query.filter(id=job_name).all().first
    if record is None or not record.is_held(datetime.now(UTC)):
        return None
    return record


def cleanup_expired_locks() -> int:
    """Mark every expired active lock as expired. Returns how many were marked."""
    repo = current_domain.repository_for(CronLock)
    now = datetime.now(UTC)
    count = 0
    for record in repo._dao.query.filter(status=LockStatus.ACTIVE.value).all().items:
        if not record.is_held(now):
            record.status = LockStatus.EXPIRED.value
            repo.add(record)
            count += 1
    return count


@contextmanager
def cron_lock(job_name: str, ttl_seconds: int | None = None, wait_seconds: float = 0):
    """Hold ``job_name`` for the duration of the block; yields None when someone else holds it."""
    handle = acquire_lock(job_name, ttl_seconds=ttl_seconds, wait_seconds=wait_seconds)
    if handle is None:
        yield None
        return
    try:
        yield handle
    finally:
        release_lock(handle)
