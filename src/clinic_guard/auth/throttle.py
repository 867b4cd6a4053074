"""Failed-login throttling with temporary lockout.

The attempt counter sits behind ``LoginAttemptStore`` so a single process can
keep it in memory while a horizontally scaled deployment points every
instance at one shared Redis.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

logger = logging.getLogger(__name__)


@dataclass
class ThrottleConfig:
    max_attempts: int = 5
    lockout_minutes: int = 15
    attempt_window_minutes: int = 15
    sweep_interval_seconds: float = 60.0


@dataclass
class AttemptRecord:
    count: int
    first_failed_at: datetime
    locked_until: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def lock_expired(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until <= now


class LoginAttemptStore(ABC):
    """Storage for per-identifier failed attempt counters."""

    @abstractmethod
    async def get(self, identifier: str) -> AttemptRecord | None:
        pass

    @abstractmethod
    async def increment(self, identifier: str, now: datetime) -> AttemptRecord:
        """Add one failure, creating the record when absent."""
        pass

    @abstractmethod
    async def set_lock(self, identifier: str, locked_until: datetime) -> None:
        pass

    @abstractmethod
    async def clear(self, identifier: str) -> None:
        pass

    @abstractmethod
    async def sweep(self, now: datetime, attempt_window: timedelta) -> int:
        """Remove expired lockouts and unlocked records older than the attempt window.

        Returns the count removed.
        """
        pass


class InMemoryLoginAttemptStore(LoginAttemptStore):
    """Per-process store. Not shared between instances."""

    def __init__(self):
        self._records: dict[str, AttemptRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._records

    async def get(self, identifier: str) -> AttemptRecord | None:
        return self._records.get(identifier)

    async def increment(self, identifier: str, now: datetime) -> AttemptRecord:
        record = self._records.get(identifier)
        if record is None:
            record = AttemptRecord(count=0, first_failed_at=now)
            self._records[identifier] = record
        record.count += 1
        return record

    async def set_lock(self, identifier: str, locked_until: datetime) -> None:
        record = self._records.get(identifier)
        if record is not None:
            record.locked_until = locked_until

    async def clear(self, identifier: str) -> None:
        self._records.pop(identifier, None)

    async def sweep(self, now: datetime, attempt_window: timedelta) -> int:
        expired = [
            key
            for key, record in self._records.items()
            if record.lock_expired(now)
            or (record.locked_until is None and now - record.first_failed_at > attempt_window)
        ]
        for key in expired:
            del self._records[key]
        return len(expired)


class RedisLoginAttemptStore(LoginAttemptStore):
    """Shared store backed by a Redis hash per identifier.

    HINCRBY keeps concurrent increments from different instances atomic, and
    key TTLs bound memory so ``sweep`` has nothing left to do. The TTL covers
    the longer of the attempt window and the lockout; a lock pins the key
    until ``locked_until``.

    Requires: pip install clinic-guard[redis]
    """

    def __init__(
        self,
        client,
        prefix: str = "clinic_guard:login",
        config: ThrottleConfig | None = None,
        ttl_seconds: int | None = None,
    ):
        self._client = client
        self._prefix = prefix
        if ttl_seconds is None:
            config = config if config is not None else ThrottleConfig()
            ttl_seconds = max(config.lockout_minutes, config.attempt_window_minutes) * 60
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisLoginAttemptStore":
        try:
            import redis.asyncio as redis
        except ImportError as e:
            raise ImportError(
                "Redis attempt store requires redis. Install with: pip install clinic-guard[redis]"
            ) from e

        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, identifier: str) -> str:
        return f"{self._prefix}:{identifier}"

    @staticmethod
    def _parse(data: dict) -> AttemptRecord | None:
        if not data or "count" not in data:
            return None
        locked_until = data.get("locked_until")
        return AttemptRecord(
            count=int(data["count"]),
            first_failed_at=datetime.fromisoformat(data["first_failed_at"]),
            locked_until=datetime.fromisoformat(locked_until) if locked_until else None,
        )

    async def get(self, identifier: str) -> AttemptRecord | None:
        return self._parse(await self._client.hgetall(self._key(identifier)))

    async def increment(self, identifier: str, now: datetime) -> AttemptRecord:
        key = self._key(identifier)
        await self._client.hsetnx(key, "first_failed_at", now.isoformat())
        await self._client.hincrby(key, "count", 1)
        await self._client.expire(key, self._ttl_seconds)
        return self._parse(await self._client.hgetall(key))

    async def set_lock(self, identifier: str, locked_until: datetime) -> None:
        key = self._key(identifier)
        await self._client.hset(key, "locked_until", locked_until.isoformat())
        await self._client.expireat(key, locked_until)

    async def clear(self, identifier: str) -> None:
        await self._client.delete(self._key(identifier))

    async def sweep(self, now: datetime, attempt_window: timedelta) -> int:
        return 0


class LoginThrottle:
    """Counts failed logins per normalized identifier and locks out repeat offenders.

    Counts only reset on success or when a record is purged; reaching the
    lockout does not zero them.
    """

    def __init__(
        self,
        store: LoginAttemptStore | None = None,
        config: ThrottleConfig | None = None,
    ):
        self._store = store if store is not None else InMemoryLoginAttemptStore()
        self._config = config if config is not None else ThrottleConfig()
        self._sweep_task: asyncio.Task | None = None
        self._running = False

    @property
    def config(self) -> ThrottleConfig:
        return self._config

    @property
    def store(self) -> LoginAttemptStore:
        return self._store

    async def is_locked(self, identifier: str, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        record = await self._store.get(identifier)
        if record is None:
            return False
        if record.is_locked(now):
            return True
        if record.lock_expired(now):
            await self._store.clear(identifier)
            logger.info("Lockout expired for login identifier")
        return False

    async def record_failure(self, identifier: str, now: datetime | None = None) -> AttemptRecord:
        now = now or datetime.now(UTC)
        window = timedelta(minutes=self._config.attempt_window_minutes)

        existing = await self._store.get(identifier)
        if (
            existing is not None
            and existing.locked_until is None
            and now - existing.first_failed_at > window
        ):
            # Stale failures outside the window start a fresh count.
            await self._store.clear(identifier)

        record = await self._store.increment(identifier, now)
        if record.count >= self._config.max_attempts and not record.is_locked(now):
            locked_until = now + timedelta(minutes=self._config.lockout_minutes)
            await self._store.set_lock(identifier, locked_until)
            record.locked_until = locked_until
            logger.warning(
                "Login identifier locked after %d failed attempts for %d minutes",
                record.count,
                self._config.lockout_minutes,
            )
        return record

    async def clear(self, identifier: str) -> None:
        await self._store.clear(identifier)

    async def sweep(self, now: datetime | None = None) -> int:
        removed = await self._store.sweep(
            now or datetime.now(UTC), timedelta(minutes=self._config.attempt_window_minutes)
        )
        if removed:
            logger.debug("Swept %d stale login attempt records", removed)
        return removed

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self._running:
            return
        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Login throttle sweeper started (interval %ss)", self._config.sweep_interval_seconds
        )

    async def stop(self) -> None:
        """Stop the periodic sweep task."""
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("Login throttle sweeper stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Login throttle sweep failed: %s", e)
