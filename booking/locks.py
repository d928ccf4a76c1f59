"""
In-process per-provider admission lock

One mutex per provider id: admission checks for the same provider are
serialized, different providers proceed in parallel.
"""

import threading
import uuid
from typing import Dict

from shared.config import SchedulingConfig
from shared.domain.exceptions import LockContentionError
from shared.domain.repositories import IProviderLock
from shared.utils import Logger


class InMemoryProviderLock(IProviderLock):
    """threading.Lock per provider with bounded acquisition attempts"""

    def __init__(
        self,
        max_attempts: int = SchedulingConfig.LOCK_MAX_ATTEMPTS,
        attempt_timeout_seconds: float = 1.0
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.attempt_timeout_seconds = attempt_timeout_seconds
        self._registry_guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._holders: Dict[str, str] = {}
        self.logger = Logger()

    def _lock_for(self, provider_id: str) -> threading.Lock:
        with self._registry_guard:
            lock = self._locks.get(provider_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[provider_id] = lock
            return lock

    def acquire(self, provider_id: str) -> str:
        lock = self._lock_for(provider_id)
        for attempt in range(1, self.max_attempts + 1):
            if lock.acquire(timeout=self.attempt_timeout_seconds):
                token = uuid.uuid4().hex
                self._holders[provider_id] = token
                return token
            self.logger.debug(
                "Provider lock busy",
                provider_id=provider_id,
                attempt=attempt
            )

        self.logger.warning(
            "Provider lock contention exhausted",
            provider_id=provider_id,
            attempts=self.max_attempts
        )
        raise LockContentionError(provider_id, self.max_attempts)

    def release(self, provider_id: str, token: str) -> None:
        if self._holders.get(provider_id) != token:
            self.logger.warning("Release with stale lock token", provider_id=provider_id)
            return
        del self._holders[provider_id]
        self._locks[provider_id].release()
