import asyncio
from contextlib import asynccontextmanager


class CodecGate:
    """Process-wide serialization lock for heavy codec work.

    - Exactly one decode/transform/encode job runs at a time, trading
      throughput for bounded peak memory
    - A request that cannot take the slot waits for it; nothing is rejected
    - Waiters are counted for the health endpoint only
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._waiting = 0
        self._active = 0

    async def acquire(self):
        """Wait for the codec slot."""
        self._waiting += 1
        try:
            await self._lock.acquire()
        finally:
            self._waiting -= 1
        self._active += 1

    def release(self):
        """Release the codec slot."""
        self._active -= 1
        self._lock.release()

    @asynccontextmanager
    async def slot(self):
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    @property
    def active_jobs(self) -> int:
        return self._active

    @property
    def waiting_jobs(self) -> int:
        return self._waiting

    def snapshot(self) -> dict:
        return {"active": self._active, "waiting": self._waiting}
