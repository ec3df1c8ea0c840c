"""
Local sweep lease - no coordination.
"""

from app.services.interfaces.sweep_lock import SweepLock


class LocalSweepLock(SweepLock):
    """
    Always acquire.

    Use when:
    - A single API replica runs the scheduler
    - Overlapping sweeps across replicas are acceptable (transitions are idempotent)
    """

    async def acquire(self, name: str, ttl_seconds: int) -> bool:
        return True

    async def release(self, name: str):
        """No-op - nothing to release."""
        pass
