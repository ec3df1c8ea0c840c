"""
Sweep lease strategy interface.
Allows swapping between single-process and multi-replica deployments.
"""

from abc import ABC, abstractmethod


class SweepLock(ABC):
    """
    Interface for deciding which process runs a sweeper tick.

    Implementations:
    - LocalSweepLock: Always acquire (single replica, or idempotent overlap is fine)
    - RedisSweepLock: SET NX lease shared by all replicas

    A lease only avoids duplicate work. Correctness never depends on it:
    every sweeper transition is an idempotent compare-and-set.
    """

    @abstractmethod
    async def acquire(self, name: str, ttl_seconds: int) -> bool:
        """
        Try to take the lease for one tick.

        Args:
            name: Lease name (one per periodic job)
            ttl_seconds: Lease lifetime; it lapses on its own if the holder dies

        Returns:
            True if this process should run the tick
        """
        pass

    @abstractmethod
    async def release(self, name: str):
        """
        Give the lease back early after a finished tick.

        Args:
            name: Lease name
        """
        pass
