"""
Sweep lease strategy factory.
Configures which lease strategy the expiry sweeper uses.
"""

from typing import Optional

from app.services.interfaces.sweep_lock import SweepLock
from app.services.interfaces.local_lock import LocalSweepLock
from app.services.sweep_lock_service import RedisSweepLock
from app.core.config import get_settings


def get_sweep_lock_strategy() -> SweepLock:
    """
    Get configured sweep lease strategy.

    - local: LocalSweepLock (single replica)
    - redis: RedisSweepLock (several replicas)

    Selected via SWEEP_LOCK_STRATEGY env var.
    """
    strategy = get_settings().SWEEP_LOCK_STRATEGY

    if strategy == 'redis':
        return RedisSweepLock()
    else:
        return LocalSweepLock()


# Singleton instance
_strategy: Optional[SweepLock] = None


def get_sweep_lock() -> SweepLock:
    """Get sweep lease strategy singleton."""
    global _strategy
    if _strategy is None:
        _strategy = get_sweep_lock_strategy()
    return _strategy
