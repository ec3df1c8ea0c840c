"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .sweep_lock import SweepLock
from .local_lock import LocalSweepLock

__all__ = ['SweepLock', 'LocalSweepLock']
