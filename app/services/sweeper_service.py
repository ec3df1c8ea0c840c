"""
Expiry sweeper: advances time-driven transitions independent of requests.

Each pass:
  1. Every live reservation whose window has ended -> EXPIRED
  2. In CHECKIN_MODE=auto only: every PENDING reservation whose window
     contains `now` -> ACTIVE. In confirmed mode pending holds wait for
     a geofence-confirmed arrival and simply expire if it never comes.

Each record is transitioned in its own session through the same
compare-and-set path user actions use, so a record that a user cancelled
a moment earlier is skipped, not overwritten. A failure on one record is
logged and counted; it never stops the rest of the batch.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.exceptions import InvalidTransitionError, NotFoundError
from app.core.logging import get_logger
from app.core.metrics import record_sweep, sweep_duration
from app.domain.lifecycle import LIVE_STATUSES, ReservationStatus
from app.domain.timewindow import ensure_utc, utcnow
from app.models.reservation import Reservation
from app.services import reservation_service
from app.services.interfaces.sweep_lock import SweepLock
from app.services.strategy_factory import get_sweep_lock

logger = get_logger(__name__)

LEASE_NAME = "expiry"


@dataclass
class SweepResult:
    expired: int = 0
    activated: int = 0
    failed: int = 0
    skipped: bool = False


async def expirable_ids(db: AsyncSession, now: datetime, after_id: int, limit: int) -> list[int]:
    result = await db.execute(
        select(Reservation.id)
        .where(
            Reservation.status.in_([status.value for status in LIVE_STATUSES]),
            Reservation.window_end < now,
            Reservation.id > after_id,
        )
        .order_by(Reservation.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def activatable_ids(db: AsyncSession, now: datetime, after_id: int, limit: int) -> list[int]:
    result = await db.execute(
        select(Reservation.id)
        .where(
            Reservation.status == ReservationStatus.PENDING.value,
            Reservation.window_start <= now,
            Reservation.window_end > now,
            Reservation.id > after_id,
        )
        .order_by(Reservation.id)
        .limit(limit)
    )
    return list(result.scalars().all())


Finder = Callable[[AsyncSession, datetime, int, int], Awaitable[list[int]]]
Apply = Callable[[AsyncSession, int, datetime], Awaitable[bool]]


async def _apply_expire(db: AsyncSession, reservation_id: int, now: datetime) -> bool:
    _, changed = await reservation_service.expire(db, reservation_id, now)
    return changed


async def _apply_activate(db: AsyncSession, reservation_id: int, now: datetime) -> bool:
    _, changed = await reservation_service.activate(db, reservation_id, now)
    return changed


async def _sweep_step(
    session_factory: async_sessionmaker,
    find: Finder,
    apply: Apply,
    now: datetime,
    batch_size: int,
    kind: str,
) -> tuple[int, int]:
    """Page through candidates by id; returns (applied, failed)."""
    applied = failed = 0
    cursor = 0
    while True:
        async with session_factory() as db:
            ids = await find(db, now, cursor, batch_size)
        if not ids:
            break

        for reservation_id in ids:
            try:
                async with session_factory() as db:
                    if await apply(db, reservation_id, now):
                        applied += 1
            except (InvalidTransitionError, NotFoundError) as e:
                # Lost a race with a user action; the record is already settled
                logger.info("sweep_record_skipped", kind=kind, reservation_id=reservation_id, reason=str(e))
            except Exception as e:
                failed += 1
                logger.error(
                    "sweep_record_failed",
                    kind=kind,
                    reservation_id=reservation_id,
                    error=str(e),
                    exc_info=True,
                )

        cursor = ids[-1]
        if len(ids) < batch_size:
            break

    return applied, failed


async def run_sweep(
    session_factory: async_sessionmaker,
    now: Optional[datetime] = None,
    checkin_mode: Optional[str] = None,
    batch_size: Optional[int] = None,
    lock: Optional[SweepLock] = None,
) -> SweepResult:
    """Run one sweeper pass. Safe to run concurrently with itself and with user actions."""
    settings = get_settings()
    now = ensure_utc(now) if now is not None else utcnow()
    checkin_mode = checkin_mode or settings.CHECKIN_MODE
    batch_size = batch_size or settings.SWEEP_BATCH_SIZE
    lock = lock or get_sweep_lock()

    if not await lock.acquire(LEASE_NAME, settings.SWEEP_LOCK_TTL_SECONDS):
        logger.debug("sweep_skipped", reason="lease_held_elsewhere")
        record_sweep("skipped")
        return SweepResult(skipped=True)

    started = time.perf_counter()
    structlog.contextvars.bind_contextvars(sweep_id=uuid.uuid4().hex[:8])
    result = SweepResult()
    try:
        result.expired, failed = await _sweep_step(
            session_factory, expirable_ids, _apply_expire, now, batch_size, "expire"
        )
        result.failed += failed

        if checkin_mode == "auto":
            result.activated, failed = await _sweep_step(
                session_factory, activatable_ids, _apply_activate, now, batch_size, "activate"
            )
            result.failed += failed

        record_sweep("completed", result.expired, result.activated, result.failed)
        logger.info(
            "sweep_completed",
            expired=result.expired,
            activated=result.activated,
            failed=result.failed,
            checkin_mode=checkin_mode,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return result
    except Exception as e:
        record_sweep("failed")
        logger.error("sweep_failed", error=str(e), exc_info=True)
        raise
    finally:
        sweep_duration.observe(time.perf_counter() - started)
        structlog.contextvars.unbind_contextvars("sweep_id")
        await lock.release(LEASE_NAME)
