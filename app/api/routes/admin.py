"""
Administrative endpoints.
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.deps import get_now, get_session_factory, require_admin
from app.schemas.reservation import SweepReport
from app.services.sweeper_service import run_sweep

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.post("/sweep", response_model=SweepReport)
async def run_sweep_endpoint(
    now: datetime = Depends(get_now),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Run one expiry sweeper pass immediately."""
    result = await run_sweep(session_factory, now=now)
    return SweepReport(
        expired=result.expired,
        activated=result.activated,
        failed=result.failed,
        skipped=result.skipped,
    )
