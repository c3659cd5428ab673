from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...api.deps import get_session_context
from ...services.access_guard import SessionContext
from ...services.reporting import ReportingService
from ...schemas.admin import StatsResponse

router = APIRouter(prefix="/admin", tags=["Admin"])

@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Aggregate counts for the admin dashboard."""
    return StatsResponse(**ReportingService(db).stats(ctx))
