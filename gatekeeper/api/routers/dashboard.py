"""Admin dashboard endpoints: status counters and statistics."""

from typing import Dict, List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from gatekeeper.api.deps import get_db, get_current_actor
from gatekeeper.core.security import Actor
from gatekeeper.core.rbac import require_permission
from gatekeeper.core.approval.service import SubmissionService
from gatekeeper.services.counters import StatusAggregator

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


# Schemas
class CounterResponse(BaseModel):
    kind: str
    pending_count: int
    approved_count: int
    rejected_count: int
    reconciled_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StatsResponse(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_kind: Dict[str, Dict[str, int]]
    oldest_pending_at: Optional[str] = None


class ReconcileResponse(BaseModel):
    reconciled_at: datetime
    counts: Dict[str, Dict[str, int]]
    drifted: Dict[str, Dict[str, int]]


# Endpoints
@router.get("/counters", response_model=List[CounterResponse])
@require_permission("dashboard:read")
async def get_counters(
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
):
    """Per-kind status counters, kept current by every decision."""
    return [CounterResponse.model_validate(row) for row in StatusAggregator(db).get_counters()]


@router.get("/stats", response_model=StatsResponse)
@require_permission("dashboard:read")
async def get_stats(
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
):
    """Counts computed straight from the subject store."""
    return StatsResponse(**SubmissionService(db).stats_overview())


@router.post("/reconcile", response_model=ReconcileResponse)
@require_permission("dashboard:reconcile")
async def reconcile_counters(
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
):
    """Recount every kind now instead of waiting for the scheduled pass."""
    report = StatusAggregator(db).reconcile()
    return ReconcileResponse(
        reconciled_at=report.reconciled_at,
        counts=report.counts,
        drifted=report.drifted,
    )
