"""
Tier limit maintenance (admin key required).
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from voxe_kb.core.dependencies import require_admin
from voxe_kb.db.database import get_db
from voxe_kb.schemas.tier_limit import TierLimits, TierLimitsUpdate
from voxe_kb.services.tier_limit_service import normalize_tier, tier_limit_service

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("", response_model=List[TierLimits])
async def list_tier_limits(db: Session = Depends(get_db)):
    return tier_limit_service.list_limits(db)


@router.get("/{tier}", response_model=TierLimits)
async def get_tier_limits(tier: str, db: Session = Depends(get_db)):
    return tier_limit_service.get_limits(db, normalize_tier(tier))


@router.put("/{tier}", response_model=TierLimits)
async def update_tier_limits(
    tier: str,
    changes: TierLimitsUpdate,
    db: Session = Depends(get_db),
):
    """Update one tier and drop it from the limits cache."""
    return tier_limit_service.update_limits(db, tier, changes)
