"""
Subscription tier limits.

Limits come from the ``tier_limits`` table when an admin has configured the
tier, otherwise from built-in defaults. Resolved limits are cached per tier
for ``TIER_LIMITS_CACHE_TTL`` seconds and dropped whenever they are updated.
"""

from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from voxe_kb.core.cache import TTLCache
from voxe_kb.core.config import settings
from voxe_kb.core.exceptions import TierLimitExceeded, ValidationError
from voxe_kb.db.models import SubscriptionTier, Tenant, TierLimit
from voxe_kb.schemas.tier_limit import TierLimits, TierLimitsUpdate
from voxe_kb.services.chunking_service import ChunkConfig

logger = structlog.get_logger(__name__)

MB = 1024 * 1024
UNLIMITED = -1

DEFAULT_TIER_LIMITS: Dict[str, Dict[str, int]] = {
    "FREE": {
        "max_knowledge_bases": 1,
        "max_documents": 10,
        "document_size_limit": 5 * MB,
        "chunk_size": 1000,
        "max_chunks_per_document": 50,
    },
    "STARTER": {
        "max_knowledge_bases": 2,
        "max_documents": 50,
        "document_size_limit": 10 * MB,
        "chunk_size": 1500,
        "max_chunks_per_document": 100,
    },
    "TEAM": {
        "max_knowledge_bases": 5,
        "max_documents": 100,
        "document_size_limit": 25 * MB,
        "chunk_size": 2000,
        "max_chunks_per_document": 200,
    },
    "BUSINESS": {
        "max_knowledge_bases": 25,
        "max_documents": 1000,
        "document_size_limit": 100 * MB,
        "chunk_size": 4000,
        "max_chunks_per_document": 1000,
    },
    "ENTERPRISE": {
        "max_knowledge_bases": UNLIMITED,
        "max_documents": UNLIMITED,
        "document_size_limit": 500 * MB,
        "chunk_size": 8000,
        "max_chunks_per_document": UNLIMITED,
    },
}

LIMIT_FIELDS = tuple(DEFAULT_TIER_LIMITS["FREE"].keys())


def normalize_tier(tier: Optional[str]) -> str:
    value = (tier or "").strip().upper()
    if value in DEFAULT_TIER_LIMITS:
        return value
    fallback = (settings.DEFAULT_TIER or "FREE").strip().upper()
    return fallback if fallback in DEFAULT_TIER_LIMITS else SubscriptionTier.FREE.value


def within_limit(current: int, limit: int) -> bool:
    """True when one more item still fits under ``limit``."""
    return limit == UNLIMITED or current < limit


class TierLimitService:
    def __init__(self, cache: TTLCache):
        self.cache = cache

    def resolve_tier(self, db: Session, owner_id: str) -> str:
        tenant = db.query(Tenant).filter(Tenant.id == owner_id).first()
        return normalize_tier(tenant.tier if tenant else None)

    def _load_limits(self, db: Session, tier: str) -> TierLimits:
        row = db.query(TierLimit).filter(TierLimit.tier == tier).first()
        if row is None:
            return TierLimits(tier=tier, **DEFAULT_TIER_LIMITS[tier])
        return TierLimits.model_validate(row)

    def get_limits(self, db: Session, tier: str) -> TierLimits:
        tier = normalize_tier(tier)
        return self.cache.get_or_load(tier, lambda: self._load_limits(db, tier))

    def get_owner_limits(self, db: Session, owner_id: str) -> TierLimits:
        return self.get_limits(db, self.resolve_tier(db, owner_id))

    def get_document_size_limit(self, db: Session, owner_id: str) -> int:
        limit = self.get_owner_limits(db, owner_id).document_size_limit
        return min(limit, settings.MAX_FILE_SIZE)

    def get_chunk_config(self, db: Session, owner_id: str) -> ChunkConfig:
        chunk_size = self.get_owner_limits(db, owner_id).chunk_size
        return ChunkConfig(chunk_size, min(settings.CHUNK_OVERLAP, chunk_size - 1))

    def get_max_chunks_per_document(self, db: Session, owner_id: str) -> int:
        return self.get_owner_limits(db, owner_id).max_chunks_per_document

    def get_max_documents(self, db: Session, owner_id: str) -> int:
        return self.get_owner_limits(db, owner_id).max_documents

    def get_max_knowledge_bases(self, db: Session, owner_id: str) -> int:
        return self.get_owner_limits(db, owner_id).max_knowledge_bases

    def ensure_within(self, current: int, limit: int, resource: str, tier: str) -> None:
        if within_limit(current, limit):
            return
        raise TierLimitExceeded(
            f"You have reached the {resource} limit of your {tier} plan",
            usage={"resource": resource, "current": current, "limit": limit, "tier": tier},
        )

    def list_limits(self, db: Session) -> List[TierLimits]:
        return [self.get_limits(db, tier.value) for tier in SubscriptionTier]

    def update_limits(self, db: Session, tier: str, changes: TierLimitsUpdate) -> TierLimits:
        """Upsert the limits of one tier and drop it from the cache."""
        key = (tier or "").strip().upper()
        if key not in DEFAULT_TIER_LIMITS:
            raise ValidationError(f"Unknown tier '{tier}'", {"tier": tier})

        row = db.query(TierLimit).filter(TierLimit.tier == key).first()
        if row is None:
            row = TierLimit(tier=key, **DEFAULT_TIER_LIMITS[key])
            db.add(row)

        for field_name, value in changes.model_dump(exclude_none=True).items():
            setattr(row, field_name, value)

        db.commit()
        db.refresh(row)
        self.cache.invalidate(key)
        logger.info("Tier limits updated", tier=key, changes=changes.model_dump(exclude_none=True))
        return TierLimits.model_validate(row)


tier_limit_service = TierLimitService(TTLCache(settings.TIER_LIMITS_CACHE_TTL))
