"""
Tenant subscription tier and per-tier limits.
"""

import enum

from sqlalchemy import Column, BigInteger, Integer, String, DateTime
from sqlalchemy.sql import func

from voxe_kb.db.database import Base


class SubscriptionTier(enum.Enum):
    FREE = "FREE"
    STARTER = "STARTER"
    TEAM = "TEAM"
    BUSINESS = "BUSINESS"
    ENTERPRISE = "ENTERPRISE"


class Tenant(Base):
    """Owner of knowledge bases. Billing keeps `tier` current."""

    __tablename__ = "tenants"

    id = Column(String(64), primary_key=True)
    name = Column(String(100))
    tier = Column(String(20), default=SubscriptionTier.FREE.value, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class TierLimit(Base):
    """Configured limits for one tier. -1 means unlimited."""

    __tablename__ = "tier_limits"

    tier = Column(String(20), primary_key=True)

    max_knowledge_bases = Column(Integer, nullable=False)
    max_documents = Column(Integer, nullable=False)
    document_size_limit = Column(BigInteger, nullable=False)  # bytes
    chunk_size = Column(Integer, nullable=False)  # tokens
    max_chunks_per_document = Column(Integer, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
