"""
Tier limit schemas. ``-1`` means unlimited.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TierLimits(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    tier: str
    max_knowledge_bases: int
    max_documents: int
    document_size_limit: int
    chunk_size: int
    max_chunks_per_document: int


class TierLimitsUpdate(BaseModel):
    max_knowledge_bases: Optional[int] = Field(None, ge=-1)
    max_documents: Optional[int] = Field(None, ge=-1)
    document_size_limit: Optional[int] = Field(None, ge=1)
    chunk_size: Optional[int] = Field(None, ge=1)
    max_chunks_per_document: Optional[int] = Field(None, ge=-1)
