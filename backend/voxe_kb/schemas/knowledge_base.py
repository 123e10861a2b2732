"""
This module defines the Pydantic schemas for Knowledge Base resources.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class KnowledgeBaseBase(BaseModel):
    """Base model for knowledge base attributes."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name of the knowledge base.",
    )
    description: Optional[str] = Field(
        None, max_length=500, description="A brief description of the knowledge base."
    )

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class KnowledgeBaseCreate(KnowledgeBaseBase):
    type: Literal["USER", "WORKFLOW", "DEMO"] = "USER"


class KnowledgeBaseUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None


class KnowledgeBaseRead(KnowledgeBaseBase):
    """Knowledge base as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: str
    type: str
    is_active: bool
    total_documents: int = 0
    total_chunks: int = 0
    total_tokens: int = 0
    last_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class KnowledgeBaseStats(BaseModel):
    total_knowledge_bases: int = 0
    active_knowledge_bases: int = 0
    total_documents: int = 0
    total_tokens: int = 0


class KnowledgeBaseListResponse(BaseModel):
    knowledge_bases: List[KnowledgeBaseRead]
    stats: KnowledgeBaseStats


class WorkflowLinkCreate(BaseModel):
    workflow_id: str = Field(..., min_length=1, max_length=64)
    priority: int = Field(1, ge=0)
    retrieval_limit: int = Field(5, ge=1, le=50)
    similarity_threshold: float = Field(0.4, ge=0.0, le=1.0)


class WorkflowLinkRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workflow_id: str
    knowledge_base_id: int
    priority: int
    retrieval_limit: int
    similarity_threshold: float
    is_active: bool
    created_at: Optional[datetime] = None
