"""
Similarity search request/response schemas.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from voxe_kb.core.config import settings


class SearchRequest(BaseModel):
    query: Optional[str] = Field(None, description="Natural-language query")
    knowledge_base_ids: Optional[List[int]] = Field(
        None, description="Explicit scope; only owned, active knowledge bases are searched"
    )
    workflow_id: Optional[str] = Field(
        None, description="Search the knowledge bases linked to this workflow"
    )
    limit: Optional[int] = Field(None, ge=1, le=settings.SEARCH_MAX_LIMIT)
    similarity_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)


class SearchResult(BaseModel):
    chunk_id: int
    document_id: int
    document_name: str
    knowledge_base_id: int
    knowledge_base_name: str
    content: str
    similarity: float
    chunk_index: int
    token_count: int
    page_number: Optional[int] = None
    section: Optional[str] = None


class SearchMetadata(BaseModel):
    query: str
    total_chunks_searched: int
    knowledge_bases_searched: int
    results_returned: int
    similarity_threshold: float


class SearchResponse(BaseModel):
    results: List[SearchResult] = []
    metadata: Optional[SearchMetadata] = None
    message: Optional[str] = None
