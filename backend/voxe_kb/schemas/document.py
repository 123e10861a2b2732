"""
Pydantic schemas for documents and their chunks.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DocumentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    knowledge_base_id: int
    filename: str
    original_name: str
    file_type: str
    mime_type: Optional[str] = None
    file_size: int
    status: str
    error_message: Optional[str] = None
    chunk_size: int
    chunk_overlap: int
    page_count: Optional[int] = None
    word_count: Optional[int] = None
    total_chunks: int = 0
    total_tokens: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class DocumentChunkRead(BaseModel):
    """Chunk without its vector."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    chunk_index: int
    content: str
    token_count: int
    char_start: int
    char_end: int
    page_number: Optional[int] = None
    section: Optional[str] = None
    embedding_model: str
    embedding_dimensions: int


class DocumentDetail(DocumentRead):
    chunks: List[DocumentChunkRead] = []


class DocumentListResponse(BaseModel):
    documents: List[DocumentRead]


class DocumentUploadResponse(BaseModel):
    document_id: int
    knowledge_base_id: int
    filename: str
    original_name: str
    file_size: int
    status: str
    message: str = "Document uploaded and queued for processing"


class DocumentStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    error_message: Optional[str] = None
    total_chunks: int = 0
    total_tokens: int = 0
    processed_at: Optional[datetime] = None


class ReprocessRequest(BaseModel):
    """Optional new chunking parameters; omitted fields keep the stored ones."""

    chunk_size: Optional[int] = Field(None, description="Tokens per chunk")
    chunk_overlap: Optional[int] = Field(None, description="Tokens shared by neighbouring chunks")


class ReprocessResponse(BaseModel):
    status: str = "started"
    document_id: int
