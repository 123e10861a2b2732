"""
Document API Endpoints
Inspect, reprocess and delete individual documents.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from voxe_kb.core.dependencies import get_owner_id
from voxe_kb.db.database import get_db
from voxe_kb.schemas.document import (
    DocumentDetail,
    DocumentStatusResponse,
    ReprocessRequest,
    ReprocessResponse,
)
from voxe_kb.services.document_service import document_service

router = APIRouter()


@router.get("/{document_id}", response_model=DocumentDetail)
async def get_document(
    document_id: int,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    """Document metadata with its chunks in order (vectors omitted)."""
    return document_service.get_document(db, owner_id, document_id)


@router.get("/{document_id}/status", response_model=DocumentStatusResponse)
async def get_document_status(
    document_id: int,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return document_service.get_status(db, owner_id, document_id)


@router.post(
    "/{document_id}/reprocess",
    response_model=ReprocessResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reprocess_document(
    document_id: int,
    request: Optional[ReprocessRequest] = Body(None),
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    request = request or ReprocessRequest()
    return await document_service.request_reprocess(
        db,
        owner_id,
        document_id,
        chunk_size=request.chunk_size,
        chunk_overlap=request.chunk_overlap,
    )


@router.delete("/{document_id}")
async def delete_document(
    document_id: int,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    document_service.delete_document(db, owner_id, document_id)
    return {"success": True, "message": "Document deleted successfully"}
