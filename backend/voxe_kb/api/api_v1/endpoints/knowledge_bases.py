"""
Knowledge Base API Endpoints
CRUD, uploads into a knowledge base, workflow links and similarity search.
"""

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session

from voxe_kb.core.dependencies import get_owner_id
from voxe_kb.db.database import get_db
from voxe_kb.schemas.document import DocumentListResponse, DocumentRead, DocumentUploadResponse
from voxe_kb.schemas.knowledge_base import (
    KnowledgeBaseCreate,
    KnowledgeBaseListResponse,
    KnowledgeBaseRead,
    KnowledgeBaseUpdate,
    WorkflowLinkCreate,
    WorkflowLinkRead,
)
from voxe_kb.schemas.search import SearchRequest, SearchResponse
from voxe_kb.services.document_service import document_service
from voxe_kb.services.ingestion_service import ingestion_service
from voxe_kb.services.knowledge_base_service import knowledge_base_service
from voxe_kb.services.search_service import search_service

router = APIRouter()
UPLOAD_CHUNK_SIZE = 1024 * 1024


async def _read_upload_limited(file: UploadFile, max_size: int) -> bytes:
    """Read the upload in chunks, giving up as soon as it exceeds ``max_size``."""
    buffer = bytearray()
    while True:
        chunk = await file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        buffer.extend(chunk)
        if len(buffer) > max_size:
            raise ingestion_service.size_error(len(buffer), max_size)
    return bytes(buffer)


@router.post("", response_model=KnowledgeBaseRead, status_code=status.HTTP_201_CREATED)
async def create_knowledge_base(
    data: KnowledgeBaseCreate,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return knowledge_base_service.create(db, owner_id, data)


@router.get("", response_model=KnowledgeBaseListResponse)
async def list_knowledge_bases(
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    kbs, stats = knowledge_base_service.list(db, owner_id)
    return KnowledgeBaseListResponse(
        knowledge_bases=[KnowledgeBaseRead.model_validate(kb) for kb in kbs],
        stats=stats,
    )


@router.post("/search", response_model=SearchResponse, response_model_exclude_none=True)
async def search_knowledge_bases(
    request: SearchRequest,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    """Semantic search across the caller's knowledge bases."""
    return await search_service.search(db, owner_id, request)


@router.get("/{knowledge_base_id}", response_model=KnowledgeBaseRead)
async def get_knowledge_base(
    knowledge_base_id: int,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return knowledge_base_service.get_owned(db, owner_id, knowledge_base_id)


@router.patch("/{knowledge_base_id}", response_model=KnowledgeBaseRead)
async def update_knowledge_base(
    knowledge_base_id: int,
    data: KnowledgeBaseUpdate,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return knowledge_base_service.update(db, owner_id, knowledge_base_id, data)


@router.delete("/{knowledge_base_id}")
async def delete_knowledge_base(
    knowledge_base_id: int,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    knowledge_base_service.delete(db, owner_id, knowledge_base_id)
    return {"success": True, "message": "Knowledge base deleted successfully"}


@router.post(
    "/{knowledge_base_id}/documents",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    knowledge_base_id: int,
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    """Upload a file into a knowledge base and queue it for processing."""
    kb = ingestion_service.prepare(db, owner_id, knowledge_base_id)
    content = await _read_upload_limited(file, ingestion_service.get_size_limit(db, owner_id))
    document = await ingestion_service.ingest(
        db,
        owner_id,
        knowledge_base_id,
        filename=file.filename or "",
        content_type=file.content_type,
        content=content,
        knowledge_base=kb,
    )
    return DocumentUploadResponse(
        document_id=document.id,
        knowledge_base_id=document.knowledge_base_id,
        filename=document.filename,
        original_name=document.original_name,
        file_size=document.file_size,
        status=document.status,
    )


@router.get("/{knowledge_base_id}/documents", response_model=DocumentListResponse)
async def list_documents(
    knowledge_base_id: int,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    documents = document_service.list_documents(db, owner_id, knowledge_base_id)
    return DocumentListResponse(documents=[DocumentRead.model_validate(d) for d in documents])


@router.get("/{knowledge_base_id}/workflow-links", response_model=list[WorkflowLinkRead])
async def list_workflow_links(
    knowledge_base_id: int,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return knowledge_base_service.list_links(db, owner_id, knowledge_base_id)


@router.post(
    "/{knowledge_base_id}/workflow-links",
    response_model=WorkflowLinkRead,
    status_code=status.HTTP_201_CREATED,
)
async def link_workflow(
    knowledge_base_id: int,
    data: WorkflowLinkCreate,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return knowledge_base_service.link_workflow(db, owner_id, knowledge_base_id, data)


@router.delete("/{knowledge_base_id}/workflow-links/{workflow_id}")
async def unlink_workflow(
    knowledge_base_id: int,
    workflow_id: str,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    knowledge_base_service.unlink_workflow(db, owner_id, knowledge_base_id, workflow_id)
    return {"success": True}
