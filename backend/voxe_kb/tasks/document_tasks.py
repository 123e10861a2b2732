"""
Celery tasks for document processing.
"""

import asyncio

from voxe_kb.celery_app import celery_app


@celery_app.task(name="process_document_task")
def process_document_task(document_id: int):
    """Run the processing pipeline for one document (worker context)."""
    from voxe_kb.services.document_service import document_service

    processed = asyncio.run(document_service.process_document(document_id))
    return {"document_id": document_id, "success": processed}
