"""
Voxe Knowledge Base - FastAPI application entry point
Document ingestion, chunking, embedding and semantic search for tenants.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from voxe_kb.api.api_v1.api import api_router
from voxe_kb.core.config import settings
from voxe_kb.core.exceptions import KnowledgeBaseError
from voxe_kb.core.logging import configure_logging
from voxe_kb.db.init_db import init_db
from voxe_kb.services.document_service import document_service
from voxe_kb.tasks.queue import build_task_queue, set_task_queue

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    logger.info("Starting Voxe Knowledge Base service")

    if not settings.DEBUG:
        allowed = settings.get_allowed_origins()
        if "*" in allowed:
            logger.error("ALLOWED_ORIGINS must not contain * outside DEBUG")
            raise RuntimeError("In production, ALLOWED_ORIGINS must be an explicit whitelist")

    try:
        await init_db()
    except Exception as e:
        logger.error("Database initialisation failed", error=str(e))
        raise

    queue = build_task_queue(document_service.process_document)
    set_task_queue(queue)
    await queue.start()

    yield

    logger.info("Shutting down Voxe Knowledge Base service")
    await queue.stop()
    set_task_queue(None)


async def knowledge_base_error_handler(request: Request, exc: KnowledgeBaseError):
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message, type=exc.error_type)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "ValidationError",
            "message": "Invalid request",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


def create_application() -> FastAPI:
    """Create the FastAPI application"""

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Knowledge base ingestion and semantic search",
        version="1.0.0",
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url=f"{settings.API_V1_STR}/docs",
        redoc_url=f"{settings.API_V1_STR}/redoc",
        lifespan=lifespan,
    )

    allow_origins = ["*"] if settings.DEBUG else settings.get_allowed_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(KnowledgeBaseError, knowledge_base_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/")
    async def root():
        return {
            "message": "Voxe Knowledge Base API",
            "version": "1.0.0",
            "docs": f"{settings.API_V1_STR}/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check"""
        return {"status": "healthy", "service": "voxe_kb"}

    return app


app = create_application()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "voxe_kb.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG, log_level="info"
    )
