"""
Application settings (Pydantic v2)
 - environment variables and .env files (several candidate paths)
 - safe defaults plus small parsing helpers
"""

from typing import Optional, List
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(case_sensitive=True)

    # Basics
    PROJECT_NAME: str = "Voxe Knowledge Base"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False

    # CORS whitelist (comma separated), e.g.
    # http://localhost:3000,https://app.voxe.ai
    ALLOWED_ORIGINS: Optional[str] = None

    # Caller identity. Authentication lives in the web app; this service
    # trusts the X-Owner-Id header forwarded by it.
    DISABLE_AUTH: bool = False
    DEFAULT_OWNER_ID: str = "dev-owner"
    ADMIN_API_KEY: Optional[str] = None

    # Database
    DATABASE_URL: str = "sqlite:///./voxe_kb.db"

    # Storage
    STORAGE_BACKEND: str = "local"  # local, s3
    UPLOAD_DIR: str = "./uploads/knowledge-bases"
    S3_ENDPOINT: Optional[str] = None
    S3_ACCESS_KEY: Optional[str] = None
    S3_SECRET_KEY: Optional[str] = None
    S3_BUCKET_NAME: Optional[str] = None
    S3_REGION: str = "us-east-1"
    S3_SECURE: Optional[bool] = None

    # Embedding provider
    EMBEDDING_PROVIDER: str = "openai"  # openai, siliconflow
    EMBEDDING_MODEL: Optional[str] = None  # provider default when unset
    EMBEDDING_DIMENSIONS: Optional[int] = None
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    SILICONFLOW_API_KEY: Optional[str] = None
    SILICONFLOW_BASE_URL: str = "https://api.siliconflow.cn/v1"
    EMBEDDING_BATCH_SIZE: int = 64
    EMBEDDING_TIMEOUT_SECONDS: float = 60.0
    EMBEDDING_MAX_ATTEMPTS: int = 3
    EMBEDDING_RETRY_BASE_DELAY: float = 1.0
    EMBEDDING_RETRY_MAX_DELAY: float = 10.0

    # Tokenizer used for chunking and token counts
    TOKENIZER: str = "tiktoken"  # tiktoken, word
    TIKTOKEN_ENCODING: str = "cl100k_base"

    # Document processing
    SUPPORTED_FILE_TYPES: str = "pdf,docx,txt,md"
    MAX_FILE_SIZE: int = 524288000  # 500MB hard ceiling, tiers go lower
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200

    # Tier limits
    DEFAULT_TIER: str = "FREE"
    TIER_LIMITS_CACHE_TTL: float = 300.0

    # Processing queue
    USE_CELERY: bool = False
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    PROCESSING_WORKERS: int = 2
    PROCESSING_QUEUE_SIZE: int = 100
    PROCESSING_ENQUEUE_TIMEOUT: float = 5.0

    # Search
    SEARCH_DEFAULT_LIMIT: int = 5
    SEARCH_MAX_LIMIT: int = 50
    SEARCH_DEFAULT_THRESHOLD: float = 0.7

    # Logging
    LOG_LEVEL: str = "INFO"

    def get_supported_file_types(self) -> List[str]:
        """Get supported file types as a list"""
        return [ext.strip().lower() for ext in self.SUPPORTED_FILE_TYPES.split(",") if ext.strip()]

    def get_allowed_origins(self) -> List[str]:
        """Parse the CORS whitelist (comma separated or empty)"""
        if not self.ALLOWED_ORIGINS:
            return []
        parts = [p.strip() for p in self.ALLOWED_ORIGINS.split(",")]
        return [p for p in parts if p]


def _detect_env_files() -> List[Path]:
    """Find candidate .env files in priority order.

    1. backend/.env
    2. repository root /.env
    3. backend/.env.dev (fallback only)
    """
    here = Path(__file__).resolve()
    backend_dir = here.parents[2]  # backend/
    project_root = here.parents[3]

    candidates = [
        backend_dir / ".env",
        project_root / ".env",
        backend_dir / ".env.dev",
    ]
    return [p for p in candidates if p.exists()]


_env_files = _detect_env_files()
settings = Settings(_env_file=_env_files or None)
