"""
Embedding provider configuration.

Settings are flat environment variables; they are turned into one of these
typed configs once, and the embedding client only ever sees the typed form.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, SecretStr, TypeAdapter

from voxe_kb.core.config import Settings


class _EmbeddingConfigBase(BaseModel):
    api_key: Optional[SecretStr] = None
    base_url: str
    model: str
    dimensions: int = Field(..., gt=0)
    batch_size: int = Field(64, gt=0)
    timeout_seconds: float = Field(60.0, gt=0)
    max_attempts: int = Field(3, ge=1)
    retry_base_delay: float = Field(1.0, ge=0)
    retry_max_delay: float = Field(10.0, ge=0)
    # OpenAI v3 models accept a `dimensions` request field
    send_dimensions: bool = False


class OpenAIEmbeddingConfig(_EmbeddingConfigBase):
    provider: Literal["openai"] = "openai"
    base_url: str = "https://api.openai.com/v1"
    model: str = "text-embedding-3-small"
    dimensions: int = Field(1536, gt=0)


class SiliconFlowEmbeddingConfig(_EmbeddingConfigBase):
    provider: Literal["siliconflow"] = "siliconflow"
    base_url: str = "https://api.siliconflow.cn/v1"
    model: str = "BAAI/bge-m3"
    dimensions: int = Field(1024, gt=0)


EmbeddingProviderConfig = Annotated[
    Union[OpenAIEmbeddingConfig, SiliconFlowEmbeddingConfig],
    Field(discriminator="provider"),
]

_config_adapter = TypeAdapter(EmbeddingProviderConfig)


def provider_config_from_settings(settings: Settings) -> EmbeddingProviderConfig:
    """Build the typed provider config from flat settings."""
    provider = (settings.EMBEDDING_PROVIDER or "openai").strip().lower()
    data = {
        "provider": provider,
        "batch_size": settings.EMBEDDING_BATCH_SIZE,
        "timeout_seconds": settings.EMBEDDING_TIMEOUT_SECONDS,
        "max_attempts": settings.EMBEDDING_MAX_ATTEMPTS,
        "retry_base_delay": settings.EMBEDDING_RETRY_BASE_DELAY,
        "retry_max_delay": settings.EMBEDDING_RETRY_MAX_DELAY,
    }
    if provider == "openai":
        data["api_key"] = settings.OPENAI_API_KEY
        data["base_url"] = settings.OPENAI_BASE_URL
    elif provider == "siliconflow":
        data["api_key"] = settings.SILICONFLOW_API_KEY
        data["base_url"] = settings.SILICONFLOW_BASE_URL
    if settings.EMBEDDING_MODEL:
        data["model"] = settings.EMBEDDING_MODEL
    if settings.EMBEDDING_DIMENSIONS:
        data["dimensions"] = settings.EMBEDDING_DIMENSIONS
        data["send_dimensions"] = provider == "openai"
    # unknown providers fail validation on the discriminator
    return _config_adapter.validate_python(data)
