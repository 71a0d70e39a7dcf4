"""
Recall engine configuration
---------------------------
All tunables live in one pydantic model tree so the CLI, the service object
and the tests share a single source of defaults.  `load_config()` overlays a
YAML file (config/config.yaml) on top of those defaults; a missing file simply
yields the defaults.

API keys never live in the YAML: each provider section names the environment
variable that holds its key (`api_key_env`), which the CLI fills from `.env`
via python-dotenv.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, model_validator

from hybrid_recall.exceptions import ConfigurationMissingError


class ChunkingConfig(BaseModel):
    min_chunk_chars: int = Field(default=150, ge=0)
    max_chunk_chars: int = Field(default=2000, gt=0)
    overlap_chars: int = Field(default=50, ge=0)
    include_metadata_header: bool = True     # title / heading path / tags line
    use_contextual_summaries: bool = False   # one completion call per chunk

    @model_validator(mode="after")
    def _check_bounds(self) -> "ChunkingConfig":
        if self.min_chunk_chars > self.max_chunk_chars:
            raise ValueError("min_chunk_chars must not exceed max_chunk_chars")
        if self.overlap_chars >= self.max_chunk_chars:
            raise ValueError("overlap_chars must be smaller than max_chunk_chars")
        return self


class LexicalConfig(BaseModel):
    k1: float = 1.2
    b: float = 0.75
    title_weight: float = 1.0
    content_weight: float = 2.0
    consolidation_threshold: int = Field(default=5, ge=1)
    debounce_seconds: float = Field(default=0.5, ge=0.0)


class RetrievalConfig(BaseModel):
    semantic_top_k: int = 20
    similarity_threshold: float = 0.3
    bm25_top_k: int = 50
    bm25_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    final_top_k: int = 10


class ProviderConfig(BaseModel):
    """Connection settings shared by every OpenAI-compatible endpoint."""

    base_url: Optional[str] = "https://api.openai.com/v1"
    model: Optional[str] = None
    api_key_env: str = "OPENAI_API_KEY"
    require_api_key: bool = True          # local servers (Ollama, LM Studio) need none
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=2, ge=0)

    def api_key(self) -> str:
        key = os.getenv(self.api_key_env, "")
        if key:
            return key
        if self.require_api_key:
            raise ConfigurationMissingError(
                f"Environment variable {self.api_key_env} is not set"
            )
        return "no-key"


class EmbeddingConfig(ProviderConfig):
    model: Optional[str] = "text-embedding-3-small"
    batch_size: int = Field(default=8, ge=1)   # concurrent embed calls per batch
    auto_embed_on_save: bool = True


class CompletionConfig(ProviderConfig):
    model: Optional[str] = None
    context_length: int = Field(default=4096, gt=512)
    max_tokens: int = 256
    temperature: float = 0.1


class StorageConfig(BaseModel):
    path: str = "data/recall_store.json"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = "logs/recall.log"


class RagConfig(BaseModel):
    """Root configuration object."""

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    lexical: LexicalConfig = Field(default_factory=LexicalConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path = "config/config.yaml") -> RagConfig:
    """Load YAML config over the defaults. A missing file returns defaults."""
    path = Path(path)
    if not path.exists():
        logger.debug(f"[Config] {path} not found, using defaults")
        return RagConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    config = RagConfig.model_validate(raw)
    logger.debug(f"[Config] Loaded {path}")
    return config
