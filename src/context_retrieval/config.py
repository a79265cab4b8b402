"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_max_chars: int = Field(
        default=8000,
        description="Texts longer than this are rejected before reaching the model.",
    )
    embedding_dimension: int | None = Field(
        default=None,
        description="Pin the store's vector dimension. When unset, the first committed vector fixes it.",
    )

    # Vector store
    vector_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite:///./data/context_retrieval.db"

    # Chunking
    chunk_size: int = 512
    chunk_overlap: int = 64

    # Ingestion
    ingestion_workers: int = 4
    upload_dir: str = Field(
        default="./data/uploads",
        description="File sources are resolved against this directory and may not leave it.",
    )
    delete_uploaded_files: bool = False

    # Retrieval
    search_default_k: int = 5
    context_max_items: int = 5
    context_max_per_document: int = 2
    context_oversample: int = Field(
        default=4,
        description="Search for max_items * context_oversample candidates before per-document capping.",
    )

    # Serving
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Module-level singleton; import `settings` wherever needed.
settings = Settings()
