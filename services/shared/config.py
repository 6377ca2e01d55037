"""Shared configuration management for the reconciliation platform.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="contract-reconciliation",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Text extraction
    max_document_size_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Largest accepted document (bytes)",
    )
    min_text_chars: int = Field(
        default=100,
        description="Minimum characters for primary extraction to be accepted",
    )
    min_text_words: int = Field(
        default=50,
        description="Minimum words for primary extraction to be accepted",
    )
    max_garbled_ratio: float = Field(
        default=0.2,
        description="Highest garbled-character ratio accepted from primary extraction",
    )

    # OCR fallback configuration
    ocr_provider: Literal["textract", "tesseract"] = Field(
        default="textract",
        description="Fallback OCR provider: textract (AWS document analysis), tesseract (local)",
    )
    aws_region: str = Field(
        default="us-east-1",
        description="AWS region for Textract",
    )
    ocr_render_resolution: int = Field(
        default=300,
        description="DPI used to rasterise PDF pages for Tesseract",
    )

    # AI provider configuration
    ai_provider: Literal["openai", "ollama", "disabled"] = Field(
        default="openai",
        description=(
            "AI provider for structured extraction, embeddings and narratives: "
            "openai (cloud API), ollama (self-hosted LLM), disabled (every call fails)"
        ),
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI chat model used for extraction and narratives",
    )
    openai_embedding_model: str = Field(
        default="text-embedding-3-small",
        description="OpenAI embedding model used for vendor matching",
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="qwen2.5:7b",
        description="Ollama model to use for extraction (e.g., qwen2.5:7b, llama3.1:8b)",
    )
    ollama_embedding_model: str = Field(
        default="nomic-embed-text",
        description="Ollama model to use for embeddings",
    )
    ai_max_retries: int = Field(
        default=3,
        description="Attempts per AI call before a transport failure is reported",
    )

    # Structured extraction
    chunk_max_tokens: int = Field(
        default=8000,
        description="Token budget per extraction request",
    )
    chunk_overlap_tokens: int = Field(
        default=500,
        description="Overlap between consecutive chunks (words)",
    )
    contract_confidence_threshold: float = Field(
        default=0.8,
        description="Contracts extracted below this confidence need review",
    )

    # Vendor matching
    vendor_canonicalization_threshold: float = Field(
        default=0.85,
        description="Similarity required to reuse a known vendor name when canonicalizing",
    )
    vendor_match_threshold: float = Field(
        default=0.80,
        description="Similarity required to route an invoice to a known vendor",
    )

    # Orchestration
    external_call_timeout_seconds: float = Field(
        default=120.0,
        description="Timeout applied to each external call made by a pipeline job",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the arq job queue",
    )
    queue_max_jobs: int = Field(
        default=10,
        description="Concurrent jobs per worker",
    )
    queue_job_timeout: int = Field(
        default=300,
        description="Maximum seconds a single job may run",
    )
    expiration_sweep_hour: int = Field(
        default=2,
        description="Hour of day (UTC) at which expired contracts are swept",
    )
    metrics_port: int = Field(
        default=9100,
        description="Port for the worker's Prometheus metrics endpoint (0 disables it)",
    )

    # Storage configuration
    storage_backend: Literal["local", "minio"] = Field(
        default="local",
        description="Blob store backend: local filesystem or S3-compatible MinIO",
    )
    storage_local_path: str = Field(
        default="./data/uploads",
        description="Root directory for the local blob store",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="documents",
        description="Default bucket name for document storage",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
