"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file if it exists
# In Docker/production, environment variables are set directly
ENV_FILE_OPT: str | None = None

_env_path = Path(".env")
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)
    ENV_FILE_OPT = str(_env_path)


class Settings(BaseSettings):
    """Application configuration.

    Loads settings from environment variables. In local development, these can be
    provided via a .env file. Field names map to upper-cased environment variables
    (``github_limit_files`` -> ``GITHUB_LIMIT_FILES``).
    """

    model_config = SettingsConfigDict(
        env_file=ENV_FILE_OPT,
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Application
    app_name: str = "Docs Harvester"
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Redis / vector index
    redis_url: SecretStr = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    redis_password: Optional[SecretStr] = Field(default=None, description="Redis password")
    vector_index_name: str = Field(
        default="doc_fragments", description="Name of the vector index holding fragments"
    )
    vector_dim: int = Field(default=1536, description="Vector dimensions")
    vector_store_batch_size: int = Field(
        default=10,
        description="Fragments embedded and upserted per call (kept below processor_batch_size)",
    )
    similarity_threshold: float = Field(
        default=0.7, description="Minimum similarity score for query results"
    )
    max_query_results: int = Field(default=10, description="Default top-K for queries")

    # Embeddings (optional at import time to allow CLI help to load without secrets)
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    embedding_model: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    embeddings_cache_ttl: int = Field(
        default=60 * 60 * 24 * 7, description="TTL for cached embeddings (seconds)"
    )

    # HTTP
    request_timeout: float = Field(default=20.0, description="HTTP request timeout (seconds)")
    max_redirects: int = Field(default=5, description="Maximum redirects for page fetches")
    user_agent: str = Field(
        default="Mozilla/5.0 (compatible; DocsHarvester/1.0)",
        description="User-Agent header for direct page fetches",
    )

    # Retry configuration
    retry_max_retries: int = Field(default=3, description="Maximum retries for remote calls")
    retry_initial_delay: float = Field(
        default=1.0, description="Initial delay before the first retry (seconds)"
    )
    retry_backoff_factor: float = Field(default=2.0, description="Backoff factor for retries")

    # Chunking
    chunk_max_size: int = Field(default=2000, description="Maximum fragment size (characters)")
    chunk_min_size: int = Field(default=200, description="Minimum fragment size (characters)")
    chunk_overlap: int = Field(default=100, description="Overlap carried between fragments")
    min_chunk_length: int = Field(
        default=20, description="Fragments shorter than this are merged or filtered"
    )
    dedupe_prefix_length: int = Field(
        default=100, description="Normalized prefix length used for deduplication"
    )

    # Managed crawl service
    firecrawl_api_key: Optional[str] = Field(default=None, description="Crawl service API key")
    firecrawl_api_url: str = Field(
        default="https://api.firecrawl.dev/v1", description="Crawl service base URL"
    )
    crawl_max_pages: int = Field(default=10, description="Page ceiling for a crawl job")
    crawl_max_depth: int = Field(default=1, description="Crawl depth for a crawl job")
    crawl_poll_interval: float = Field(default=5.0, description="Seconds between status polls")
    crawl_max_polls: int = Field(default=30, description="Maximum status polls per job")

    # Website scraping
    website_batch_size: int = Field(default=50, description="Fragments emitted per batch")
    website_max_chunks: int = Field(default=1000, description="Fragment ceiling per site")
    website_max_paragraphs_per_page: int = Field(
        default=20, description="Paragraphs kept per crawled page"
    )

    # Repository scraping
    github_token: Optional[str] = Field(default=None, description="GitHub API token")
    github_api_url: str = Field(default="https://api.github.com", description="GitHub API URL")
    github_max_depth: int = Field(default=3, description="Maximum directory depth")
    github_chunk_batch_size: int = Field(default=50, description="Fragments emitted per batch")
    github_limit_files: bool = Field(default=False, description="Cap the number of code files")
    github_skip_code: bool = Field(default=False, description="Skip source-code directories")
    github_only_dirs: Optional[str] = Field(
        default=None, description="Comma-separated directories to process instead of the defaults"
    )
    github_file_delay: float = Field(default=0.5, description="Delay between file requests")
    github_dir_delay: float = Field(default=0.3, description="Delay between directory requests")
    github_max_code_files: int = Field(default=30, description="Code file cap with limit_files")
    github_max_file_bytes: int = Field(default=500_000, description="Skip larger code files")
    github_important_file_chars: int = Field(
        default=10_000, description="Content cap for important-file fragments"
    )

    # Local files
    file_chunk_batch_size: int = Field(default=20, description="Fragments emitted per batch")
    file_max_files_per_batch: int = Field(default=10, description="Files processed per batch")
    file_max_files_per_dir: int = Field(default=200, description="Files processed per directory")
    file_max_size_kb: int = Field(default=500, description="Skip files larger than this")
    file_max_dirs: int = Field(default=20, description="Subdirectories processed per level")
    file_batch_pause: float = Field(default=0.1, description="Pause between file batches")

    # Streaming processor
    processor_batch_size: int = Field(default=20, description="Flush threshold")
    processor_interval: float = Field(
        default=0.05, description="Minimum seconds between consecutive flushes"
    )
    source_delay: float = Field(default=1.0, description="Delay between sources")

    # Document manager
    cache_dir: str = Field(default="./cache/documents", description="Fragment cache directory")
    optimize_chunks: bool = Field(
        default=True, description="Run the chunk optimizer after each fetch"
    )
    sources_file: Optional[str] = Field(
        default=None, description="JSON file with additional document sources"
    )
    diagnostics_error_threshold: int = Field(
        default=10, description="Issue count at which diagnostics report an error"
    )

    def github_only_dirs_list(self) -> List[str]:
        """Return github_only_dirs as a list."""
        if not self.github_only_dirs:
            return []
        return [d.strip() for d in self.github_only_dirs.split(",") if d.strip()]


# Global settings instance
settings = Settings()
