"""Configuration models for validation using Pydantic."""

from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


class CredentialsConfig(BaseModel):
    """API credentials loaded from environment variables."""

    # GitHub (required - every reconciliation call goes through it)
    github_token: str = Field(..., min_length=1, description="GitHub personal access token")

    # Supabase (required)
    supabase_url: str = Field(..., min_length=1, description="Supabase project URL")
    supabase_key: str = Field(..., min_length=1, description="Supabase API key")
    database_url: Optional[str] = Field(None, description="PostgreSQL database URL (optional, for schema setup)")

    # LLM configuration (annotation pipeline)
    anthropic_api_key: Optional[str] = Field(None, description="Anthropic API key for Claude")
    openai_api_key: Optional[str] = Field(None, description="OpenAI API key")
    llm_provider: str = Field(default="anthropic", description="LLM provider: 'anthropic' or 'openai'")
    llm_model: str = Field(default="claude-3-5-haiku-20241022", description="LLM model name")

    @field_validator("github_token")
    @classmethod
    def validate_github_token(cls, v: str) -> str:
        """Validate GitHub token is not the placeholder."""
        if not v or v == "ghp_your_token_here":
            raise ValueError("GitHub token must be set in .env file")
        return v

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate Supabase URL format."""
        if not v or v == "https://your-project.supabase.co":
            raise ValueError("Supabase URL must be set in .env file")
        if not v.startswith("https://"):
            raise ValueError("Supabase URL must start with https://")
        return v

    @field_validator("supabase_key")
    @classmethod
    def validate_supabase_key(cls, v: str) -> str:
        """Validate Supabase key is set."""
        if not v or v == "your_supabase_anon_key_here":
            raise ValueError("Supabase key must be set in .env file")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Validate the LLM provider is one the client supports."""
        v_lower = v.lower()
        if v_lower not in ("anthropic", "openai"):
            raise ValueError("LLM provider must be 'anthropic' or 'openai'")
        return v_lower

    def llm_api_key(self) -> Optional[str]:
        """Return the API key matching the configured provider."""
        if self.llm_provider == "anthropic":
            return self.anthropic_api_key
        return self.openai_api_key


class PipelineConfig(BaseModel):
    """Batch sizes, pacing and limits for a pipeline run."""

    # Batching (sized against per-invocation operation ceilings)
    repo_batch_size: int = Field(default=30, ge=1, description="Repositories per checkpointed step")
    issue_repo_batch_size: int = Field(default=3, ge=1, description="Repositories per issue-processing step")
    annotation_batch_size: int = Field(default=8, ge=1, description="Queue items per annotation batch")
    max_annotation_batches: int = Field(default=30, ge=1, description="Annotation batches per run")
    insert_chunk_size: int = Field(default=6, ge=1, description="Issue rows per insert (100 params / 15 columns)")

    # GitHub pacing
    max_requests_per_hour: int = Field(default=5000, ge=1)
    rate_limit_safety_margin: int = Field(default=100, ge=0)
    min_request_delay: float = Field(default=2.0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    default_retry_after: float = Field(default=60.0, ge=0)
    max_issue_pages: int = Field(default=100, ge=1)
    request_budget: Optional[int] = Field(default=None, ge=1, description="Max GitHub requests per invocation")

    # Run control
    max_processing_seconds: int = Field(default=3600, ge=1, description="Wall-clock budget for the annotation drain")
    step_retries: int = Field(default=2, ge=0, description="Retries per checkpointed step")
    reconcile_depth: str = Field(default="count", description="'count' (label count only) or 'full' (languages)")
    disabled_sources: List[str] = Field(default_factory=list)
    journal_dir: str = Field(default=".contribot/runs", description="Directory for checkpointed step journals")

    # Log shipping
    enable_log_shipping: bool = Field(default=False)
    log_bucket: str = Field(default="contribot-logs")

    @field_validator("reconcile_depth")
    @classmethod
    def validate_reconcile_depth(cls, v: str) -> str:
        """Validate reconcile depth is a known policy."""
        v_lower = v.lower()
        if v_lower not in ("count", "full"):
            raise ValueError("Reconcile depth must be 'count' or 'full'")
        return v_lower


class Config(BaseModel):
    """Application configuration."""

    credentials: CredentialsConfig
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper
