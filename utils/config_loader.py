"""Configuration loader that reads from .env and validates with Pydantic."""

import os
import sys
from pathlib import Path
from typing import Any, Dict
from dotenv import load_dotenv
from pydantic import ValidationError

from models.config_models import Config, CredentialsConfig, PipelineConfig


# Environment variable -> PipelineConfig field. Unset variables keep the model default.
PIPELINE_ENV_VARS = {
    "REPO_BATCH_SIZE": "repo_batch_size",
    "ISSUE_REPO_BATCH_SIZE": "issue_repo_batch_size",
    "ANNOTATION_BATCH_SIZE": "annotation_batch_size",
    "MAX_ANNOTATION_BATCHES": "max_annotation_batches",
    "INSERT_CHUNK_SIZE": "insert_chunk_size",
    "GITHUB_MAX_REQUESTS_PER_HOUR": "max_requests_per_hour",
    "GITHUB_RATE_LIMIT_SAFETY_MARGIN": "rate_limit_safety_margin",
    "GITHUB_MIN_REQUEST_DELAY": "min_request_delay",
    "GITHUB_MAX_RETRIES": "max_retries",
    "GITHUB_DEFAULT_RETRY_AFTER": "default_retry_after",
    "GITHUB_MAX_ISSUE_PAGES": "max_issue_pages",
    "GITHUB_REQUEST_BUDGET": "request_budget",
    "MAX_PROCESSING_SECONDS": "max_processing_seconds",
    "STEP_RETRIES": "step_retries",
    "RECONCILE_DEPTH": "reconcile_depth",
    "JOURNAL_DIR": "journal_dir",
    "ENABLE_LOG_SHIPPING": "enable_log_shipping",
    "LOG_BUCKET": "log_bucket",
}


def _pipeline_settings_from_env() -> Dict[str, Any]:
    """Collect pipeline overrides that are present in the environment."""
    settings: Dict[str, Any] = {}
    for env_name, field_name in PIPELINE_ENV_VARS.items():
        value = os.getenv(env_name)
        if value is not None and value != "":
            settings[field_name] = value

    disabled = os.getenv("DISABLED_DATA_SOURCES", "")
    settings["disabled_sources"] = [s.strip() for s in disabled.split(",") if s.strip()]
    return settings


def load_config() -> Config:
    """
    Load and validate configuration from environment variables.

    Reads from .env file in the project root and validates all required
    credentials and settings using Pydantic models.

    Returns:
        Config: Validated configuration object

    Raises:
        SystemExit: If configuration is invalid or missing required fields
    """
    # Load .env file from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(dotenv_path=env_path)

    try:
        config = Config(
            credentials=CredentialsConfig(
                github_token=os.getenv("GITHUB_TOKEN", ""),
                supabase_url=os.getenv("SUPABASE_URL", ""),
                supabase_key=os.getenv("SUPABASE_KEY", ""),
                database_url=os.getenv("DATABASE_URL"),
                anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
                openai_api_key=os.getenv("OPENAI_API_KEY"),
                llm_provider=os.getenv("LLM_PROVIDER", "anthropic"),
                llm_model=os.getenv("LLM_MODEL", "claude-3-5-haiku-20241022"),
            ),
            pipeline=PipelineConfig(**_pipeline_settings_from_env()),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

        return config

    except ValidationError as e:
        print("❌ Configuration validation failed:", file=sys.stderr)
        print("\nPlease check your .env file. Missing or invalid fields:", file=sys.stderr)

        for error in e.errors():
            field_path = " → ".join(str(x) for x in error["loc"])
            message = error["msg"]
            print(f"  • {field_path}: {message}", file=sys.stderr)

        print("\nHint: Copy .env.example to .env and fill in your credentials.", file=sys.stderr)
        sys.exit(1)
