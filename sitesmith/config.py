import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

# Load .env from the working directory without overriding real environment values
load_dotenv(override=False)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


class Settings(BaseModel):
    """Runtime configuration, read once from the environment."""

    model_config = ConfigDict(frozen=True)

    generation_url: str = "http://localhost:3000/api/generate-daytona"
    api_url: str = "http://localhost:8000"

    ai_api_key: str | None = None
    ai_base_url: str = "https://ai-gateway.vercel.sh/v1"
    ai_model: str = "anthropic/claude-sonnet-4.5"

    max_prompt_length: int = 4000
    max_context_files: int = 14
    max_context_chars: int = 140_000
    max_file_chars: int = 30_000
    max_apply_edits: int = 20
    diff_context_lines: int = 3
    max_diff_lines: int = 220

    checkpoint_max_files: int = 120
    checkpoint_max_bytes: int = 2_000_000
    max_checkpoints: int = 8
    restore_concurrency: int = 4
    checkpoint_store: str = "file"
    checkpoint_dir: str = ".sitesmith/checkpoints"
    checkpoint_namespace: str = "sitesmith-checkpoints"
    checkpoint_ttl_seconds: int = 7 * 24 * 3600

    project_dir_name: str = "website-project"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            generation_url=os.getenv("GENERATION_URL", defaults.generation_url),
            api_url=os.getenv("SITESMITH_API_URL", defaults.api_url),
            ai_api_key=(
                os.getenv("AI_GATEWAY_API_KEY")
                or os.getenv("VERCEL_OIDC_TOKEN")
                or os.getenv("OPENAI_API_KEY")
            ),
            ai_base_url=(
                os.getenv("AI_GATEWAY_BASE_URL")
                or os.getenv("OPENAI_BASE_URL")
                or defaults.ai_base_url
            ),
            ai_model=os.getenv("AI_GATEWAY_MODEL") or defaults.ai_model,
            max_prompt_length=_int_env("MAX_PROMPT_LENGTH", defaults.max_prompt_length),
            max_context_files=_int_env("MAX_CONTEXT_FILES", defaults.max_context_files),
            max_context_chars=_int_env("MAX_CONTEXT_CHARS", defaults.max_context_chars),
            max_file_chars=_int_env("MAX_FILE_CHARS", defaults.max_file_chars),
            max_apply_edits=_int_env("MAX_APPLY_EDITS", defaults.max_apply_edits),
            diff_context_lines=_int_env("DIFF_CONTEXT_LINES", defaults.diff_context_lines),
            max_diff_lines=_int_env("MAX_DIFF_LINES", defaults.max_diff_lines),
            checkpoint_max_files=_int_env("CHECKPOINT_MAX_FILES", defaults.checkpoint_max_files),
            checkpoint_max_bytes=_int_env("CHECKPOINT_MAX_BYTES", defaults.checkpoint_max_bytes),
            max_checkpoints=_int_env("MAX_CHECKPOINTS", defaults.max_checkpoints),
            restore_concurrency=_int_env("RESTORE_CONCURRENCY", defaults.restore_concurrency),
            checkpoint_store=os.getenv("CHECKPOINT_STORE", defaults.checkpoint_store),
            checkpoint_dir=os.getenv("CHECKPOINT_DIR", defaults.checkpoint_dir),
            checkpoint_namespace=os.getenv("CHECKPOINT_NAMESPACE", defaults.checkpoint_namespace),
            checkpoint_ttl_seconds=_int_env("CHECKPOINT_TTL_SECONDS", defaults.checkpoint_ttl_seconds),
            project_dir_name=os.getenv("PROJECT_DIR_NAME", defaults.project_dir_name),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
