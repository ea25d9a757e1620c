from pathlib import Path

from pydantic_settings import BaseSettings

PACKAGE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    # Anthropic (required for live calls only)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-opus-4-6"
    advisory_model: str = "claude-sonnet-4-5-20250929"  # faster model for structured advisory output

    # Token budgets
    thinking_budget_tokens: int = 4096
    research_max_tokens: int = 12000
    document_read_max_tokens: int = 8000
    document_analysis_max_tokens: int = 24000
    cross_check_max_tokens: int = 8000
    advisory_max_tokens: int = 8000
    translate_max_tokens: int = 16384

    # Streaming cadence
    emit_interval_ms: int = 400  # min gap between thinking updates
    min_new_chars: int = 80  # min new thinking chars before an update
    text_progress_ms: int = 2000  # "writing output" progress interval
    depth_every_chars: int = 2000
    requirement_display_delay_ms: int = 700
    document_read_delay_ms: int = 500
    short_delay_ms: int = 150
    scripted_delay_scale: float = 1.0  # multiplier for test-mode playback delays

    # Corridor cache
    corridor_cache_dir: str = str(PACKAGE_DIR / "data" / "corridors")
    use_live_search: bool = False  # force backend research even when cached

    # Orchestration
    fan_in_queue_size: int = 256
    stream_timeout_seconds: float = 120.0

    # Rate limiting
    rate_limit_enabled: bool = True

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_to_file: bool = True
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
