"""Configuration management."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field


class Settings(BaseSettings):
    """Application settings."""

    # Database (PostgreSQL) - constructed from parts
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: str = "branchchat"
    db_user: str = "branchchat"
    db_password: str = ""

    @computed_field
    @property
    def database_url(self) -> str:
        """Construct database URL from parts."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Model providers
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    gemini_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    provider_timeout: float = 120.0

    # Model selection
    default_model_provider: str = "openai"
    default_model_name: str = "gpt-5.2"
    summary_model: str = "haiku"  # Memory summaries (claude-agent-sdk)
    title_model: str = "haiku"  # Conversation titles (claude-agent-sdk)

    # Moderation
    moderation_model: str = "omni-moderation-latest"
    disable_moderation: bool = False
    moderation_fast_gate_rules: str = ""  # JSON list of regex strings, overrides hard rules

    # Usage limits
    disable_daily_limit: bool = False
    free_plan_daily_limit: int = 10
    usage_timezone: str = "Asia/Tokyo"

    # Context budget
    max_history_messages: int = 40
    max_context_tokens: int = 8000

    # Local development: canned assistant reply instead of provider calls
    use_dev_assistant_response: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


# Global settings instance
settings = Settings()
