from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # LLM Configuration
    llm_provider: str = Field(default="ollama", description="ollama or rules")
    llm_model_name: str = Field(default="qwen2.5-coder:14b")
    llm_base_url: str = Field(default="http://localhost:11434")
    llm_temperature: float = Field(default=0.0)
    llm_max_tokens: int = Field(default=1500)

    # User data (saved connections and queries)
    user_data_url: str = Field(default="sqlite:///./data/user-data.db")

    # Application Configuration
    app_host: str = Field(default="0.0.0.0")
    app_port: int = Field(default=8000)
    debug: bool = Field(default=False)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Execution
    query_timeout: float = Field(default=30.0)
    max_rows: int = Field(default=1000)
    pool_size: int = Field(default=5)
    pool_timeout: float = Field(default=30.0)
    pool_recycle: int = Field(default=1800)
    adhoc_connection_limit: int = Field(default=8)

    # Result cache (0 size or 0 ttl disables it)
    result_cache_size: int = Field(default=100)
    result_cache_ttl: float = Field(default=300.0)

    # Translation
    schema_max_tables: int = Field(default=20)
    translation_cache_size: int = Field(default=256)
    min_query_length: int = Field(default=3)
    max_query_length: int = Field(default=1000)

    # Visualization
    max_chart_categories: int = Field(default=50)
    max_pie_categories: int = Field(default=8)

    # Refresh: "reject" concurrent refreshes of one saved query, or "wait" behind them
    refresh_conflict_policy: str = Field(default="reject")
    refresh_wait_timeout: float = Field(default=60.0)

    model_config = SettingsConfigDict(
        env_prefix="GENBI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Global settings instance
settings = Settings()
