"""Application configuration using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str

    # Ollama
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3"
    ollama_timeout: float = 60.0

    # Tavily search/extract API (company research and job posting extraction)
    tavily_api_key: str | None = None
    tavily_base_url: str = "https://api.tavily.com"
    tavily_max_results: int = 8
    tavily_timeout: float = 15.0

    # Pipeline bounds (seconds)
    company_research_timeout: float = 20.0
    job_analysis_timeout: float = 20.0
    cv_analysis_timeout: float = 15.0
    synthesis_timeout: float = 45.0
    db_write_timeout: float = 10.0

    # Retry policy for network-flaky gatherer calls
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0

    # Progress polling and stall detection (seconds)
    poll_fast_interval: float = 2.0
    poll_medium_interval: float = 5.0
    poll_slow_interval: float = 10.0
    poll_fast_window: float = 30.0
    poll_medium_window: float = 60.0
    stall_threshold: float = 30.0
    stall_retry_threshold: float = 45.0

    # Application
    app_name: str = "Interview Research API"
    debug: bool = False
    log_level: str = "INFO"

    # CORS
    frontend_cors_origin: str = "http://localhost:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def search_enabled(self) -> bool:
        """Whether search-backed enrichment can run (requires an API key)."""
        return bool(self.tavily_api_key)


# Global settings instance
settings = Settings()
