"""Configuration management for FinWise."""

import logging
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Pipeline components take a ``Settings`` instance in their constructor;
    only the API layer touches the module-level ``settings`` object.
    """

    # Primary (text) extraction model
    llm_enabled: bool = True
    llm_provider: Literal["ollama", "openai", "openrouter"] = "ollama"
    openai_api_key: str = ""
    openrouter_api_key: str = ""
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    openai_model: str = "gpt-4o-mini"
    openrouter_model: str = "meta-llama/llama-3.3-70b-instruct"
    llm_call_timeout: float = 30.0  # Per-call deadline in seconds
    llm_max_retries: int = 1

    # Vision (statement page) extraction
    vision_enabled: bool = True
    ollama_vision_model: str = "llama3.2-vision"
    openai_vision_model: str = "gpt-4o-mini"
    openrouter_vision_model: str = "meta-llama/llama-3.2-11b-vision-instruct"
    vision_call_timeout: float = 90.0
    vision_max_tokens: int = 4000
    pdf_render_resolution: int = 150

    # Currency handling
    base_currency: str = "INR"
    exchange_rate_api_url: str = "https://api.exchangerate-api.com/v4/latest"
    rate_cache_ttl_hours: int = 24
    rate_fetch_timeout: float = 10.0
    rate_refresh_cooldown_seconds: float = 300.0

    # Batch ingestion
    batch_rate_limit_ms: int = 500
    batch_max_items: int = 50
    batch_time_budget_seconds: float = 25.0

    # Categorization
    fuzzy_category_matching: bool = True
    fuzzy_category_threshold: float = 0.7

    # Development mode
    dev_mode: bool = True

    # Data directory
    data_dir: Path = Path.home() / ".finwise"

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # LLM_PROVIDER and llm_provider both work
        extra="ignore",
    )

    @property
    def db_path(self) -> Path:
        """Get the SQLite database path."""
        suffix = "dev" if self.dev_mode else "prod"
        return self.data_dir / f"finwise_{suffix}.db"

    @property
    def llm_model_name(self) -> str:
        """Model identifier in litellm's provider/model form."""
        if self.llm_provider == "openai":
            return self.openai_model
        if self.llm_provider == "openrouter":
            return f"openrouter/{self.openrouter_model}"
        return f"ollama/{self.ollama_model}"

    @property
    def vision_model_name(self) -> str:
        if self.llm_provider == "openai":
            return self.openai_vision_model
        if self.llm_provider == "openrouter":
            return f"openrouter/{self.openrouter_vision_model}"
        return f"ollama/{self.ollama_vision_model}"

    @property
    def llm_api_base(self) -> str | None:
        if self.llm_provider == "ollama":
            return self.ollama_host
        return None

    @property
    def llm_api_key(self) -> str | None:
        if self.llm_provider == "openai":
            return self.openai_api_key or None
        if self.llm_provider == "openrouter":
            return self.openrouter_api_key or None
        return None

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def log_config(self) -> None:
        """Log current configuration with sensitive values redacted."""
        key = self.llm_api_key
        redacted = f"set ({key[:4]}...{key[-4:]})" if key else "not set"
        logger.info("=" * 60)
        logger.info("CONFIGURATION LOADED")
        logger.info(f"LLM enabled:         {self.llm_enabled}")
        logger.info(f"LLM provider:        {self.llm_provider}")
        logger.info(f"LLM model:           {self.llm_model_name}")
        logger.info(f"LLM API key:         {redacted}")
        logger.info(f"Vision enabled:      {self.vision_enabled} ({self.vision_model_name})")
        logger.info(f"Call timeout:        {self.llm_call_timeout}s")
        logger.info(f"Base currency:       {self.base_currency}")
        logger.info(f"Rate cache TTL:      {self.rate_cache_ttl_hours}h")
        logger.info(f"Batch limits:        {self.batch_max_items} items, {self.batch_time_budget_seconds}s")
        logger.info(f"Dev mode:            {self.dev_mode}")
        logger.info(f"Database:            {self.db_path}")
        logger.info(f"API host:            {self.api_host}:{self.api_port}")
        logger.info("=" * 60)


# Global settings instance (API layer only)
settings = Settings()
