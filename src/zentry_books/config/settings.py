"""Configuration settings for the Zentry Books back office."""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file.

    Provider keys are optional: a backend is only offered when its key
    (or local base URL) is configured.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Interpreter backends
    openai_api_key: SecretStr | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    anthropic_api_key: SecretStr | None = Field(
        default=None, validation_alias="ANTHROPIC_API_KEY"
    )
    google_api_key: SecretStr | None = Field(default=None, validation_alias="GOOGLE_API_KEY")

    gpt_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_MODEL")
    claude_model: str = Field(default="claude-haiku-4-5", validation_alias="CLAUDE_MODEL")
    gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")

    ollama_base_url: str = Field(
        default="http://localhost:11434", validation_alias="OLLAMA_BASE_URL"
    )
    ollama_model: str = Field(default="qwen3:30b", validation_alias="OLLAMA_MODEL")
    lm_studio_base_url: str = Field(
        default="http://localhost:1234/v1", validation_alias="LM_STUDIO_BASE_URL"
    )
    lm_studio_model: str = Field(default="", validation_alias="LM_STUDIO_MODEL")

    llm_provider: str = Field(default="", validation_alias="LLM_PROVIDER")
    llm_max_tokens: int = Field(default=4096, validation_alias="LLM_MAX_TOKENS")
    llm_temperature: float = Field(default=0.7, validation_alias="LLM_TEMPERATURE")
    interpret_timeout: float = Field(default=60.0, validation_alias="INTERPRET_TIMEOUT")

    # Notion workspace store
    notion_api_key: SecretStr | None = Field(default=None, validation_alias="NOTION_API_KEY")
    notion_database_id: str | None = Field(default=None, validation_alias="NOTION_DATABASE_ID")
    notion_api_url: str = Field(
        default="https://api.notion.com/v1", validation_alias="NOTION_API_URL"
    )
    notion_version: str = Field(default="2022-06-28", validation_alias="NOTION_VERSION")
    notion_timeout: float = Field(default=30.0, validation_alias="NOTION_TIMEOUT")

    # Company profile used in the system prompt and invoice defaults
    company_name: str = Field(default="自社", validation_alias="COMPANY_NAME")
    company_address: str = Field(default="", validation_alias="COMPANY_ADDRESS")
    company_email: str = Field(default="", validation_alias="COMPANY_EMAIL")
    company_invoice_reg_no: str = Field(default="", validation_alias="COMPANY_INVOICE_REG_NO")
    company_default_tax_rate: Decimal = Field(
        default=Decimal("0.10"), validation_alias="COMPANY_DEFAULT_TAX_RATE"
    )
    company_default_payment_term_days: int = Field(
        default=30, validation_alias="COMPANY_DEFAULT_PAYMENT_TERM_DAYS"
    )

    # Executor behaviour
    client_search_limit: int = Field(default=10, validation_alias="CLIENT_SEARCH_LIMIT")
    totals_write_retries: int = Field(default=3, validation_alias="TOTALS_WRITE_RETRIES")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
