"""
Configuration management using Pydantic Settings.
Reads from environment variables (and .env).
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Text generation backend
    model_name: str = Field(default="mistralai/Mistral-7B-Instruct-v0.2", alias="UNIDIALOG_MODEL_NAME")
    load_in_4bit: bool = Field(default=True, alias="UNIDIALOG_LOAD_IN_4BIT")
    device: str = Field(default="cuda", alias="UNIDIALOG_DEVICE")
    serializer: str = Field(default="llm", alias="UNIDIALOG_SERIALIZER")

    # Template source (URL wins when both are set)
    templates_path: Optional[str] = Field(default="data/templates.json", alias="UNIDIALOG_TEMPLATES_PATH")
    templates_url: Optional[str] = Field(default=None, alias="UNIDIALOG_TEMPLATES_URL")
    templates_api_key: Optional[str] = Field(default=None, alias="UNIDIALOG_TEMPLATES_API_KEY")
    template_cache_ttl: int = Field(default=300, alias="UNIDIALOG_TEMPLATE_CACHE_TTL")
    http_timeout: float = Field(default=8.0, alias="UNIDIALOG_HTTP_TIMEOUT")

    # Storage
    records_dir: str = Field(default="outputs/records", alias="UNIDIALOG_RECORDS_DIR")

    # Application
    default_language: str = Field(default="pt", alias="UNIDIALOG_DEFAULT_LANGUAGE")
    log_level: str = Field(default="INFO", alias="UNIDIALOG_LOG_LEVEL")
    host: str = Field(default="0.0.0.0", alias="UNIDIALOG_HOST")
    port: int = Field(default=5000, alias="UNIDIALOG_PORT")

    def template_source_kwargs(self) -> dict:
        """Keyword arguments for TemplateSource."""
        if self.templates_url:
            return {
                'url': self.templates_url,
                'api_key': self.templates_api_key,
                'ttl_seconds': self.template_cache_ttl,
                'timeout': self.http_timeout,
            }
        return {'path': self.templates_path, 'ttl_seconds': self.template_cache_ttl}


# Global settings instance (read by the entry points only)
settings = Settings()
