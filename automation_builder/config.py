"""Application configuration using Pydantic Settings."""
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )
    
    # App settings
    app_name: str = "Automation Workflow Builder"
    debug: bool = False
    log_json: bool = True
    
    # REST API the console talks to
    api_base_url: str = "https://api.monosend.io/v1.0"
    api_token: str = ""
    request_timeout: float = 30.0
    
    # Builder defaults
    # An email with no wait step in front of it is shown with this delay
    default_wait_time: int = 5
    default_wait_unit: Literal["min", "hour", "day"] = "day"
    default_title: str = "Untitled Automation"
    workflow_page_size: int = 20
    # Editor sessions idle for longer than this many seconds are closed
    editor_session_ttl: float = 1800.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
