"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """M90 treatment tracker configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: there is no auth layer in front of the tools.
    m90_host: str = "127.0.0.1"
    m90_port: int = 8001
    m90_log_level: str = "info"
    m90_allow_insecure_bind: bool = False

    # Storage
    db_path: str = "~/.m90/treatment.db"
    encryption_key: str = ""

    # Package templates and clinics (YAML). Empty means the bundled catalog.
    catalog_path: str = ""


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
