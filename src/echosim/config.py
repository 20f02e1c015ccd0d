"""
Centralized configuration loaded from .env via Pydantic Settings.

Every knob of the simulator (LLM model, retry policy, translation endpoint,
server binding) lives here so the rest of the code never reads os.environ.
"""

from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict


# Project root is two levels up from this file (src/echosim/config.py → project root)
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# Load .env globally so litellm can pick up provider keys on its own
load_dotenv(PROJECT_ROOT / ".env")


class Settings(BaseSettings):
    """Application-wide settings sourced from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── LLM ──────────────────────────────────────────────
    llm_api_key: str = ""
    llm_model: str = "gemini/gemini-2.0-flash"
    llm_temperature: float = 0.7

    # ── Retry policy ─────────────────────────────────────
    llm_max_attempts: int = 3
    llm_retry_delay: float = 1.0  # seconds between attempts

    # ── Translation ──────────────────────────────────────
    translate_url: str = "https://translate.googleapis.com/translate_a/single"
    translate_timeout: float = 10.0
    translate_concurrency: int = 8

    # ── Server ───────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]


# Singleton — import `settings` from anywhere
settings = Settings()
