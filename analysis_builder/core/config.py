"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ROOT = Path(__file__).resolve().parents[2]
_ENV_PATH = _ROOT / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Storage ──────────────────────────────────────────
    storage_url: str = "sqlite:///analysis_builder.db"

    # ── Catalog ──────────────────────────────────────────
    catalog_path: str = str(_ROOT / "catalog" / "cubes.yml")

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"
    default_comparison_months: int = 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
