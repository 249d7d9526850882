"""
Itinerary API - Application Configuration
Loads all environment variables from .env and exposes them as typed settings.
"""
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load .env from the repo root (two levels up from this file)
_ENV_PATH = Path(__file__).parent.parent.parent / ".env"
load_dotenv(_ENV_PATH)


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw or raw.lower() in ("none", "0"):
        return None
    return float(raw)


class Settings:
    # LLM provider (any OpenAI-compatible chat completions endpoint)
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", os.getenv("LLM_API_KEY", ""))
    LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-3.5-turbo-1106")
    # Unset means no client-side deadline on the generation call
    LLM_TIMEOUT_S: Optional[float] = _optional_float("LLM_TIMEOUT_S")

    # Document store
    GCP_SERVICE_ACCOUNT: str = os.getenv("GCP_SERVICE_ACCOUNT", "")
    GCP_PROJECT_ID: str = os.getenv("GCP_PROJECT_ID", "")
    FIRESTORE_COLLECTION: str = os.getenv("FIRESTORE_COLLECTION", "itineraries")
    FIRESTORE_EMULATOR_HOST: str = os.getenv("FIRESTORE_EMULATOR_HOST", "")
    DOCUMENT_STORE: str = os.getenv(
        "DOCUMENT_STORE",
        "firestore" if (GCP_SERVICE_ACCOUNT or FIRESTORE_EMULATOR_HOST) else "sqlite",
    ).lower()
    DATABASE_PATH: str = os.getenv(
        "DATABASE_PATH", str(Path(__file__).parent / "data" / "itineraries.db")
    )

    # Jobs
    MAX_DURATION_DAYS: int = int(os.getenv("MAX_DURATION_DAYS", "14"))
    JOB_DRAIN_TIMEOUT_S: float = float(os.getenv("JOB_DRAIN_TIMEOUT_S", "120"))

    # Application
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CORS_ALLOW_ORIGINS: str = os.getenv("CORS_ALLOW_ORIGINS", "*")

    # Datadog
    DD_API_KEY: str = os.getenv("DD_API_KEY", "")
    DD_SERVICE: str = os.getenv("DD_SERVICE", "itinerary-api")
    DD_ENV: str = os.getenv("DD_ENV", "development")

    @property
    def llm_api_key_set(self) -> bool:
        placeholders = {"", "your_openai_api_key_here", "your_llm_api_key_here"}
        return self.OPENAI_API_KEY not in placeholders

    @property
    def service_account_info(self) -> Dict[str, Any]:
        """Parsed GCP service account JSON, or an empty dict when unset."""
        if not self.GCP_SERVICE_ACCOUNT:
            return {}
        return json.loads(self.GCP_SERVICE_ACCOUNT)

    @property
    def firestore_project_id(self) -> str:
        """Explicit GCP_PROJECT_ID first, then the service account's project."""
        return self.GCP_PROJECT_ID or self.service_account_info.get("project_id", "")

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ALLOW_ORIGINS.split(",") if o.strip()]

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() in {"development", "dev", "local", "test"}


settings = Settings()
