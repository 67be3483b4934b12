"""Runtime configuration, read from the environment (and a local .env file)."""
import os
import logging

from dotenv import load_dotenv

# --- Load environment variables from .env file ---
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logging.getLogger(__name__).warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


class Config:
    """Default settings loaded into ``app.config`` by the app factory."""

    # --- Storage ---
    # 'local' keeps blobs under STORAGE_DIR, 's3' keeps them in STORY_BUCKET.
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")
    STORAGE_DIR = os.getenv("STORAGE_DIR", os.path.join(os.getcwd(), "storage"))
    STORY_BUCKET = os.getenv("STORY_BUCKET")
    AWS_REGION = os.getenv("AWS_REGION")

    # --- LLM ---
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL")
    CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o")
    SWEEP_MODEL = os.getenv("SWEEP_MODEL", "gpt-4o-mini")
    LLM_TIMEOUT = _env_int("LLM_TIMEOUT", 120)
    LLM_MAX_RETRIES = _env_int("LLM_MAX_RETRIES", 0)

    # --- Web ---
    PORT = _env_int("PORT", 3001)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    MAX_CONTENT_LENGTH = 50 * 1024 * 1024  # 50MB, chapters travel as JSON
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
