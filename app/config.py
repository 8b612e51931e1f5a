import os
from datetime import timedelta


def normalize_database_url(url: str) -> str:
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    return url


def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = normalize_database_url(
        os.getenv("DATABASE_URL", "sqlite:///dev.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DEFAULT_UPLOAD_FOLDER = "/var/data/uploads" if os.path.isdir("/var/data") else "app/static/uploads"
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", DEFAULT_UPLOAD_FOLDER)
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 10 * 1024 * 1024))
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
    SESSION_COOKIE_SECURE = env_flag("SESSION_COOKIE_SECURE")
    SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "zenarog_session")
    PERMANENT_SESSION_LIFETIME = timedelta(
        hours=int(os.getenv("SESSION_LIFETIME_HOURS", "24"))
    )
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    ENCRYPTION_MASTER_KEY = os.getenv("ENCRYPTION_MASTER_KEY")
    ENCRYPTION_REQUIRED = env_flag("ENCRYPTION_REQUIRED")

    OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
    OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    OPENROUTER_APP_TITLE = os.getenv("OPENROUTER_APP_TITLE", "Zenarog")
    OPENROUTER_REFERER = os.getenv("OPENROUTER_REFERER", "https://zenarog.app")

    VISION_MODEL = os.getenv("VISION_MODEL", "nvidia/nemotron-nano-12b-v2-vl:free")
    VISION_MAX_TOKENS = int(os.getenv("VISION_MAX_TOKENS", "1500"))
    VISION_TEMPERATURE = float(os.getenv("VISION_TEMPERATURE", "0.1"))

    CHAT_MODEL = os.getenv("CHAT_MODEL", "nvidia/nemotron-3-nano-30b-a3b:free")
    CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "500"))
    CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
    CHAT_HISTORY_LIMIT = int(os.getenv("CHAT_HISTORY_LIMIT", "40"))

    OPENFDA_BASE_URL = os.getenv("OPENFDA_BASE_URL", "https://api.fda.gov/drug")
    OPENFDA_TIMEOUT_SECONDS = float(os.getenv("OPENFDA_TIMEOUT_SECONDS", "8.0"))

    SCAN_ENGINE = os.getenv("SCAN_ENGINE", "vision").strip().lower()
    IMPRINT_CONFIDENCE_FLOOR = float(os.getenv("IMPRINT_CONFIDENCE_FLOOR", "0.7"))
    DEFAULT_CALORIE_GOAL = int(os.getenv("DEFAULT_CALORIE_GOAL", "2000"))
