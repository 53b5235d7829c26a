import os
import logging
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

APP_NAME = "CareEase API"
APP_VERSION = "1.0.0"
APP_ENV = os.environ.get("APP_ENV", "development").strip().lower()

# MongoDB
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "careease")

# Auth Configuration
SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "fallback_secret_key_change_in_production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))  # 7 days

# AI provider (any OpenAI-compatible chat completions endpoint)
AI_API_KEY = os.environ.get("AI_API_KEY") or os.environ.get("OPENAI_API_KEY", "")
AI_BASE_URL = os.environ.get("AI_BASE_URL") or None
AI_MODEL = os.environ.get("AI_MODEL", "gpt-4o-mini")
AI_TIMEOUT_SECONDS = float(os.environ.get("AI_TIMEOUT_SECONDS", "20"))

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def is_production() -> bool:
    return APP_ENV == "production"


def parse_admin_bootstrap_emails() -> set:
    raw = os.environ.get("ADMIN_BOOTSTRAP_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e and e.strip()}


def is_bootstrap_admin_email(email: str) -> bool:
    return email.strip().lower() in parse_admin_bootstrap_emails()


def configure_logging():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
