import os

DB = {
    "host": os.getenv("STUDY_DB_HOST", "localhost"),
    "port": int(os.getenv("STUDY_DB_PORT", "5432")),
    "dbname": os.getenv("STUDY_DB_NAME", "bible_study"),
    "user": os.getenv("STUDY_DB_USER", "bible"),
    "password": os.getenv("STUDY_DB_PASSWORD", "biblepassword"),
}

CONVERSATION_STORE_DB = os.getenv("CONVERSATION_STORE_DB", "0") == "1"

OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
_timeout = os.getenv("OPENAI_TIMEOUT_SEC", "")
OPENAI_TIMEOUT_SEC = float(_timeout) if _timeout else None

CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-3.5-turbo")
ADVANCED_MODEL = os.getenv("ADVANCED_MODEL", "gpt-4o-mini")
TOOLS_MODEL = os.getenv("TOOLS_MODEL", "gpt-4o-mini")

API_TITLE = "Bible Study Tools API"
API_VERSION = "0.1.0"


def get_api_key() -> str:
    # Read per call so the health probe reflects the live environment.
    return os.getenv("OPENAI_API_KEY") or os.getenv("VITE_OPENAI_API_KEY") or ""
