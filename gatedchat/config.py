import os

DB = {
    "host": os.getenv("GATEDCHAT_DB_HOST", "localhost"),
    "port": int(os.getenv("GATEDCHAT_DB_PORT", "5432")),
    "dbname": os.getenv("GATEDCHAT_DB_NAME", "gatedchat"),
    "user": os.getenv("GATEDCHAT_DB_USER", "gatedchat"),
    "password": os.getenv("GATEDCHAT_DB_PASSWORD", "gatedchat"),
}

API_TITLE = "NEXINOUS Chat API"
API_VERSION = "0.1.0"

ACCESS_COOKIE_NAME = "access_code"
ACCESS_COOKIE_MAX_AGE = 60 * 60 * 24 * 30
ACCESS_COOKIE_SECURE = os.getenv("ACCESS_COOKIE_SECURE", "0") == "1"

MAX_INPUT_CHARS = int(os.getenv("MAX_INPUT_CHARS", "500"))
MAX_OUTPUT_TOKENS = int(os.getenv("MAX_OUTPUT_TOKENS", "1000"))
MAX_DURATION_SEC = float(os.getenv("MAX_DURATION_SEC", "30"))

STATIC_DIR = os.getenv(
    "STATIC_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "static")
)
