import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# --- Database ---
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./complaints.db")

# --- Auth ---
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))
RESET_TOKEN_EXPIRE_MINUTES = int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", 60))
# Empty key disables API-key access entirely
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "")
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", 5))
LOGIN_LOCKOUT_MINUTES = int(os.getenv("LOGIN_LOCKOUT_MINUTES", 15))
PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", 8))
MAX_RESET_REQUESTS_PER_HOUR = int(os.getenv("MAX_RESET_REQUESTS_PER_HOUR", 3))
FRONTEND_RESET_URL = os.getenv("FRONTEND_RESET_URL", "http://localhost:8081/reset-password")

# --- Complaints ---
PAGE_SIZE_LIMIT = int(os.getenv("PAGE_SIZE_LIMIT", 100))
ENFORCE_FORWARD_TRANSITIONS = _env_bool("ENFORCE_FORWARD_TRANSITIONS")
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")

# --- HTTP ---
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8081").split(",")
    if origin.strip()
]

# --- Mail ---
MAIL_SERVER = os.getenv("MAIL_SERVER", "")
MAIL_PORT = int(os.getenv("MAIL_PORT", 587))
MAIL_USERNAME = os.getenv("MAIL_USERNAME", "")
MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", "true")
MAIL_USE_SSL = _env_bool("MAIL_USE_SSL")
MAIL_FROM = os.getenv("MAIL_FROM", MAIL_USERNAME or "no-reply@localhost")

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")
