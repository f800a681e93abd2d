"""
Configuration for pasteshare.
Values come from environment variables (optionally a .env file) and can be
overridden by keyword, which is how the tests build isolated instances.
"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_ALLOWED_MIME_TYPES = (
    "text/plain", "text/html", "text/css", "text/javascript",
    "application/json", "application/xml", "application/javascript",
    "image/jpeg", "image/png", "image/gif", "image/svg+xml",
    "application/pdf", "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if not v:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _default_db_url() -> str:
    db_path = os.getenv("DATABASE_PATH")
    if not db_path:
        # default to ./pastes/pastes.db
        db_path = os.path.abspath(os.path.join(os.getcwd(), "pastes", "pastes.db"))
    return f"sqlite+aiosqlite:///{db_path}"


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self, **overrides):
        self.db_url: str = os.getenv("DB_URL") or _default_db_url()
        self.auto_create_schema: bool = _env_bool("AUTO_CREATE_SCHEMA", "True")
        # seconds a schema probe result stays valid; 0 re-probes on every operation
        self.schema_probe_ttl: float = _env_float("SCHEMA_PROBE_TTL", 30.0)
        self.write_timeout_seconds: float = _env_float("WRITE_TIMEOUT_SECONDS", 10.0)
        self.max_char_content: int = _env_int("MAX_CHAR_CONTENT", 50000)
        self.max_files: int = _env_int("MAX_FILES", 3)
        self.max_file_size: int = _env_int("MAX_FILE_SIZE", 10 * 1024 * 1024)
        self.max_total_file_size: int = _env_int("MAX_TOTAL_FILE_SIZE", 25 * 1024 * 1024)
        self.allowed_mime_types = DEFAULT_ALLOWED_MIME_TYPES
        self.bcrypt_rounds: int = _env_int("BCRYPT_ROUNDS", 10)
        self.create_per_min: int = _env_int("CREATE_PER_MIN", 10)
        self.rate_limit_enabled: bool = os.getenv("DISABLE_RATE_LIMIT") != "1"
        self.recent_limit: int = _env_int("RECENT_LIMIT", 10)
        self.cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    def sqlite_path(self):
        """Filesystem path of the database when it is a SQLite file, else None."""
        for prefix in ("sqlite+aiosqlite:///", "sqlite:///"):
            if self.db_url.startswith(prefix):
                return self.db_url[len(prefix):]
        return None
