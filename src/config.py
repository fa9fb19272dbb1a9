"""
Environment-sourced configuration for the YouTube uploader bot.
"""
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024  # 50MB
DEFAULT_ALLOWED_EXTENSIONS = ['.mp4', '.mkv', '.avi', '.mov', '.wmv', '.flv', '.webm']

YOUTUBE_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/youtube.upload",
    "https://www.googleapis.com/auth/youtube",
]

REQUIRED_ENV_VARS = [
    "TELEGRAM_BOT_TOKEN",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REDIRECT_URI",
]

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _parse_admin_ids(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    ids = []
    for part in raw.split(','):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            logger.warning(f"Ignoring invalid admin id: {part!r}")
    return ids


def _parse_extensions(raw: Optional[str]) -> List[str]:
    if not raw:
        return list(DEFAULT_ALLOWED_EXTENSIONS)
    exts = []
    for part in raw.split(','):
        part = part.strip().lower()
        if part:
            exts.append(part if part.startswith('.') else f".{part}")
    return exts


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() == "true"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default


@dataclass
class Settings:
    """Runtime settings. Build with ``Settings.from_env()`` or directly in tests."""
    bot_token: Optional[str] = None
    admin_ids: List[int] = field(default_factory=list)

    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None
    scopes: List[str] = field(default_factory=lambda: list(YOUTUBE_SCOPES))

    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    allowed_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS))
    temp_dir: Path = Path("temp")
    uploads_dir: Path = Path("uploads")
    auth_dir: Path = Path("auth")
    cleanup_max_age_hours: int = 24
    cleanup_interval_minutes: int = 60

    port: int = 3000
    host: str = "0.0.0.0"
    environment: str = "development"

    webhook_enabled: bool = False
    webhook_domain: Optional[str] = None
    webhook_path: str = "/bot-webhook"
    webhook_secret: Optional[str] = None

    log_level: str = "INFO"
    file_logging: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def tokens_file(self) -> Path:
        return self.auth_dir / "tokens.json"

    @property
    def max_file_size_mb(self) -> float:
        return self.max_file_size / 1024 / 1024

    @classmethod
    def from_env(cls) -> "Settings":
        for var in REQUIRED_ENV_VARS:
            if not os.getenv(var):
                logger.warning(f"⚠️ {var} is not set in environment variables")

        return cls(
            bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            admin_ids=_parse_admin_ids(os.getenv("ADMIN_USER_IDS")),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
            google_redirect_uri=os.getenv("GOOGLE_REDIRECT_URI"),
            max_file_size=_env_int("MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE),
            allowed_extensions=_parse_extensions(os.getenv("ALLOWED_EXTENSIONS")),
            temp_dir=Path(os.getenv("TEMP_DIR", "temp")),
            uploads_dir=Path(os.getenv("UPLOADS_DIR", "uploads")),
            auth_dir=Path(os.getenv("AUTH_DIR", "auth")),
            cleanup_max_age_hours=_env_int("CLEANUP_MAX_AGE_HOURS", 24),
            cleanup_interval_minutes=_env_int("CLEANUP_INTERVAL_MINUTES", 60),
            port=_env_int("PORT", 3000),
            environment=os.getenv("APP_ENV") or os.getenv("NODE_ENV") or "development",
            webhook_enabled=_env_flag("ENABLE_WEBHOOK"),
            webhook_domain=os.getenv("WEBHOOK_DOMAIN"),
            webhook_path=os.getenv("WEBHOOK_PATH", "/bot-webhook"),
            webhook_secret=os.getenv("WEBHOOK_SECRET"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            file_logging=_env_flag("ENABLE_FILE_LOGGING"),
        )


def setup_logging(settings: Settings) -> None:
    """Configure root logging once for the whole process."""
    handlers = [logging.StreamHandler()]
    if settings.file_logging:
        Path("logs").mkdir(exist_ok=True)
        handlers.append(logging.FileHandler(Path("logs") / "bot.log", encoding="utf-8"))

    logging.basicConfig(
        format=LOG_FORMAT,
        level=getattr(logging, settings.log_level, logging.INFO),
        handlers=handlers,
    )
    # httpx logs every request URL, which includes the bot token
    logging.getLogger("httpx").setLevel(logging.WARNING)
