# config.py
# Environment-driven settings. Values come from the process env, with .env loaded first.

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_list(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default) or ""
    return [t.strip() for t in raw.split(",") if t.strip()]


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    data_dir: Path = BASE_DIR / "data"
    database_url: str = ""

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout: float = 30.0

    imap_host: Optional[str] = None
    imap_port: int = 993
    imap_user: Optional[str] = None
    imap_password: Optional[str] = None
    imap_folder: str = "INBOX"
    imap_timeout: float = 30.0

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_timeout: float = 30.0
    mail_from: Optional[str] = None

    poll_interval_seconds: int = 0
    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    def __post_init__(self):
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir / 'rfpdesk.db'}"

    @property
    def imap_configured(self) -> bool:
        return bool(self.imap_host and self.imap_user)

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)


def load_settings(env_file: Optional[str] = None) -> Settings:
    load_dotenv(dotenv_path=env_file or BASE_DIR / ".env")
    data_dir = Path(os.getenv("DATA_DIR") or BASE_DIR / "data")
    return Settings(
        data_dir=data_dir,
        database_url=os.getenv("DATABASE_URL", ""),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_timeout=float(os.getenv("OPENAI_TIMEOUT", "30")),
        imap_host=os.getenv("IMAP_HOST") or None,
        imap_port=int(os.getenv("IMAP_PORT", "993")),
        imap_user=os.getenv("IMAP_USER") or None,
        imap_password=os.getenv("IMAP_PASSWORD") or None,
        imap_folder=os.getenv("IMAP_FOLDER", "INBOX"),
        imap_timeout=float(os.getenv("IMAP_TIMEOUT", "30")),
        smtp_host=os.getenv("SMTP_HOST") or None,
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_user=os.getenv("SMTP_USER") or None,
        smtp_password=os.getenv("SMTP_PASSWORD") or None,
        smtp_timeout=float(os.getenv("SMTP_TIMEOUT", "30")),
        mail_from=os.getenv("MAIL_FROM") or os.getenv("SMTP_USER") or None,
        poll_interval_seconds=int(os.getenv("POLL_INTERVAL_SECONDS", "0")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=_env_bool("LOG_JSON"),
        cors_origins=_env_list("CORS_ORIGINS", "*"),
    )
