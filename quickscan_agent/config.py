from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_str(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name, "").strip()
    return raw or default


def _cors_allow_origins() -> list[str]:
    raw = os.getenv("QUICKSCAN_CORS_ORIGINS", "").strip()
    if not raw:
        return ["http://localhost:3000"]
    return [o.strip() for o in raw.split(",") if o.strip()]


@dataclass(frozen=True)
class Settings:
    """Runtime configuration.

    Every external integration is optional: a missing credential turns the
    matching collaborator into a degraded no-op instead of failing startup.
    """

    database_url: str | None = None
    db_timeout_s: float = 5.0

    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    llm_temperature: float = 0.7
    llm_timeout_s: float = 60.0
    llm_max_attempts: int = 3

    scan_limit: int = 5
    expanded_report_limit: int = 3

    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_pass: str | None = None
    smtp_secure: bool = False
    smtp_from_email: str | None = None
    smtp_timeout_s: float = 30.0

    operator_email: str = "businessscan@ai-group.nl"
    contact_email: str = "businessscan@ai-group.nl"
    partner_name: str = "AI-Group"

    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    app_env: str = "production"
    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() in ("development", "dev", "local")

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_pass)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=_env_str("DATABASE_URL"),
            db_timeout_s=_env_float("DB_TIMEOUT_S", 5.0),
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-2.5-flash"),
            llm_temperature=_env_float("LLM_TEMPERATURE", 0.7),
            llm_timeout_s=_env_float("LLM_TIMEOUT_S", 60.0),
            llm_max_attempts=max(1, _env_int("LLM_MAX_ATTEMPTS", 3)),
            scan_limit=_env_int("SCAN_LIMIT", 5),
            expanded_report_limit=_env_int("EXPANDED_REPORT_LIMIT", 3),
            smtp_host=_env_str("SMTP_HOST"),
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_user=_env_str("SMTP_USER"),
            smtp_pass=_env_str("SMTP_PASS"),
            smtp_secure=(_env_str("SMTP_SECURE", "false") or "").lower() == "true",
            smtp_from_email=_env_str("SMTP_FROM_EMAIL") or _env_str("SMTP_USER"),
            smtp_timeout_s=_env_float("SMTP_TIMEOUT_S", 30.0),
            operator_email=_env_str("OPERATOR_EMAIL", "businessscan@ai-group.nl"),
            contact_email=_env_str("CONTACT_EMAIL", "businessscan@ai-group.nl"),
            partner_name=_env_str("PARTNER_NAME", "AI-Group"),
            cors_origins=_cors_allow_origins(),
            app_env=_env_str("APP_ENV", "production"),
            log_level=(_env_str("LOG_LEVEL", "INFO") or "INFO").upper(),
        )
