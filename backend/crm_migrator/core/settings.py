import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int, minimum: int = 1) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        return default


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./crm_migration.db") or "sqlite:///./crm_migration.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()

        self.workbook_path = _getenv("WORKBOOK_PATH", os.path.join("excel", "CRM-WORKBOOK.xlsx"))
        self.progress_ping_interval_s = _getenv_int("PROGRESS_PING_INTERVAL_S", 30)
        self.observer_queue_size = _getenv_int("OBSERVER_QUEUE_SIZE", 1000)
        self.progress_every_rows = _getenv_int("PROGRESS_EVERY_ROWS", 25)
        self.max_reported_errors = _getenv_int("MAX_REPORTED_ERRORS", 500, minimum=0)

        self.basic_auth_enabled = _getenv_bool(
            "BASIC_AUTH_ENABLED",
            default=(self.environment == "production"),
        )
        self.basic_auth_username = _getenv("BASIC_AUTH_USERNAME")
        self.basic_auth_password = _getenv("BASIC_AUTH_PASSWORD")
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:5173", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
