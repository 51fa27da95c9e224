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


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_csv_set(name: str) -> set[str]:
    raw = _getenv(name)
    if raw is None:
        return set()
    parts = [p.strip().lower() for p in raw.split(",")]
    return {p for p in parts if p}


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./sql_app.db") or "sqlite:///./sql_app.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)

        self.supabase_url = _getenv("SUPABASE_URL") or _getenv("NEXT_PUBLIC_SUPABASE_URL")
        self.supabase_anon_key = _getenv("SUPABASE_ANON_KEY") or _getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
        self.supabase_service_role_key = _getenv("SUPABASE_SERVICE_ROLE_KEY")
        self.supabase_jwt_audience = _getenv("SUPABASE_JWT_AUD", "authenticated")
        self.supabase_jwt_issuer = _getenv("SUPABASE_JWT_ISSUER")
        self.supabase_storage_bucket = _getenv("SUPABASE_STORAGE_BUCKET", "infographics") or "infographics"

        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")
        self.frontend_url = _getenv("FRONTEND_URL", "http://localhost:3000") or "http://localhost:3000"

        self.gemini_api_key = _getenv("GEMINI_API_KEY")
        self.gemini_model = _getenv("GEMINI_MODEL", "gemini-3-pro-image-preview") or "gemini-3-pro-image-preview"
        self.gemini_base_url = (
            _getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
            or "https://generativelanguage.googleapis.com/v1beta"
        )
        self.gemini_timeout_s = float(_getenv("GEMINI_TIMEOUT_S", "300") or "300")
        self.gemini_use_search = _getenv_bool("GEMINI_USE_SEARCH", default=True)

        self.dodo_api_key = _getenv("DODO_PAYMENTS_API_KEY")
        self.dodo_environment = (_getenv("DODO_PAYMENTS_ENVIRONMENT", "test_mode") or "test_mode").lower()
        self.dodo_return_url = _getenv("DODO_PAYMENTS_RETURN_URL")
        self.dodo_webhook_secret = _getenv("DODO_PAYMENTS_WEBHOOK_SECRET")
        self.dodo_webhook_tolerance_s = _getenv_int("DODO_WEBHOOK_TOLERANCE_S", 300)

        self.signup_bonus_credits = _getenv_int("SIGNUP_BONUS_CREDITS", 100)
        self.credits_per_generation = _getenv_int("CREDITS_PER_GENERATION", 1)

        self.admin_emails = _getenv_csv_set("ADMIN_EMAILS")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def dodo_base_url(self) -> str:
        if self.dodo_environment == "live_mode":
            return "https://live.dodopayments.com"
        return "https://test.dodopayments.com"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:3000", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
