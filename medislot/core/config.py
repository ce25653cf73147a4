import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:5173"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Share of the consultation fee kept by the platform on payout.
PLATFORM_COMMISSION_RATE = float(os.getenv("PLATFORM_COMMISSION_RATE", "0.20"))

PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET", "")

MAX_REASON_LENGTH = int(os.getenv("MAX_REASON_LENGTH", "500"))
MAX_NOTES_LENGTH = int(os.getenv("MAX_NOTES_LENGTH", "2000"))
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))

def validate_runtime_config() -> None:
    if not 0 <= PLATFORM_COMMISSION_RATE < 1:
        raise RuntimeError("PLATFORM_COMMISSION_RATE must be between 0 and 1.")
    if APP_ENV.lower() == "production":
        if JWT_SECRET_KEY == "change-me":
            raise RuntimeError("JWT_SECRET_KEY must be set in production.")
        if not PAYMENT_WEBHOOK_SECRET:
            raise RuntimeError("PAYMENT_WEBHOOK_SECRET must be set in production.")
