import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "plataforma_agencia.db")
    LOCAL_CACHE_PATH = os.environ.get(
        "LOCAL_CACHE_PATH",
        os.path.join(BASE_DIR, "database", "local_cache.db"),
    )
    DOCUMENT_STORE_BACKEND = os.environ.get("DOCUMENT_STORE_BACKEND", "sql")
    LOCAL_CACHE_BACKEND = os.environ.get("LOCAL_CACHE_BACKEND", "sqlite")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-plataforma-agencia")
    AUTH_ENABLED = _bool_env("AUTH_ENABLED", True)
    WEBMASTER_EMAILS = os.environ.get("WEBMASTER_EMAILS", "webmaster@agencia.com")
    # email:password:role:name[:uid] entries for the built-in JSON login
    APP_USERS = os.environ.get("APP_USERS", "")

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    PROJECT_REFRESH_ENABLED = _bool_env("PROJECT_REFRESH_ENABLED", True)
    PROJECT_REFRESH_INTERVAL_SECONDS = _int_env("PROJECT_REFRESH_INTERVAL_SECONDS", 10)
    PROJECT_REFRESH_MAX_BACKOFF_SECONDS = _int_env("PROJECT_REFRESH_MAX_BACKOFF_SECONDS", 300)
    PROJECT_REFRESH_WATCH_TTL_SECONDS = _int_env("PROJECT_REFRESH_WATCH_TTL_SECONDS", 900)
    STREAM_MAX_EVENTS = _int_env("STREAM_MAX_EVENTS", 0)
    STREAM_KEEPALIVE_SECONDS = _int_env("STREAM_KEEPALIVE_SECONDS", 15)

    STORE_BREAKER_FAILURE_THRESHOLD = _int_env("STORE_BREAKER_FAILURE_THRESHOLD", 3)
    STORE_BREAKER_OPEN_SECONDS = _float_env("STORE_BREAKER_OPEN_SECONDS", 30.0)

    AGENCY_NAME = os.environ.get("AGENCY_NAME", "Creative Agency LTDA")
    AGENCY_CNPJ = os.environ.get("AGENCY_CNPJ", "12.345.678/0001-90")
    AGENCY_CITY = os.environ.get("AGENCY_CITY", "Sao Paulo/SP")
    AGENCY_EMAIL = os.environ.get("AGENCY_EMAIL", "contato@creativeagency.com")
    AGENCY_PHONE = os.environ.get("AGENCY_PHONE", "(11) 9999-9999")
    PROPOSAL_VALIDITY_DAYS = _int_env("PROPOSAL_VALIDITY_DAYS", 30)
    PROPOSAL_PAYMENT_TERMS = os.environ.get("PROPOSAL_PAYMENT_TERMS", "30/60/90 dias")
    PROPOSAL_WARRANTY = os.environ.get("PROPOSAL_WARRANTY", "90 dias")

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-plataforma-agencia":
            raise RuntimeError("SECRET_KEY insegura para producao.")
