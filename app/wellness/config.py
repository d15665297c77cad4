import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str
    public_base_url: str

    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    s3_public_domain: str

    qr_secret: str
    qr_token_max_age_days: int

    mail_backend: str
    mail_from: str
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    smtp_use_tls: bool

    proof_min_content_urls: int
    proof_max_content_urls: int
    csrf_enabled: bool
    ws_ping_interval: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    env = _getenv("ENV", "development")
    smtp_host = _getenv("SMTP_HOST", "")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=env,
        database_url=_getenv("DATABASE_URL", "sqlite:///wellness.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        public_base_url=_getenv("PUBLIC_BASE_URL", "http://localhost:5000").rstrip("/"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "us-east-1"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        s3_public_domain=_getenv("S3_PUBLIC_DOMAIN", ""),
        qr_secret=_getenv("QR_SECRET", "default-secret-change-me"),
        qr_token_max_age_days=_getint("QR_TOKEN_MAX_AGE_DAYS", 7),
        # Without an SMTP host, mail is only logged.
        mail_backend=_getenv("MAIL_BACKEND", "smtp" if smtp_host else "console").lower(),
        mail_from=_getenv("MAIL_FROM", "info@bepartofthemovement.com"),
        smtp_host=smtp_host,
        smtp_port=_getint("SMTP_PORT", 587),
        smtp_user=_getenv("SMTP_USER", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        smtp_use_tls=_getbool("SMTP_USE_TLS", True),
        proof_min_content_urls=_getint("PROOF_MIN_CONTENT_URLS", 6),
        proof_max_content_urls=_getint("PROOF_MAX_CONTENT_URLS", 20),
        csrf_enabled=_getbool("CSRF_ENABLED", env not in ("test", "testing")),
        ws_ping_interval=_getint("WS_PING_INTERVAL", 25),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "PUBLIC_BASE_URL": s.public_base_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "S3_PUBLIC_DOMAIN": s.s3_public_domain,
        "QR_SECRET": s.qr_secret,
        "QR_TOKEN_MAX_AGE_DAYS": s.qr_token_max_age_days,
        "MAIL_BACKEND": s.mail_backend,
        "MAIL_FROM": s.mail_from,
        "SMTP_HOST": s.smtp_host,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USER": s.smtp_user,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "PROOF_MIN_CONTENT_URLS": s.proof_min_content_urls,
        "PROOF_MAX_CONTENT_URLS": s.proof_max_content_urls,
        "CSRF_ENABLED": s.csrf_enabled,
        "WS_PING_INTERVAL": s.ws_ping_interval,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # file upload limits (25MB)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
