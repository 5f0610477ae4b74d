"""
Scout Pro configuration.

Values come from the environment (a .env file beside this module is loaded
first). Settings.from_env() is called once at startup; tests build Settings
directly with tmp paths.
"""

import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

_backend_dir = os.path.dirname(os.path.abspath(__file__))

logger = logging.getLogger("scoutpro.config")

DEV_JWT_SECRET = "scoutpro_dev_secret_change_in_production"
DEV_REGISTRATION_CODE = "COACH2024"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _env_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)


class Settings(BaseModel):
    environment: str = "development"
    version: str = "1.0.0"

    data_dir: str
    db_file: str
    upload_dir: str

    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24
    registration_code: Optional[str] = None
    bcrypt_rounds: int = 10

    max_upload_bytes: int = 5 * 1024 * 1024
    upload_url_prefix: str = "/uploads"
    upload_filename_prefix: str = "spray-chart-"
    request_timeout_seconds: float = 30.0

    api_prefix: str = "/api"
    frontend_url: Optional[str] = None
    domain_name: Optional[str] = None
    trust_proxy_headers: bool = False
    rate_limits_enabled: bool = True

    normalize_emails: bool = True
    enforce_references: bool = True
    access_policy: str = "authenticated"

    slack_webhook_url: Optional[str] = None
    port: int = 5000

    @field_validator("environment")
    @classmethod
    def _check_environment(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("development", "production", "test"):
            raise ValueError("ENVIRONMENT must be development, production or test")
        return v

    @field_validator("access_policy")
    @classmethod
    def _check_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("authenticated", "creator"):
            raise ValueError("ACCESS_POLICY must be 'authenticated' or 'creator'")
        return v

    @field_validator("api_prefix")
    @classmethod
    def _check_prefix(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if v and not v.startswith("/"):
            v = "/" + v
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cors_origins(self) -> List[str]:
        if not self.is_production:
            return ["http://localhost:3000", "http://localhost:3001"]
        origins = [self.frontend_url]
        if self.domain_name:
            origins += [f"https://{self.domain_name}", f"http://{self.domain_name}"]
        return [o for o in origins if o]

    def effective_jwt_secret(self) -> str:
        return self.jwt_secret or DEV_JWT_SECRET

    def effective_registration_code(self) -> str:
        return self.registration_code or DEV_REGISTRATION_CODE

    def validate_at_startup(self) -> None:
        """Fail fast in production; warn about insecure defaults elsewhere."""
        problems: list[str] = []
        if not self.jwt_secret:
            if self.is_production:
                problems.append("JWT_SECRET is required in production.")
            else:
                logger.warning("JWT_SECRET not set, using insecure development secret")
        if not self.registration_code:
            if self.is_production:
                problems.append("REGISTRATION_CODE is required in production.")
            else:
                logger.warning("REGISTRATION_CODE not set, using development code")
        if self.is_production and not self.cors_origins:
            problems.append("FRONTEND_URL or DOMAIN_NAME is required in production.")
        if problems:
            raise RuntimeError("Config validation failed: " + " ".join(problems))

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv(os.path.join(_backend_dir, ".env"))
        data_dir = os.getenv("SCOUTPRO_DATA_DIR") or os.path.join(os.path.expanduser("~"), ".scoutpro")
        return cls(
            environment=os.getenv("ENVIRONMENT", "development"),
            data_dir=data_dir,
            db_file=os.getenv("DB_FILE") or os.path.join(data_dir, "scoutpro.db"),
            upload_dir=os.getenv("UPLOAD_DIR") or os.path.join(data_dir, "uploads"),
            jwt_secret=os.getenv("JWT_SECRET") or None,
            jwt_expiry_hours=int(os.getenv("JWT_EXPIRY_HOURS", "24")),
            registration_code=os.getenv("REGISTRATION_CODE") or None,
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "10")),
            max_upload_bytes=int(float(os.getenv("MAX_UPLOAD_MB", "5")) * 1024 * 1024),
            request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30")),
            api_prefix=os.getenv("API_PREFIX", "/api"),
            frontend_url=os.getenv("FRONTEND_URL") or None,
            domain_name=os.getenv("DOMAIN_NAME") or None,
            trust_proxy_headers=_env_bool("TRUST_PROXY_HEADERS", False),
            rate_limits_enabled=_env_bool("RATE_LIMITS_ENABLED", True),
            normalize_emails=_env_bool("NORMALIZE_EMAILS", True),
            enforce_references=_env_bool("ENFORCE_REFERENCES", True),
            access_policy=os.getenv("ACCESS_POLICY", "authenticated"),
            slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL") or None,
            port=int(os.getenv("PORT", "5000")),
        )
