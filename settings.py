import logging
import os
import sys
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from schemas import ROLES

logger = logging.getLogger(__name__)

FALLBACK_JWT_SECRET = "marketplace-secret-key-change-in-production"


def _split(value: str | None) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseModel):
    environment: str = Field("development", description="development or production")
    database_url: str = Field("mongodb://localhost:27017", description="MongoDB connection string")
    database_name: str = Field("marketplace", description="MongoDB database name")

    jwt_secret: str = FALLBACK_JWT_SECRET
    token_expire_days: int = Field(7, ge=1)
    allowed_signup_roles: List[str] = Field(default_factory=lambda: ["customer"])

    cashfree_app_id: str = ""
    cashfree_secret_key: str = ""
    cashfree_api_url: str = "https://sandbox.cashfree.com/pg"
    cashfree_api_version: str = "2023-08-01"
    payment_currency: str = "INR"
    enforce_amount_match: bool = False
    frontend_url: str = "http://localhost:3000"

    default_admin_email: str = "admin@marketplace.com"
    default_admin_password: str = "ChangeMe123!"
    default_admin_name: str = "Administrator"
    default_admin_phone: str | None = None

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    port: int = 8000

    @field_validator("allowed_signup_roles")
    @classmethod
    def check_signup_roles(cls, roles: List[str]) -> List[str]:
        if not roles:
            raise ValueError("at least one signup role is required")
        unknown = [r for r in roles if r not in ROLES]
        if unknown:
            raise ValueError(f"unknown signup roles: {', '.join(unknown)}")
        if "admin" in roles:
            raise ValueError("admin cannot be a self-signup role")
        return roles

    @property
    def is_development(self) -> bool:
        return self.environment != "production"

    @property
    def uses_fallback_secret(self) -> bool:
        return self.jwt_secret == FALLBACK_JWT_SECRET

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (and a local .env file)."""
        load_dotenv()
        values = {
            "environment": os.getenv("ENVIRONMENT"),
            "database_url": os.getenv("DATABASE_URL"),
            "database_name": os.getenv("DATABASE_NAME"),
            "jwt_secret": os.getenv("JWT_SECRET"),
            "token_expire_days": os.getenv("TOKEN_EXPIRE_DAYS"),
            "allowed_signup_roles": _split(os.getenv("ALLOWED_SIGNUP_ROLES")) or None,
            "cashfree_app_id": os.getenv("CASHFREE_APP_ID"),
            "cashfree_secret_key": os.getenv("CASHFREE_SECRET_KEY"),
            "cashfree_api_url": os.getenv("CASHFREE_API_URL"),
            "cashfree_api_version": os.getenv("CASHFREE_API_VERSION"),
            "payment_currency": os.getenv("PAYMENT_CURRENCY"),
            "enforce_amount_match": os.getenv("PAYMENT_ENFORCE_AMOUNT_MATCH"),
            "frontend_url": os.getenv("FRONTEND_URL"),
            "default_admin_email": os.getenv("DEFAULT_ADMIN_EMAIL"),
            "default_admin_password": os.getenv("DEFAULT_ADMIN_PASSWORD"),
            "default_admin_name": os.getenv("DEFAULT_ADMIN_NAME"),
            "default_admin_phone": os.getenv("DEFAULT_ADMIN_PHONE"),
            "cors_origins": _split(os.getenv("CORS_ORIGINS")) or None,
            "log_level": os.getenv("LOG_LEVEL"),
            "port": os.getenv("PORT"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})


def configure_logging(level: str = "INFO"):
    root = logging.getLogger()
    root.setLevel(level.upper())
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - [%(levelname)s] - %(message)s"))
        root.addHandler(handler)
