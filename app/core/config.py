import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    """Application settings with environment variable support"""
    app_name: str = "BrokerIn Back Office"
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_database: str = "brokerin"
    redis_url: Optional[str] = None
    locale: str = "en_IN"
    currency: str = "INR"
    payment_scan_hour: int = 2
    payment_scan_lock_ttl: int = 3600
    reminder_hour: int = 9
    record_generation_hour: int = 1

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


settings = Settings()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_bool(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value.lower() == "true"


# =====================================
# COMPANY / SENDER IDENTITY
# =====================================

@dataclass(frozen=True)
class CompanyInfo:
    """Recipient-facing company metadata used by every email layout"""
    name: str = "BrokerIn"
    email: str = "no-reply@brokerin.in"
    phone: str = "+91-8310652049"
    address: str = "Udayapala, Kanakapura Road, Bangalore, 560082"
    website: Optional[str] = "https://brokerin.in"
    logo_url: str = "https://www.brokerin.in/images/logo.png"

    @classmethod
    def from_env(cls) -> "CompanyInfo":
        defaults = cls()
        return cls(
            name=os.getenv("COMPANY_NAME", defaults.name),
            email=os.getenv("COMPANY_EMAIL", defaults.email),
            phone=os.getenv("COMPANY_PHONE", defaults.phone),
            address=os.getenv("COMPANY_ADDRESS", defaults.address),
            website=os.getenv("COMPANY_WEBSITE", defaults.website) or None,
            logo_url=os.getenv("COMPANY_LOGO_URL", defaults.logo_url),
        )


# =====================================
# MAIL CONFIGURATION
# =====================================

@dataclass(frozen=True)
class MailConfig:
    """
    Immutable mail provider configuration.

    The HTTP API wins when its token is set, SMTP is used when both the
    mailbox and its password are set, otherwise mail is unconfigured.
    Timeouts are in seconds.
    """
    company: CompanyInfo = field(default_factory=CompanyInfo)
    locale: str = "en_IN"
    currency: str = "INR"

    # HTTP transactional email API (ZeptoMail)
    zepto_url: str = "https://api.zeptomail.in/v1.1/email"
    zepto_token: Optional[str] = None
    zepto_from_email: Optional[str] = None
    zepto_from_name: Optional[str] = None
    zepto_bounce_email: Optional[str] = None
    http_timeout: float = 20.0

    # SMTP
    smtp_host: str = "smtp.zoho.in"
    smtp_port: int = 587
    smtp_secure: Optional[bool] = None
    smtp_email: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_connection_timeout: float = 15.0
    smtp_greeting_timeout: float = 10.0
    smtp_socket_timeout: float = 20.0
    smtp_debug: bool = False

    admin_email: Optional[str] = None

    @classmethod
    def from_env(cls) -> "MailConfig":
        """Create configuration from environment variables"""
        return cls(
            company=CompanyInfo.from_env(),
            locale=settings.locale,
            currency=settings.currency,
            zepto_url=os.getenv("ZEPTO_URL", "https://api.zeptomail.in/v1.1/email"),
            zepto_token=os.getenv("ZEPTO_TOKEN") or None,
            zepto_from_email=os.getenv("ZEPTO_FROM_EMAIL") or None,
            zepto_from_name=os.getenv("ZEPTO_FROM_NAME") or None,
            zepto_bounce_email=os.getenv("ZEPTO_BOUNCE_EMAIL") or None,
            smtp_host=os.getenv("SMTP_HOST", "smtp.zoho.in"),
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_secure=_env_bool("SMTP_SECURE"),
            smtp_email=os.getenv("SMTP_USERNAME") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_connection_timeout=_env_int("SMTP_CONNECTION_TIMEOUT_MS", 15000) / 1000,
            smtp_greeting_timeout=_env_int("SMTP_GREETING_TIMEOUT_MS", 10000) / 1000,
            smtp_socket_timeout=_env_int("SMTP_SOCKET_TIMEOUT_MS", 20000) / 1000,
            smtp_debug=os.getenv("SMTP_DEBUG", "false").lower() == "true",
            admin_email=os.getenv("ADMIN_EMAIL") or os.getenv("SMTP_USERNAME") or None,
        )

    @property
    def http_enabled(self) -> bool:
        return bool(self.zepto_token)

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_email and self.smtp_password)

    @property
    def smtp_use_ssl(self) -> bool:
        if self.smtp_secure is not None:
            return self.smtp_secure
        return self.smtp_port == 465

    @property
    def default_sender(self) -> str:
        return self.smtp_email or self.company.email
