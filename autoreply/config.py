from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Twilio credentials - required, the service cannot start without them
    ACCOUNT_SID: str
    AUTH_TOKEN: str

    LOG_LEVEL: str = "INFO"

    # Google Sheets destination
    SPREADSHEET_ID: str = ""
    SHEET_NAME: Optional[str] = None
    SHEET_LAYOUT: Literal["standard", "compact"] = "standard"

    # Service account: base64 or raw JSON in the env var, else a key file
    GOOGLE_CREDENTIALS_JSON: Optional[str] = None
    GOOGLE_CREDENTIALS_PATH: str = "service-account.json"

    # Auto-reply
    REPLY_MESSAGE: str = (
        "Thanks for reaching out! We got your message and will get back to you shortly."
    )
    REPLY_MODE: Literal["twiml", "api"] = "twiml"

    # Defaults for POST /send-message
    DEFAULT_FROM: str = "whatsapp:+14155238886"
    DEFAULT_TO: str = ""
    CONTENT_SID: str = ""
    CONTENT_VARIABLES: str = "{}"

    # IANA zone for the Date/Time columns; server local time when unset
    TIMEZONE: Optional[str] = None

    # Webhook security
    VALIDATE_TWILIO_SIGNATURE: bool = False
    PUBLIC_URL: Optional[str] = None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
