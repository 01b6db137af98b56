"""
Environment-driven configuration for the Church Members backend.

Values are read once at process start from the environment and an optional `.env` file
(next to the package or at the project root) and carried on the application context;
nothing reads os.environ at request time.
"""
from decimal import Decimal
from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent.parent

DEFAULT_DATABASE_URL = "sqlite:///./church_members.db"
# Default broadcast rate: EUR 0.016 per SMS converted at 11.5 NOK/EUR
DEFAULT_COST_PER_MESSAGE = Decimal("0.016") * Decimal("11.5")


# PUBLIC_INTERFACE
class Settings(BaseSettings):
    """
    Process-wide settings. Every field maps to the upper-case environment variable of the
    same name (DATABASE_URL, SMS_PROVIDER, ...); FRONTEND_URLS is a comma-separated list.
    """

    model_config = SettingsConfigDict(
        env_file=(PROJECT_ROOT / ".env", BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    database_url: str = DEFAULT_DATABASE_URL
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 15
    db_pool_recycle: int = 3600

    jwt_secret_key: str = "devsecretkey"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60 * 24

    frontend_urls: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:5178"],
        validation_alias=AliasChoices("frontend_urls", "frontend_url"),
    )

    sms_provider: str = "bird"
    sms_http_timeout: float = 15.0
    sms_cost_per_message: Decimal = DEFAULT_COST_PER_MESSAGE
    sms_cost_currency: str = "NOK"
    sms_cost_basis: str = Field("attempted", description="'attempted' or 'successful'")
    sms_default_country_code: Optional[str] = None
    sms_max_workers: int = 8

    bird_api_url: str = "https://api.bird.com"
    bird_api_key: Optional[str] = None
    bird_workspace_id: Optional[str] = None
    bird_channel_id: Optional[str] = None
    bird_sender: str = "DEBREIYESUS"

    messagebird_api_url: str = "https://rest.messagebird.com/messages"
    messagebird_api_key: Optional[str] = None
    messagebird_sender: str = "DEBREIYESUS"

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None
    twilio_messaging_service_sid: Optional[str] = None
    azure_connection_string: Optional[str] = None
    azure_sender: Optional[str] = Field(default=None, validation_alias=AliasChoices("azure_sender", "azure_sms_from"))

    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60
    forwarded_allow_ips: Optional[str] = None

    log_level: str = "INFO"
    log_format: str = "text"

    @field_validator("database_url", mode="before")
    @classmethod
    def _clean_database_url(cls, value):
        value = (value or "").strip()
        # Some hosts hand over the value with the variable name still attached
        if value.startswith("DATABASE_URL="):
            value = value[len("DATABASE_URL="):].strip()
        return value or DEFAULT_DATABASE_URL

    @field_validator("frontend_urls", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("sms_provider", "sms_cost_basis", "log_format", mode="before")
    @classmethod
    def _lower(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("sms_default_country_code", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        return value or None

    # PUBLIC_INTERFACE
    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the process environment (and `.env`)."""
        return cls()
