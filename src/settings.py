"""
Application settings for the mHealth admin service.

- Defaults are intended for development use.
- For testing, override via pyproject.toml [tool.pytest.ini_options].
- For production, set environment variables to override fields.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """mHealth admin service configuration."""

    # Supabase (PostgREST) record store
    supabase_url: str = Field(
        default="http://localhost:54321",
        description="Base URL of the Supabase project",
    )
    supabase_service_key: str = Field(
        default="",
        description="Service role key used for the PostgREST API",
    )
    supabase_timeout: float = Field(
        default=30.0,
        description="Timeout for record store requests in seconds",
    )

    # SMS gateway
    sms_api_url: str = Field(
        default="https://sms.iprogtech.com/api/v1/sms_messages",
        description="IPROG SMS messages endpoint",
    )
    sms_api_token: str | None = Field(
        default=None,
        description="IPROG API token",
    )
    sms_provider: int = Field(
        default=1,
        description="IPROG sms_provider parameter",
    )
    sms_timeout: float = Field(
        default=15.0,
        description="Timeout for SMS gateway requests in seconds",
    )

    # Import behaviour
    strict_phone_validation: bool = Field(
        default=False,
        description="Reject phone numbers that are not +639 followed by nine digits",
    )
    strict_gender_validation: bool = Field(
        default=False,
        description="Reject gender values other than male/female (M/F)",
    )
    import_error_preview_limit: int = Field(
        default=3,
        description="Number of row errors shown in human-facing summaries",
    )
    identifier_strategy: Literal["max_plus_one", "store"] = Field(
        default="max_plus_one",
        description=(
            "max_plus_one reads max(id) once per batch and relies on the "
            "primary key to reject collisions; store lets the database assign ids"
        ),
    )

    # Service authentication
    service_auth_secret: str = Field(
        default="development-secret",
        description="HS256 secret for service JWT tokens",
    )
    service_auth_issuer: str = Field(default="mhealth-services")
    service_auth_audience: str = Field(default="mhealth-admin")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
