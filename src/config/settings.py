"""
Settings for the record engine API.

Values come from the environment (or .env) and are validated when the
process starts. With SNOWFLAKE_MOCK_MODE=true the API keeps records in
memory and needs no Snowflake credentials.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Every field maps to an upper-case environment variable.

    List-valued settings (api_keys, cors_origins) are comma-separated strings.
    """

    # API Configuration
    api_title: str = "FitData Coach API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated API keys accepted in X-API-Key"
    )

    # Snowflake Configuration
    snowflake_account: str = Field(
        default="",
        description="Snowflake account identifier"
    )
    snowflake_user: str = Field(
        default="",
        description="Snowflake service account username"
    )
    snowflake_password: str = Field(
        default="",
        description="Snowflake service account password"
    )
    snowflake_private_key_path: Optional[str] = Field(
        default=None,
        description="Path to RSA private key file for key-pair authentication"
    )
    snowflake_private_key_base64: Optional[str] = Field(
        default=None,
        description="Base64-encoded private key (for deployment, alternative to file path)"
    )
    snowflake_database: str = Field(
        default="FITDATA",
        description="Snowflake database name"
    )
    snowflake_schema: str = Field(
        default="RECORDS",
        description="Snowflake schema name"
    )
    snowflake_warehouse: str = Field(
        default="COMPUTE_WH",
        description="Snowflake warehouse for query execution"
    )
    snowflake_role: Optional[str] = Field(
        default=None,
        description="Snowflake role to use (optional)"
    )
    snowflake_mock_mode: bool = Field(
        default=False,
        description="Use the in-memory document store instead of Snowflake. Enables local dev without DB."
    )

    # Record Engine
    transaction_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts per transaction before a conflict is reported as a failure."
    )
    transaction_backoff_seconds: float = Field(
        default=0.05,
        ge=0,
        description="Base delay between conflicting attempts; doubles on each retry."
    )
    record_history_cap: int = Field(
        default=50,
        ge=1,
        description="Personal-record milestones kept per exercise. Oldest are dropped first."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def validate_required_fields(self) -> list[str]:
        """
        Names of required settings that are unset.

        Snowflake credentials only count when mock mode is off.
        """
        missing = []

        if not self.api_keys_list:
            missing.append("API_KEYS")

        # Snowflake only required if not in mock mode
        if not self.snowflake_mock_mode:
            if not self.snowflake_account:
                missing.append("SNOWFLAKE_ACCOUNT")
            if not self.snowflake_user:
                missing.append("SNOWFLAKE_USER")
            # Need either password or private key
            if (
                not self.snowflake_password
                and not self.snowflake_private_key_path
                and not self.snowflake_private_key_base64
            ):
                missing.append("SNOWFLAKE_PASSWORD or SNOWFLAKE_PRIVATE_KEY_PATH")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Loaded once per process. Tests override the get_settings dependency
    or call get_settings.cache_clear().
    """
    return Settings()
