# MCP AuthZ - OAuth 2.1 Authorization Server
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Configuration management using Pydantic Settings."""

from datetime import timedelta

from beartype import beartype
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FALLBACK_CLIENT_SECRET = "chatgpt-mcp-secret-key-2024"  # nosec B105


class Settings(BaseSettings):
    """Application settings with immutable configuration."""

    model_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        frozen=True,
        validate_default=True,
        extra="forbid",
    )

    # Database
    database_url: str = Field(
        default="postgresql://localhost:5432/mcp_authz",
        description="PostgreSQL connection URL",
        min_length=1,
    )
    database_pool_min: int = Field(
        default=1,
        ge=1,
        le=20,
        description="Minimum database pool size",
    )
    database_pool_max: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Maximum database pool size",
    )
    database_pool_timeout: float = Field(
        default=2.0,
        ge=0.1,
        le=60.0,
        description="Connection acquisition timeout in seconds",
    )
    database_command_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=300.0,
        description="Query execution timeout in seconds",
    )
    database_max_inactive_connection_lifetime: float = Field(
        default=30.0,
        ge=1.0,
        le=3600.0,
        description="Idle connection lifetime in seconds",
    )

    # Service
    api_env: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="API environment",
    )
    issuer_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL of the authorization server",
        min_length=1,
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Root log level",
    )

    # OAuth storage
    oauth_store_backend: str = Field(
        default="postgres",
        pattern="^(postgres|memory)$",
        description="Persistence backend for clients, codes and tokens",
    )

    # Fallback client
    mcp_oauth_client_id: str = Field(
        default="chatgpt-mcp-client",
        min_length=1,
        description="Statically configured fallback client id",
    )
    mcp_oauth_client_secret: str = Field(
        default=DEFAULT_FALLBACK_CLIENT_SECRET,
        min_length=1,
        description="Statically configured fallback client secret",
    )
    oauth_fallback_redirect_uris: list[str] = Field(
        default_factory=lambda: [
            "https://chatgpt.com/aip/g-*/oauth/callback",
            "https://chatgpt.com/connector_platform_oauth_redirect",
            "https://platform.openai.com/apps-manage/oauth",
        ],
        description="Redirect URIs seeded for the fallback client",
    )
    oauth_default_redirect_uris: list[str] = Field(
        default_factory=lambda: ["https://chatgpt.com/aip/g-*/oauth/callback"],
        description="Redirect URIs given to registrations that omit them",
    )

    # Lifetimes
    oauth_authorization_code_ttl_seconds: int = Field(
        default=600,
        ge=30,
        le=3600,
        description="Authorization code lifetime",
    )
    oauth_access_token_ttl_seconds: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Access token lifetime",
    )
    oauth_refresh_token_ttl_seconds: int = Field(
        default=30 * 24 * 3600,
        ge=3600,
        le=365 * 24 * 3600,
        description="Refresh token lifetime",
    )
    oauth_sweep_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        le=3600.0,
        description="Interval between background expiry sweeps",
    )

    @field_validator("database_pool_max")
    @classmethod
    def validate_pool_sizes(cls: type["Settings"], v: int, info: ValidationInfo) -> int:
        """Ensure pool max is greater than pool min."""
        if "database_pool_min" in info.data:
            min_size = info.data["database_pool_min"]
            if v < min_size:
                raise ValueError(
                    f"database_pool_max ({v}) must be >= database_pool_min ({min_size})"
                )
        return v

    @field_validator("oauth_store_backend")
    @classmethod
    def validate_store_backend(
        cls: type["Settings"], v: str, info: ValidationInfo
    ) -> str:
        """The in-memory store is for development and tests only."""
        if info.data.get("api_env") == "production" and v == "memory":
            raise ValueError(
                "In-memory OAuth storage cannot be used in production. "
                "Set OAUTH_STORE_BACKEND=postgres."
            )
        return v

    @field_validator("mcp_oauth_client_secret")
    @classmethod
    def validate_fallback_secret(
        cls: type["Settings"], v: str, info: ValidationInfo
    ) -> str:
        """Ensure the built-in fallback secret is not used in production."""
        if info.data.get("api_env") == "production" and v == DEFAULT_FALLBACK_CLIENT_SECRET:
            raise ValueError(
                "Default fallback client secret cannot be used in production. "
                "Set MCP_OAUTH_CLIENT_SECRET environment variable."
            )
        return v

    @field_validator("oauth_refresh_token_ttl_seconds")
    @classmethod
    def validate_refresh_outlives_access(
        cls: type["Settings"], v: int, info: ValidationInfo
    ) -> int:
        """Refresh tokens must outlive the access tokens they are paired with."""
        access_ttl = info.data.get("oauth_access_token_ttl_seconds")
        if access_ttl is not None and v <= access_ttl:
            raise ValueError(
                f"oauth_refresh_token_ttl_seconds ({v}) must be greater than "
                f"oauth_access_token_ttl_seconds ({access_ttl})"
            )
        return v

    @property
    @beartype
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.api_env == "production"

    @property
    @beartype
    def authorization_code_ttl(self) -> timedelta:
        """Authorization code lifetime as timedelta."""
        return timedelta(seconds=self.oauth_authorization_code_ttl_seconds)

    @property
    @beartype
    def access_token_ttl(self) -> timedelta:
        """Access token lifetime as timedelta."""
        return timedelta(seconds=self.oauth_access_token_ttl_seconds)

    @property
    @beartype
    def refresh_token_ttl(self) -> timedelta:
        """Refresh token lifetime as timedelta."""
        return timedelta(seconds=self.oauth_refresh_token_ttl_seconds)


_settings: Settings | None = None


@beartype
def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


@beartype
def clear_settings_cache() -> None:
    """Clear settings cache (for testing)."""
    global _settings
    _settings = None
