"""
Configuration management for CareNest Access Backend
"""
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Optional, List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Required settings
    DATABASE_URL: str = Field(..., description="Database URL (PostgreSQL in prod, SQLite locally)")
    JWT_SECRET_KEY: str = Field(..., description="JWT secret key for token signing")

    # Optional settings with defaults
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    JWT_EXPIRE_MINUTES: int = Field(default=120, description="JWT token expiration in minutes")

    APP_ENV: str = Field(default="local", description="Application environment: local, staging, prod")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")

    # CORS settings
    ALLOWED_ORIGINS: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins. Use '*' for local only."
    )

    # Clock events: when is_mocked=True, True = reject with 400; False = accept and flag on the event
    REJECT_MOCKED_LOCATION: bool = Field(
        default=True,
        description="If True, reject clock-in/out when the device reports a mocked location",
    )

    # RBAC configuration cache (seconds); 0 disables caching
    RBAC_CONFIG_CACHE_TTL_SECONDS: int = Field(default=30, ge=0, description="TTL for cached RBAC config reads")

    # Defaults for a newly created rbac_settings row
    RBAC_DEFAULT_STRICT_MODE: bool = Field(default=False, description="Abort grants/revokes when the audit write fails")
    RBAC_DEFAULT_GRACE_PERIOD_MINUTES: int = Field(default=15, ge=0, description="Clock-in/out grace window")
    RBAC_DEFAULT_REQUIRE_LOCATION: bool = Field(default=False, description="Enforce location on clock events")
    RBAC_DEFAULT_MAX_DISTANCE_METERS: int = Field(default=100, gt=0, description="Max distance from property")
    RBAC_DEFAULT_AUDIT_LOGGING: bool = Field(default=True, description="Write access audit entries")

    # Version (can be git SHA or semver)
    VERSION: Optional[str] = Field(default=None, description="Application version (git SHA or semver)")

    # Initial admin bootstrap settings
    INITIAL_ORGANIZATION_NAME: str = Field(
        default="CareNest Disability Services",
        description="Organization created on first start when the database is empty"
    )
    INITIAL_ADMIN_EMAIL: str = Field(
        default="admin@carenest.local",
        description="Email for initial admin user (used when no admin exists)"
    )
    INITIAL_ADMIN_PASSWORD: str = Field(
        default="Admin@12345",
        description="Password for initial admin user (used when no admin exists)"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate APP_ENV"""
        allowed = ["local", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate LOG_LEVEL"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v.upper()

    def validate_production(self) -> None:
        """
        Validate settings for production environment

        Raises:
            ValueError: If production settings are invalid
        """
        if self.APP_ENV == "prod":
            # JWT_SECRET_KEY must be at least 32 characters in production
            if len(self.JWT_SECRET_KEY) < 32:
                raise ValueError(
                    "JWT_SECRET_KEY must be at least 32 characters in production environment"
                )

            # ALLOWED_ORIGINS must not be wildcard in production
            if self.ALLOWED_ORIGINS == "*" or not self.ALLOWED_ORIGINS:
                raise ValueError(
                    "ALLOWED_ORIGINS must be explicitly set (not '*') in production environment"
                )

            if self.INITIAL_ADMIN_PASSWORD == "Admin@12345":
                raise ValueError(
                    "INITIAL_ADMIN_PASSWORD must be changed in production environment"
                )

    def get_allowed_origins_list(self) -> List[str]:
        """
        Get list of allowed CORS origins

        Returns:
            List of allowed origins (or ['*'] for local)
        """
        if self.ALLOWED_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


# Create settings instance
settings = Settings()

# Validate production settings if in prod
if settings.APP_ENV == "prod":
    settings.validate_production()
