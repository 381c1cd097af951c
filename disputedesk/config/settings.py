"""
Configuration settings for the Dispute Desk case service layer.

Settings are grouped into nested pydantic models and loaded with
pydantic-settings from environment variables (prefix ``DISPUTEDESK_``,
nested delimiter ``__``) and an optional ``.env`` file.
"""

from functools import lru_cache
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from disputedesk.app.core.exceptions import ConfigurationError


class DatabaseSettings(BaseModel):
    """MongoDB configuration settings."""
    mongodb_url: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URL"
    )
    mongodb_database: str = Field(
        default="dispute_desk",
        description="MongoDB database name"
    )
    cases_collection: str = Field(
        default="cases",
        description="Collection holding case documents"
    )
    messages_collection: str = Field(
        default="messages",
        description="Collection holding case thread messages"
    )
    users_collection: str = Field(
        default="users",
        description="Collection used to resolve owner and caseworker references"
    )
    panelists_collection: str = Field(
        default="panelists",
        description="Collection used to resolve panelist references"
    )
    server_selection_timeout_ms: int = Field(
        default=5000,
        description="Server selection timeout in milliseconds"
    )
    connect_timeout_ms: int = Field(
        default=5000,
        description="Connection timeout in milliseconds"
    )
    max_pool_size: int = Field(
        default=50,
        description="Maximum connection pool size"
    )
    min_pool_size: int = Field(
        default=5,
        description="Minimum connection pool size"
    )


class PaginationSettings(BaseModel):
    """Paging defaults shared by all list operations."""
    default_case_limit: int = Field(
        default=10,
        description="Default page size for case listings"
    )
    default_message_limit: int = Field(
        default=20,
        description="Default page size for message listings"
    )
    max_limit: int = Field(
        default=100,
        description="Largest page size a caller may request"
    )
    recent_messages_limit: int = Field(
        default=10,
        description="Number of messages in the recent-activity feed"
    )


class MessageSettings(BaseModel):
    """Message content limits."""
    max_content_length: int = Field(
        default=5000,
        description="Maximum message body length in characters"
    )
    max_subject_length: int = Field(
        default=200,
        description="Maximum message subject length in characters"
    )


class LoggingSettings(BaseModel):
    """Logging configuration settings."""
    level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    format: str = Field(
        default="json",
        description="Log format (json/text)"
    )
    enable_correlation_ids: bool = Field(
        default=True,
        description="Enable correlation ID tracking"
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path of a log file"
    )


class Settings(BaseSettings):
    """
    Application configuration settings.

    Nested sections map to environment variables such as
    ``DISPUTEDESK_DATABASE__MONGODB_URL`` or ``DISPUTEDESK_LOGGING__LEVEL``.
    """

    model_config = SettingsConfigDict(
        env_prefix="DISPUTEDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="Dispute Desk",
        description="Application name"
    )

    environment: str = Field(
        default="development",
        description="Environment (development/staging/production)"
    )

    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings,
        description="Database configuration"
    )

    pagination: PaginationSettings = Field(
        default_factory=PaginationSettings,
        description="Pagination defaults"
    )

    messages: MessageSettings = Field(
        default_factory=MessageSettings,
        description="Message limits"
    )

    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration"
    )

    def get_nested_setting(self, path: str, default: Any = None) -> Any:
        """
        Get a nested setting using dot notation.

        Args:
            path: Dot-separated path (e.g., "database.mongodb_url")
            default: Default value if path not found

        Returns:
            Setting value or default
        """
        try:
            current = self
            for part in path.split('.'):
                current = getattr(current, part)
            return current
        except AttributeError:
            return default

    def validate_configuration(self) -> Dict[str, list[str]]:
        """
        Validate the entire configuration.

        Returns:
            Dictionary with validation errors by section
        """
        errors: Dict[str, list[str]] = {}

        if not self._is_valid_url(self.database.mongodb_url):
            errors.setdefault("database", []).append(
                f"Invalid URL: database.mongodb_url = {self.database.mongodb_url}"
            )

        positive_int_fields = [
            ("pagination.default_case_limit", self.pagination.default_case_limit),
            ("pagination.default_message_limit", self.pagination.default_message_limit),
            ("pagination.max_limit", self.pagination.max_limit),
            ("messages.max_content_length", self.messages.max_content_length),
            ("messages.max_subject_length", self.messages.max_subject_length),
            ("database.max_pool_size", self.database.max_pool_size),
        ]

        for field_path, value in positive_int_fields:
            if not isinstance(value, int) or value <= 0:
                section = field_path.split('.')[0]
                errors.setdefault(section, []).append(
                    f"Must be positive integer: {field_path} = {value}"
                )

        if self.database.min_pool_size > self.database.max_pool_size:
            errors.setdefault("database", []).append(
                "database.min_pool_size exceeds database.max_pool_size"
            )

        if self.logging.format not in ("json", "text"):
            errors.setdefault("logging", []).append(
                f"Unknown log format: {self.logging.format}"
            )

        return errors

    def _is_valid_url(self, url: str) -> bool:
        """Check if URL is valid."""
        try:
            result = urlparse(url)
        except ValueError:
            return False
        return all([result.scheme, result.netloc])


@lru_cache()
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()


def clear_settings_cache() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()


def require_valid_settings(settings: Optional[Settings] = None) -> Settings:
    """
    Return settings after validation, raising on the first invalid section.

    Raises:
        ConfigurationError: If ``validate_configuration`` reports any errors
    """
    settings = settings or get_settings()
    errors = settings.validate_configuration()
    if errors:
        section = sorted(errors)[0]
        raise ConfigurationError(
            f"Invalid configuration: {'; '.join(errors[section])}",
            config_section=section,
        )
    return settings
