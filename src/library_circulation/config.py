"""Configuration management for the library circulation engine.

Every circulation policy the engine enforces (loan period, renewal cap, fine
rate, borrow limits) and every operational knob (database location, retry
attempts for contended transactions, logging) lives here, loaded from
environment variables with the ``LIBRARY_CIRCULATION_`` prefix or a ``.env``
file.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CirculationConfig(BaseSettings):
    """Circulation engine configuration.

    Defaults reproduce the library's published policy: 15 day loans, two
    renewals of 15 days each, a flat per-day fine, three concurrent loans for
    members and ten for librarians.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_CIRCULATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Server Metadata ===

    server_name: str = Field(
        default="library-circulation",
        description="Server name announced to MCP clients",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version for capability negotiation",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    transport: str = Field(
        default="stdio",
        description="Primary transport mechanism",
        pattern=r"^(stdio|streamable_http)$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/circulation.db"),
        description="SQLite database file path",
    )

    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides database_path when set",
    )

    max_transaction_attempts: int = Field(
        default=5,
        description="Attempts for a contended transaction before reporting a conflict",
        ge=1,
        le=50,
    )

    retry_backoff_seconds: float = Field(
        default=0.05,
        description="Linear backoff step between transaction attempts",
        ge=0.0,
        le=5.0,
    )

    # === Circulation Policy ===

    loan_period_days: int = Field(
        default=15,
        description="Days between issue date and due date",
        ge=1,
        le=365,
    )

    renewal_extension_days: int = Field(
        default=15,
        description="Days added to the due date on each renewal",
        ge=1,
        le=365,
    )

    max_renewals: int = Field(
        default=2,
        description="Maximum renewals per loan",
        ge=0,
        le=10,
    )

    fine_per_day: float = Field(
        default=5000.0,
        description="Fine charged for each full day a loan is past due",
        ge=0.0,
    )

    default_member_max_borrow: int = Field(
        default=3,
        description="Borrow limit given to newly registered members",
        ge=0,
        le=100,
    )

    default_librarian_max_borrow: int = Field(
        default=10,
        description="Borrow limit given to newly registered librarians",
        ge=0,
        le=100,
    )

    due_reminder_days: int = Field(
        default=2,
        description="Window, in days before the due date, for due reminders",
        ge=0,
        le=30,
    )

    # === Identity ===

    acting_member_id: str | None = Field(
        default=None,
        description="Member id the MCP surface acts as when no identity provider is installed",
    )

    # === Development Configuration ===

    debug: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve the database path and make sure its directory exists."""
        abs_path = v.absolute()
        abs_path.parent.mkdir(parents=True, exist_ok=True)
        if not abs_path.parent.is_dir():
            raise ValueError(f"Database directory {abs_path.parent} is not accessible")
        return abs_path

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    @property
    def is_development(self) -> bool:
        return self.debug or self.log_level == "DEBUG"

    @property
    def server_info(self) -> dict[str, str]:
        return {
            "name": self.server_name,
            "version": self.server_version,
            "transport": self.transport,
        }

    def get_database_url(self) -> str:
        """Get the SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.database_path}"

    def max_borrow_for(self, role: str) -> int:
        """Default borrow limit for a role; cancelled accounts cannot borrow."""
        if role == "librarian":
            return self.default_librarian_max_borrow
        if role == "member":
            return self.default_member_max_borrow
        return 0


class _ConfigStore:
    """Internal storage for configuration singleton."""

    _instance: CirculationConfig | None = None


def get_config() -> CirculationConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = CirculationConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
