"""Configuration module for the Gravity notes engine."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from gravity_notes import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: survives reinstalls, lives alongside the logs
_USER_ENV = Path.home() / ".gravity" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class GravityConfig(BaseModel):
    """Configuration for the notes engine."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("GRAVITY_BASE_DIR", "."))
    )
    # Storage configuration
    notes_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("GRAVITY_NOTES_DIR", "data/notes"))
    )
    # Metadata index configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("GRAVITY_DATABASE_PATH", "data/db/index.db")
        )
    )
    # When True the index lives in memory and is rebuilt from the note files
    # on startup. The files are always the record of truth.
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("GRAVITY_IN_MEMORY_DB", "true")
    )
    # Lifecycle configuration
    cleanup_max_age_minutes: int = Field(
        default_factory=lambda: int(
            os.getenv("GRAVITY_CLEANUP_MAX_AGE_MINUTES", "15")
        )
    )
    cleanup_interval_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv("GRAVITY_CLEANUP_INTERVAL_SECONDS", "300")
        )
    )
    # Metadata derivation
    title_max_length: int = Field(
        default_factory=lambda: int(os.getenv("GRAVITY_TITLE_MAX_LENGTH", "50"))
    )
    preview_max_length: int = Field(
        default_factory=lambda: int(os.getenv("GRAVITY_PREVIEW_MAX_LENGTH", "800"))
    )
    preview_max_lines: int = Field(
        default_factory=lambda: int(os.getenv("GRAVITY_PREVIEW_MAX_LINES", "15"))
    )
    # Upper bound on a single note body, in code points
    max_content_length: int = Field(
        default_factory=lambda: int(
            os.getenv("GRAVITY_MAX_CONTENT_LENGTH", "1000000")
        )
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("GRAVITY_SERVER_NAME", "gravity-notes"))
    server_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_limits(self) -> "GravityConfig":
        """Reject limits that would make derivation or cleanup meaningless."""
        if self.title_max_length < 4:
            raise ValueError("title_max_length must be >= 4")
        if self.preview_max_length < 4:
            raise ValueError("preview_max_length must be >= 4")
        if self.preview_max_lines < 1:
            raise ValueError("preview_max_lines must be >= 1")
        if self.cleanup_max_age_minutes < 0:
            raise ValueError("cleanup_max_age_minutes must be >= 0")
        if self.cleanup_interval_seconds <= 0:
            raise ValueError("cleanup_interval_seconds must be > 0")
        if self.max_content_length < 1:
            raise ValueError("max_content_length must be >= 1")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for the SQLite metadata index."""
        if self.in_memory_db:
            return "sqlite:///:memory:"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = GravityConfig()
