"""Pydantic models for opsnap configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from opsnap.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution


class SnapshotSettings(BaseModel):
    """Snapshot format and file placement settings."""

    format_version: str = "2.0"
    backups_dir: str = "backups"


class SeedSettings(BaseModel):
    """First-boot initialization settings."""

    initial_admin_email: str = "admin@example.com"
    taxonomy_file: str | None = None


class AppConfig(BaseModel):
    """Complete configuration from opsnap.toml."""

    profiles: dict[str, DatabaseProfile]
    snapshot: SnapshotSettings = Field(default_factory=SnapshotSettings)
    seed: SeedSettings = Field(default_factory=SeedSettings)
