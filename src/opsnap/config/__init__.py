"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from opsnap.config import load_config, AppConfig, DatabaseProfile
"""

from opsnap.config.loader import load_config
from opsnap.config.models import AppConfig, DatabaseProfile, SeedSettings, SnapshotSettings

__all__ = ["load_config", "AppConfig", "DatabaseProfile", "SeedSettings", "SnapshotSettings"]
