"""Database client factory.

Resolves the active profile from ``opsnap.toml`` and builds the adapter
the snapshot engine runs against.

Profile priority:
1. ``OPSNAP_DB_PROFILE`` env var (for initial connect or CI/CD)
2. ``.opsnap-profile`` lock file (profile chosen by a previous ``connect``)
3. Raise ``ProfileNotFoundError``
"""

import os
from pathlib import Path
from urllib.parse import quote

from opsnap.adapters.postgres import AsyncPostgresAdapter
from opsnap.config.loader import load_config
from opsnap.config.models import AppConfig, DatabaseProfile

# Columns stored as JSONB (attack flow layout graph)
JSONB_COLUMNS = ["nodes", "edges"]

_PROFILE_LOCK_FILE = ".opsnap-profile"


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


# ============================================================================
# Profile Lock File Operations
# ============================================================================


def _lock_path() -> Path:
    return Path.cwd() / _PROFILE_LOCK_FILE


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    path = _lock_path()
    if path.exists():
        return path.read_text().strip() or None
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file."""
    _lock_path().write_text(profile_name)


def get_active_profile_name() -> str:
    """Get active profile name from env var or lock file.

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_profile = os.environ.get("OPSNAP_DB_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        "Run: OPSNAP_DB_PROFILE=<name> opsnap connect"
    )


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Example:
        >>> resolve_url(DatabaseProfile(url="postgresql://u:[YOUR-PASSWORD]@h/db", db_password="p@ss"))
        'postgresql://u:p%40ss@h/db'
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def get_adapter(
    profile_name: str | None = None,
    config: AppConfig | None = None,
) -> AsyncPostgresAdapter:
    """Create an adapter for the named (or active) profile.

    Args:
        profile_name: Profile from opsnap.toml.  When None, uses the active
            profile (env var, then lock file).
        config: Pre-loaded configuration.  Loaded from disk when None.

    Raises:
        ProfileNotFoundError: If no profile is configured or the name is
            not present in the configuration.
    """
    if config is None:
        config = load_config()
    if profile_name is None:
        profile_name = get_active_profile_name()

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found. Available: {available}"
        )

    return AsyncPostgresAdapter(
        resolve_url(config.profiles[profile_name]),
        jsonb_columns=JSONB_COLUMNS,
    )


async def connect(profile_name: str | None = None, config: AppConfig | None = None) -> str:
    """Verify a profile's database is reachable and lock it as active.

    Returns:
        The profile name written to the lock file.

    Raises:
        ProfileNotFoundError: If the profile cannot be resolved.
        Exception: If the database connection fails; the lock is unchanged.
    """
    if profile_name is None:
        profile_name = get_active_profile_name()
    adapter = get_adapter(profile_name, config)
    try:
        await adapter.test_connection()
    finally:
        await adapter.close()
    write_profile_lock(profile_name)
    return profile_name
