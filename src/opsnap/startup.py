"""First-boot initialization.

``ensure_initialized`` is the explicit startup step the process entry
point calls once.  It seeds an initial ADMIN account when the store has
no accounts, and the baseline taxonomy when the store has no tactics.

Concurrent first calls within one process serialize on a module-level
lock and the loser sees the completion flag.  Across processes, the
account seed matches on email and the taxonomy seed only runs against an
empty tactic table, so a repeated run does not double-seed.

Usage:
    from opsnap.startup import ensure_initialized
    from opsnap.taxonomy import JsonTaxonomyProvider

    await ensure_initialized(adapter, JsonTaxonomyProvider("taxonomy.json"))
"""

import asyncio
import logging

from opsnap.adapters.base import DatabaseClient
from opsnap.snapshot.models import Category
from opsnap.snapshot.order import CATEGORY_DEFS
from opsnap.snapshot.validator import validate_payload
from opsnap.taxonomy import TaxonomyProvider

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = "admin@example.com"

_init_lock = asyncio.Lock()
_initialized = False


async def ensure_initialized(
    adapter: DatabaseClient,
    provider: TaxonomyProvider | None = None,
    admin_email: str = DEFAULT_ADMIN_EMAIL,
) -> bool:
    """Seed baseline data once per process.

    Returns:
        True if this call ran the initialization, False if an earlier
        call already had.
    """
    global _initialized
    if _initialized:
        return False

    async with _init_lock:
        if _initialized:
            return False
        await seed_admin(adapter, admin_email)
        if provider is not None:
            await seed_taxonomy(adapter, provider)
        _initialized = True
        return True


def reset_initialization() -> None:
    """Forget that initialization ran (tests and re-seeding tools)."""
    global _initialized
    _initialized = False


async def seed_admin(adapter: DatabaseClient, email: str) -> bool:
    """Create or promote an ADMIN account when the store has no accounts.

    Returns:
        True if an account was written.
    """
    users = CATEGORY_DEFS[Category.USERS].table
    rows = await adapter.select(users, "count(*) as cnt")
    if rows and rows[0]["cnt"] > 0:
        return False

    email = email.strip().lower()
    async with adapter.transaction() as tx:
        existing = await tx.select(users, "id", filters={"email": email})
        if existing:
            await tx.update(users, {"role": "ADMIN"}, filters={"email": email})
        else:
            await tx.insert(users, {"email": email, "name": "Admin User", "role": "ADMIN"})

    logger.info("Created initial admin user: %s", email, extra={"event": "init.admin_seeded"})
    return True


async def seed_taxonomy(adapter: DatabaseClient, provider: TaxonomyProvider) -> dict[str, int]:
    """Load the provider's taxonomy when no tactics exist.

    Techniques whose tactic is not in the provider's tactic list, and
    sub-techniques whose technique was not seeded, are skipped.

    Returns:
        Seeded row counts per taxonomy category; empty when nothing ran.
    """
    tactics_def = CATEGORY_DEFS[Category.MITRE_TACTICS]
    rows = await adapter.select(tactics_def.table, "count(*) as cnt")
    if rows and rows[0]["cnt"] > 0:
        return {}

    payload = validate_payload({
        Category.MITRE_TACTICS.value: provider.tactics(),
        Category.MITRE_TECHNIQUES.value: provider.techniques(),
        Category.MITRE_SUB_TECHNIQUES.value: provider.sub_techniques(),
    })
    tactics = payload.get(Category.MITRE_TACTICS, [])
    tactic_ids = {t.id for t in tactics}
    techniques = [t for t in payload.get(Category.MITRE_TECHNIQUES, []) if t.tactic_id in tactic_ids]
    technique_ids = {t.id for t in techniques}
    sub_techniques = [
        s for s in payload.get(Category.MITRE_SUB_TECHNIQUES, []) if s.technique_id in technique_ids
    ]

    seeded: dict[str, int] = {}
    async with adapter.transaction() as tx:
        for category, records in (
            (Category.MITRE_TACTICS, tactics),
            (Category.MITRE_TECHNIQUES, techniques),
            (Category.MITRE_SUB_TECHNIQUES, sub_techniques),
        ):
            seeded[category.value] = await tx.insert_many(
                CATEGORY_DEFS[category].table, [r.model_dump() for r in records]
            )

    skipped = (
        len(payload.get(Category.MITRE_TECHNIQUES, [])) - len(techniques)
        + len(payload.get(Category.MITRE_SUB_TECHNIQUES, [])) - len(sub_techniques)
    )
    logger.info(
        "Seeded taxonomy %s: %d tactics, %d techniques, %d sub-techniques (%d skipped)",
        provider.metadata().get("version", ""),
        len(tactics),
        len(techniques),
        len(sub_techniques),
        skipped,
        extra={"event": "init.taxonomy_seeded"},
    )
    return seeded
