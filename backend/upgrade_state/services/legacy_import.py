from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from upgrade_state.models.errors import LegacyDecodeError
from upgrade_state.models.experience_upgrade import ExperienceUpgrade
from upgrade_state.services.upgrade_store import put_upgrade

logger = logging.getLogger(__name__)


def read_legacy_entries(path: Path) -> list[Any]:
    """Return the raw archive entries, or an empty list when the file is gone."""
    if not path.exists():
        return []
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise LegacyDecodeError(f"Invalid JSON in legacy archive file {path}") from exc

    # Older builds keyed the collection by unique id
    if isinstance(data, dict):
        return list(data.values())
    if isinstance(data, list):
        return data
    raise LegacyDecodeError(f"Legacy archive file {path} must contain a list or object")


async def _import_entries(session: AsyncSession, entries: list[Any]) -> tuple[int, int]:
    imported = 0
    skipped = 0
    for index, entry in enumerate(entries):
        try:
            upgrade = ExperienceUpgrade.decode_legacy(entry)
        except LegacyDecodeError as exc:
            logger.warning("Skipping legacy experience upgrade #%d: %s", index, exc)
            skipped += 1
            continue

        await put_upgrade(session, upgrade)
        imported += 1
    return imported, skipped


async def import_legacy_upgrades(session: AsyncSession, path: Path | str) -> dict[str, int]:
    """Put every decodable archived upgrade in a single transaction.

    Undecodable entries are logged and skipped. Any store error rolls the
    whole import back and propagates.
    """
    entries = read_legacy_entries(Path(path))
    if not entries:
        logger.info("No legacy experience upgrades found at %s", path)
        return {"imported": 0, "skipped": 0, "total": 0}

    if session.in_transaction():
        imported, skipped = await _import_entries(session, entries)
    else:
        async with session.begin():
            imported, skipped = await _import_entries(session, entries)

    logger.info("Legacy experience upgrade import from %s: %d imported, %d skipped", path, imported, skipped)
    return {"imported": imported, "skipped": skipped, "total": imported + skipped}


__all__ = ["read_legacy_entries", "import_legacy_upgrades"]
