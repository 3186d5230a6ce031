import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from sqlalchemy import delete, exists, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from upgrade_state.models.errors import CorruptRecordError, DuplicateUpgradeError, InvalidArgumentError
from upgrade_state.models.experience_upgrade import ExperienceUpgrade
from upgrade_state.models.records import ExperienceUpgradeRecord, record_to_upgrade, upgrade_to_record

logger = logging.getLogger(__name__)

UpgradeBlock = Callable[[ExperienceUpgrade], None]


def _require_unique_id(unique_id: str) -> None:
    if not isinstance(unique_id, str) or not unique_id:
        raise InvalidArgumentError("Experience upgrade unique_id must be a non-empty string")


@asynccontextmanager
async def _transaction(session: AsyncSession) -> AsyncIterator[None]:
    # Join the caller's transaction when there is one, otherwise own a short one
    if session.in_transaction():
        yield
    else:
        async with session.begin():
            yield


async def _select_record(
    session: AsyncSession, unique_id: str, for_update: bool = False
) -> Optional[ExperienceUpgradeRecord]:
    stmt = (
        select(ExperienceUpgradeRecord)
        .where(ExperienceUpgradeRecord.unique_id == unique_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalars().first()


def _to_upgrade(record: ExperienceUpgradeRecord) -> ExperienceUpgrade:
    try:
        return record_to_upgrade(record)
    except CorruptRecordError as exc:
        logger.error("Corrupt experience upgrade row id=%s: %s", record.id, exc)
        raise


async def _raise_if_duplicate(session: AsyncSession, unique_id: str, exc: IntegrityError) -> None:
    # A failed caller-owned transaction cannot be queried, the raw error goes back to the caller
    if session.in_transaction():
        return
    if await upgrade_exists(session, unique_id):
        raise DuplicateUpgradeError(unique_id) from exc


def _adopt_stored(upgrade: ExperienceUpgrade, record: ExperienceUpgradeRecord) -> None:
    upgrade.adopt_stored(
        row_id=record.id,
        first_viewed_timestamp=record.first_viewed_timestamp,
        last_snoozed_timestamp=record.last_snoozed_timestamp,
        is_complete=record.is_complete,
    )


async def _save(
    session: AsyncSession, upgrade: ExperienceUpgrade, record: Optional[ExperienceUpgradeRecord]
) -> int:
    if record is None:
        record = upgrade_to_record(upgrade)
        session.add(record)
        await session.flush()
        logger.info("Inserted experience upgrade %s (row %s)", upgrade.unique_id, record.id)
    else:
        # Monotonic fields: first view sticks, completion is never undone
        if not record.first_viewed_timestamp:
            record.first_viewed_timestamp = upgrade.first_viewed_timestamp
        record.is_complete = record.is_complete or upgrade.is_complete
        record.last_snoozed_timestamp = upgrade.last_snoozed_timestamp
        await session.flush()
        logger.debug("Updated experience upgrade %s (row %s)", upgrade.unique_id, record.id)

    _adopt_stored(upgrade, record)
    return record.id


# --- Store contract ---


async def get_upgrade(session: AsyncSession, unique_id: str) -> Optional[ExperienceUpgrade]:
    _require_unique_id(unique_id)
    async with _transaction(session):
        record = await _select_record(session, unique_id)
        if record is None:
            return None
        return _to_upgrade(record)


async def put_upgrade(session: AsyncSession, upgrade: ExperienceUpgrade) -> int:
    """Insert or overwrite the row for ``upgrade.unique_id`` and return its row id.

    The passed instance is updated in place with the row id and with whatever
    the monotonic merge kept from the stored row.
    """
    _require_unique_id(upgrade.unique_id)
    try:
        async with _transaction(session):
            record = await _select_record(session, upgrade.unique_id, for_update=True)
            if record is not None:
                # Never merge into a corrupt row
                _to_upgrade(record)
            return await _save(session, upgrade, record)
    except IntegrityError as exc:
        # Another writer may have inserted the same unique_id between our SELECT and INSERT
        await _raise_if_duplicate(session, upgrade.unique_id, exc)
        raise


async def delete_upgrade(session: AsyncSession, unique_id: str) -> bool:
    _require_unique_id(unique_id)
    async with _transaction(session):
        result = await session.execute(
            delete(ExperienceUpgradeRecord).where(ExperienceUpgradeRecord.unique_id == unique_id)
        )
    removed = bool(result.rowcount)
    if removed:
        logger.info("Removed experience upgrade %s", unique_id)
    return removed


# --- Extended persistence API ---


async def insert_upgrade(session: AsyncSession, upgrade: ExperienceUpgrade) -> int:
    _require_unique_id(upgrade.unique_id)
    try:
        async with _transaction(session):
            return await _save(session, upgrade, None)
    except IntegrityError as exc:
        await _raise_if_duplicate(session, upgrade.unique_id, exc)
        raise


async def update_upgrade(
    session: AsyncSession, upgrade: ExperienceUpgrade, block: UpgradeBlock
) -> Optional[ExperienceUpgrade]:
    """Apply ``block`` to ``upgrade`` and to an up-to-date stored copy, then save that copy.

    The local instance may be stale, so only the freshly locked copy is
    written. When nothing is stored for the unique id, nothing is written and
    None is returned; the local instance is still mutated.
    """
    _require_unique_id(upgrade.unique_id)
    block(upgrade)

    async with _transaction(session):
        record = await _select_record(session, upgrade.unique_id, for_update=True)
        if record is None:
            return None
        stored = _to_upgrade(record)
        block(stored)
        await _save(session, stored, record)

    upgrade.row_id = stored.row_id
    return stored


async def mutate_upgrade(session: AsyncSession, unique_id: str, block: UpgradeBlock) -> ExperienceUpgrade:
    """Load (or create) the upgrade under a row lock, apply ``block`` and persist it."""
    _require_unique_id(unique_id)
    async with _transaction(session):
        record = await _select_record(session, unique_id, for_update=True)
        upgrade = ExperienceUpgrade.create_new(unique_id) if record is None else _to_upgrade(record)
        block(upgrade)
        await _save(session, upgrade, record)
    return upgrade


async def record_viewed(session: AsyncSession, unique_id: str, now: Optional[float] = None) -> ExperienceUpgrade:
    return await mutate_upgrade(session, unique_id, lambda upgrade: upgrade.mark_viewed(now))


async def record_snoozed(session: AsyncSession, unique_id: str, now: Optional[float] = None) -> ExperienceUpgrade:
    return await mutate_upgrade(session, unique_id, lambda upgrade: upgrade.mark_snoozed(now))


async def record_completed(session: AsyncSession, unique_id: str) -> ExperienceUpgrade:
    return await mutate_upgrade(session, unique_id, lambda upgrade: upgrade.mark_complete())


async def reload_upgrade(session: AsyncSession, upgrade: ExperienceUpgrade, ignore_missing: bool = False) -> bool:
    latest = await get_upgrade(session, upgrade.unique_id)
    if latest is None:
        if not ignore_missing:
            logger.warning("Experience upgrade %s missing on reload", upgrade.unique_id)
        return False

    upgrade.adopt_stored(
        row_id=latest.row_id,
        first_viewed_timestamp=latest.first_viewed_timestamp,
        last_snoozed_timestamp=latest.last_snoozed_timestamp,
        is_complete=latest.is_complete,
    )
    return True


async def fetch_all_upgrades(session: AsyncSession) -> list[ExperienceUpgrade]:
    async with _transaction(session):
        stmt = (
            select(ExperienceUpgradeRecord)
            .order_by(ExperienceUpgradeRecord.id)
            .execution_options(populate_existing=True)
        )
        records = (await session.execute(stmt)).scalars().all()
        return [_to_upgrade(record) for record in records]


async def all_unique_ids(session: AsyncSession) -> list[str]:
    async with _transaction(session):
        stmt = select(ExperienceUpgradeRecord.unique_id).order_by(ExperienceUpgradeRecord.id)
        return list((await session.execute(stmt)).scalars().all())


async def count_upgrades(session: AsyncSession) -> int:
    async with _transaction(session):
        total = (await session.execute(select(func.count()).select_from(ExperienceUpgradeRecord))).scalar_one()
    return int(total)


async def upgrade_exists(session: AsyncSession, unique_id: str) -> bool:
    _require_unique_id(unique_id)
    async with _transaction(session):
        stmt = select(exists().where(ExperienceUpgradeRecord.unique_id == unique_id))
        return bool((await session.execute(stmt)).scalar())


async def remove_all_upgrades(session: AsyncSession) -> int:
    async with _transaction(session):
        result = await session.execute(delete(ExperienceUpgradeRecord))
    removed = result.rowcount or 0
    logger.info("Removed %d experience upgrades", removed)
    return removed


__all__ = [
    "UpgradeBlock",
    "get_upgrade",
    "put_upgrade",
    "delete_upgrade",
    "insert_upgrade",
    "update_upgrade",
    "mutate_upgrade",
    "record_viewed",
    "record_snoozed",
    "record_completed",
    "reload_upgrade",
    "fetch_all_upgrades",
    "all_unique_ids",
    "count_upgrades",
    "upgrade_exists",
    "remove_all_upgrades",
]
