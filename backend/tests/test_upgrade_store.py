import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from upgrade_state.models.errors import CorruptRecordError, DuplicateUpgradeError, InvalidArgumentError
from upgrade_state.models.experience_upgrade import ExperienceUpgrade
from upgrade_state.models.records import ExperienceUpgradeRecord, upgrade_to_record
from upgrade_state.services import upgrade_store
from upgrade_state.services.upgrade_store import (
    all_unique_ids,
    count_upgrades,
    delete_upgrade,
    fetch_all_upgrades,
    get_upgrade,
    insert_upgrade,
    mutate_upgrade,
    put_upgrade,
    record_completed,
    record_snoozed,
    record_viewed,
    reload_upgrade,
    remove_all_upgrades,
    update_upgrade,
    upgrade_exists,
)


@pytest.mark.asyncio
async def test_put_then_get_dark_mode(async_session: AsyncSession):
    upgrade = ExperienceUpgrade.create_new("darkMode")
    upgrade.mark_viewed(1000)
    upgrade.mark_snoozed(2000)

    row_id = await put_upgrade(async_session, upgrade)

    assert isinstance(row_id, int) and row_id > 0
    assert upgrade.row_id == row_id

    loaded = await get_upgrade(async_session, "darkMode")
    assert loaded is not None
    assert loaded.first_viewed_timestamp == 1000
    assert loaded.last_snoozed_timestamp == 2000
    assert loaded.is_complete is False
    assert loaded.row_id == row_id
    assert loaded == upgrade


@pytest.mark.asyncio
async def test_get_missing_returns_none(async_session: AsyncSession):
    assert await get_upgrade(async_session, "nope") is None


@pytest.mark.asyncio
async def test_get_rejects_empty_unique_id(async_session: AsyncSession):
    with pytest.raises(InvalidArgumentError):
        await get_upgrade(async_session, "")


@pytest.mark.asyncio
async def test_row_id_is_stable_across_puts(async_session: AsyncSession):
    upgrade = ExperienceUpgrade.create_new("pinReminder")
    first_id = await put_upgrade(async_session, upgrade)

    upgrade.mark_snoozed(50)
    second_id = await put_upgrade(async_session, upgrade)

    assert first_id == second_id
    assert await count_upgrades(async_session) == 1


@pytest.mark.asyncio
async def test_caller_row_id_is_never_written(async_session: AsyncSession):
    upgrade = ExperienceUpgrade.create_new("pinReminder")
    upgrade.row_id = 4242

    row_id = await put_upgrade(async_session, upgrade)

    assert row_id != 4242
    assert upgrade.row_id == row_id


@pytest.mark.asyncio
async def test_put_of_stale_copy_keeps_monotonic_fields(async_session: AsyncSession):
    fresh = ExperienceUpgrade.create_new("darkMode")
    stale = fresh.copy()

    fresh.mark_viewed(1000)
    fresh.mark_complete()
    await put_upgrade(async_session, fresh)

    stale.mark_snoozed(3000)
    await put_upgrade(async_session, stale)

    stored = await get_upgrade(async_session, "darkMode")
    assert stored.first_viewed_timestamp == 1000
    assert stored.is_complete is True
    assert stored.last_snoozed_timestamp == 3000
    # The stale instance now mirrors what was written
    assert stale == stored


@pytest.mark.asyncio
async def test_later_first_view_does_not_replace_stored_one(async_session: AsyncSession):
    early = ExperienceUpgrade.create_new("darkMode")
    early.mark_viewed(1000)
    await put_upgrade(async_session, early)

    late = ExperienceUpgrade.create_new("darkMode")
    late.mark_viewed(5000)
    await put_upgrade(async_session, late)

    stored = await get_upgrade(async_session, "darkMode")
    assert stored.first_viewed_timestamp == 1000
    assert late.first_viewed_timestamp == 1000


@pytest.mark.asyncio
async def test_insert_duplicate_raises(async_session: AsyncSession):
    await insert_upgrade(async_session, ExperienceUpgrade.create_new("darkMode"))

    with pytest.raises(DuplicateUpgradeError) as exc_info:
        await insert_upgrade(async_session, ExperienceUpgrade.create_new("darkMode"))

    assert exc_info.value.unique_id == "darkMode"
    assert await count_upgrades(async_session) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("save", [put_upgrade, insert_upgrade])
async def test_other_constraint_failures_are_not_duplicates(async_session: AsyncSession, monkeypatch, save):
    # SQLite stores NaN as NULL, which the NOT NULL column rejects
    def nan_record(upgrade: ExperienceUpgrade) -> ExperienceUpgradeRecord:
        record = upgrade_to_record(upgrade)
        record.last_snoozed_timestamp = float("nan")
        return record

    monkeypatch.setattr(upgrade_store, "upgrade_to_record", nan_record)

    with pytest.raises(IntegrityError):
        await save(async_session, ExperienceUpgrade.create_new("darkMode"))

    assert await upgrade_exists(async_session, "darkMode") is False


@pytest.mark.asyncio
async def test_invalid_timestamps_never_reach_storage(async_session: AsyncSession):
    upgrade = ExperienceUpgrade.create_new("darkMode")

    with pytest.raises(InvalidArgumentError):
        upgrade.mark_viewed(-1.0)
    with pytest.raises(InvalidArgumentError):
        await record_snoozed(async_session, "darkMode", now=float("nan"))

    await put_upgrade(async_session, upgrade)
    stored = await get_upgrade(async_session, "darkMode")
    assert stored.first_viewed_timestamp == 0
    assert stored.last_snoozed_timestamp == 0


@pytest.mark.asyncio
async def test_delete_removes_row(async_session: AsyncSession):
    await put_upgrade(async_session, ExperienceUpgrade.create_new("darkMode"))

    assert await delete_upgrade(async_session, "darkMode") is True
    assert await get_upgrade(async_session, "darkMode") is None
    assert await upgrade_exists(async_session, "darkMode") is False
    assert await delete_upgrade(async_session, "darkMode") is False


@pytest.mark.asyncio
async def test_reinsert_after_delete_gets_new_row(async_session: AsyncSession):
    first = ExperienceUpgrade.create_new("darkMode")
    await put_upgrade(async_session, first)
    await delete_upgrade(async_session, "darkMode")

    second = ExperienceUpgrade.create_new("darkMode")
    await put_upgrade(async_session, second)

    assert second.row_id is not None
    assert second.is_complete is False


@pytest.mark.asyncio
async def test_update_applies_block_to_stored_copy(async_session: AsyncSession):
    await put_upgrade(async_session, ExperienceUpgrade.create_new("darkMode"))
    await record_viewed(async_session, "darkMode", now=100)

    local = ExperienceUpgrade.create_new("darkMode")
    calls = []

    def block(upgrade: ExperienceUpgrade) -> None:
        calls.append(upgrade)
        upgrade.mark_snoozed(700)

    stored = await update_upgrade(async_session, local, block)

    assert len(calls) == 2
    assert calls[0] is local
    assert stored is calls[1]
    assert stored.first_viewed_timestamp == 100
    assert stored.last_snoozed_timestamp == 700
    assert local.last_snoozed_timestamp == 700
    assert local.first_viewed_timestamp == 0
    assert local.row_id == stored.row_id

    reloaded = await get_upgrade(async_session, "darkMode")
    assert reloaded == stored


@pytest.mark.asyncio
async def test_update_without_stored_copy_writes_nothing(async_session: AsyncSession):
    local = ExperienceUpgrade.create_new("ghost")

    result = await update_upgrade(async_session, local, lambda upgrade: upgrade.mark_complete())

    assert result is None
    assert local.is_complete is True
    assert await upgrade_exists(async_session, "ghost") is False


@pytest.mark.asyncio
async def test_mutate_creates_missing_upgrade(async_session: AsyncSession):
    upgrade = await mutate_upgrade(async_session, "newFeature", lambda u: u.mark_viewed(10))

    assert upgrade.row_id is not None
    assert upgrade.first_viewed_timestamp == 10
    assert (await get_upgrade(async_session, "newFeature")) == upgrade


@pytest.mark.asyncio
async def test_record_helpers_follow_field_rules(async_session: AsyncSession):
    await record_viewed(async_session, "darkMode", now=100)
    await record_viewed(async_session, "darkMode", now=200)
    await record_snoozed(async_session, "darkMode", now=300)
    await record_snoozed(async_session, "darkMode", now=400)
    completed = await record_completed(async_session, "darkMode")

    assert completed.first_viewed_timestamp == 100
    assert completed.last_snoozed_timestamp == 400
    assert completed.is_complete is True
    assert await count_upgrades(async_session) == 1


@pytest.mark.asyncio
async def test_completion_survives_every_later_write(async_session: AsyncSession):
    await record_completed(async_session, "darkMode")

    stale = ExperienceUpgrade.create_new("darkMode")
    await put_upgrade(async_session, stale)
    await update_upgrade(async_session, stale, lambda u: u.mark_snoozed(5))
    await record_snoozed(async_session, "darkMode", now=6)

    stored = await get_upgrade(async_session, "darkMode")
    assert stored.is_complete is True


@pytest.mark.asyncio
async def test_reload_refreshes_fields(async_session: AsyncSession):
    await record_viewed(async_session, "darkMode", now=100)
    await record_snoozed(async_session, "darkMode", now=200)

    local = ExperienceUpgrade.create_new("darkMode")
    assert await reload_upgrade(async_session, local) is True

    assert local.row_id is not None
    assert local.first_viewed_timestamp == 100
    assert local.last_snoozed_timestamp == 200


@pytest.mark.asyncio
async def test_reload_missing(async_session: AsyncSession, caplog):
    local = ExperienceUpgrade.create_new("ghost")

    with caplog.at_level("WARNING", logger="upgrade_state.services.upgrade_store"):
        assert await reload_upgrade(async_session, local) is False
    assert "ghost" in caplog.text

    caplog.clear()
    with caplog.at_level("WARNING", logger="upgrade_state.services.upgrade_store"):
        assert await reload_upgrade(async_session, local, ignore_missing=True) is False
    assert caplog.text == ""


@pytest.mark.asyncio
async def test_enumeration_helpers(async_session: AsyncSession):
    for unique_id in ("a", "b", "c"):
        await put_upgrade(async_session, ExperienceUpgrade.create_new(unique_id))

    assert await count_upgrades(async_session) == 3
    assert await all_unique_ids(async_session) == ["a", "b", "c"]
    assert [u.unique_id for u in await fetch_all_upgrades(async_session)] == ["a", "b", "c"]
    assert await upgrade_exists(async_session, "b") is True

    assert await remove_all_upgrades(async_session) == 3
    assert await count_upgrades(async_session) == 0
    assert await fetch_all_upgrades(async_session) == []


@pytest.mark.asyncio
async def test_corrupt_row_surfaces(async_session: AsyncSession):
    await put_upgrade(async_session, ExperienceUpgrade.create_new("darkMode"))
    async with async_session.begin():
        await async_session.execute(
            update(ExperienceUpgradeRecord)
            .where(ExperienceUpgradeRecord.unique_id == "darkMode")
            .values(unique_id="")
        )

    with pytest.raises(CorruptRecordError):
        await fetch_all_upgrades(async_session)


@pytest.mark.asyncio
async def test_unexpected_record_type_is_corrupt(async_session: AsyncSession):
    await put_upgrade(async_session, ExperienceUpgrade.create_new("darkMode"))
    async with async_session.begin():
        await async_session.execute(
            update(ExperienceUpgradeRecord)
            .where(ExperienceUpgradeRecord.unique_id == "darkMode")
            .values(record_type=99)
        )

    with pytest.raises(CorruptRecordError, match="record type"):
        await get_upgrade(async_session, "darkMode")


@pytest.mark.asyncio
async def test_put_does_not_overwrite_corrupt_row(async_session: AsyncSession):
    await put_upgrade(async_session, ExperienceUpgrade.create_new("darkMode"))
    async with async_session.begin():
        await async_session.execute(
            update(ExperienceUpgradeRecord)
            .where(ExperienceUpgradeRecord.unique_id == "darkMode")
            .values(record_type=99)
        )

    with pytest.raises(CorruptRecordError):
        await put_upgrade(async_session, ExperienceUpgrade.create_new("darkMode"))

    async with async_session.begin():
        record_type = (
            await async_session.execute(
                select(ExperienceUpgradeRecord.record_type).where(ExperienceUpgradeRecord.unique_id == "darkMode")
            )
        ).scalar_one()
    assert record_type == 99


@pytest.mark.asyncio
async def test_store_joins_caller_transaction(session_factory):
    async with session_factory() as session:
        await session.begin()
        await put_upgrade(session, ExperienceUpgrade.create_new("darkMode"))
        await record_viewed(session, "darkMode", now=42)
        assert await count_upgrades(session) == 1
        await session.rollback()

    async with session_factory() as session:
        assert await get_upgrade(session, "darkMode") is None


@pytest.mark.asyncio
async def test_writes_visible_to_other_sessions(session_factory):
    async with session_factory() as writer:
        await record_viewed(writer, "darkMode", now=1)

    async with session_factory() as reader:
        loaded = await get_upgrade(reader, "darkMode")

    assert loaded is not None
    assert loaded.first_viewed_timestamp == 1
