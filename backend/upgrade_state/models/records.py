from sqlalchemy import BigInteger, Boolean, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from upgrade_state.core.db import Base
from upgrade_state.models.errors import CorruptRecordError
from upgrade_state.models.experience_upgrade import ExperienceUpgrade

EXPERIENCE_UPGRADE_RECORD_TYPE = 1


class ExperienceUpgradeRecord(Base):
    __tablename__ = "model_ExperienceUpgrade"

    # SQLite only autoincrements a plain INTEGER primary key
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    record_type: Mapped[int] = mapped_column(Integer, nullable=False, default=EXPERIENCE_UPGRADE_RECORD_TYPE)
    unique_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)

    first_viewed_timestamp: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_snoozed_timestamp: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


def record_to_upgrade(record: ExperienceUpgradeRecord) -> ExperienceUpgrade:
    if record.record_type != EXPERIENCE_UPGRADE_RECORD_TYPE:
        raise CorruptRecordError(f"Unexpected record type: {record.record_type!r}", row_id=record.id)

    return ExperienceUpgrade.load_from_storage(
        row_id=record.id,
        unique_id=record.unique_id,
        first_viewed_timestamp=record.first_viewed_timestamp,
        is_complete=record.is_complete,
        last_snoozed_timestamp=record.last_snoozed_timestamp,
    )


def upgrade_to_record(upgrade: ExperienceUpgrade) -> ExperienceUpgradeRecord:
    # id is left to the database, a caller-held row_id is never written
    return ExperienceUpgradeRecord(
        record_type=EXPERIENCE_UPGRADE_RECORD_TYPE,
        unique_id=upgrade.unique_id,
        first_viewed_timestamp=upgrade.first_viewed_timestamp,
        is_complete=upgrade.is_complete,
        last_snoozed_timestamp=upgrade.last_snoozed_timestamp,
    )


__all__ = [
    "EXPERIENCE_UPGRADE_RECORD_TYPE",
    "ExperienceUpgradeRecord",
    "record_to_upgrade",
    "upgrade_to_record",
]
