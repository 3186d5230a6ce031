from .errors import (
    CorruptRecordError,
    DuplicateUpgradeError,
    ExperienceUpgradeError,
    InvalidArgumentError,
    LegacyDecodeError,
)
from .experience_upgrade import ExperienceUpgrade
from .legacy_archive import LegacyArchive, decode_legacy_archive
from .records import ExperienceUpgradeRecord
