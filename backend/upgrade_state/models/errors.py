from typing import Optional


class ExperienceUpgradeError(Exception):
    """Base class for experience upgrade failures."""


class InvalidArgumentError(ExperienceUpgradeError, ValueError):
    """Raised when a caller supplies an unusable identifier."""


class CorruptRecordError(ExperienceUpgradeError):
    """Raised when a stored row violates an experience upgrade invariant."""

    def __init__(self, message: str, row_id: Optional[int] = None):
        super().__init__(message)
        self.row_id = row_id


class LegacyDecodeError(ExperienceUpgradeError, ValueError):
    """Raised when a legacy archive cannot be turned into an experience upgrade."""


class DuplicateUpgradeError(ExperienceUpgradeError):
    def __init__(self, unique_id: str):
        super().__init__(f"Experience upgrade {unique_id!r} already exists")
        self.unique_id = unique_id


__all__ = [
    "ExperienceUpgradeError",
    "InvalidArgumentError",
    "CorruptRecordError",
    "LegacyDecodeError",
    "DuplicateUpgradeError",
]
