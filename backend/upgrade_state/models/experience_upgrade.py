from __future__ import annotations

import math
import time
from dataclasses import dataclass, replace
from typing import Any, Optional

from upgrade_state.models.errors import CorruptRecordError, InvalidArgumentError
from upgrade_state.models.legacy_archive import decode_legacy_archive

MAX_ROW_ID = 2**63 - 1


def _valid_timestamp(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0


def _resolve_now(now: Optional[float]) -> float:
    if now is None:
        return time.time()
    if not _valid_timestamp(now):
        raise InvalidArgumentError(f"Timestamp must be a finite, non-negative number, got {now!r}")
    return float(now)


@dataclass
class ExperienceUpgrade:
    """Presentation state of one experience upgrade.

    Build instances through the factories (``create_new``, ``load_from_storage``,
    ``decode_legacy``) so each provenance gets its own validation. The mutators
    only touch memory; persisting is the store's job.
    """

    unique_id: str
    row_id: Optional[int] = None
    first_viewed_timestamp: float = 0.0
    last_snoozed_timestamp: float = 0.0
    is_complete: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.unique_id, str) or not self.unique_id:
            raise InvalidArgumentError("Experience upgrade unique_id must be a non-empty string")

    def __setattr__(self, name: str, value: Any) -> None:
        if name in ("first_viewed_timestamp", "last_snoozed_timestamp") and not _valid_timestamp(value):
            raise InvalidArgumentError(f"{name} must be a finite, non-negative number, got {value!r}")
        if name in self.__dict__:
            current = self.__dict__[name]
            if name == "unique_id":
                raise AttributeError("unique_id cannot be changed once set")
            if name == "first_viewed_timestamp" and current and value != current:
                raise AttributeError("first_viewed_timestamp cannot be changed once set")
            if name == "is_complete" and current and not value:
                raise AttributeError("A completed experience upgrade cannot be reopened")
        super().__setattr__(name, value)

    # --- Factories ---

    @classmethod
    def create_new(cls, unique_id: str) -> "ExperienceUpgrade":
        return cls(unique_id=unique_id)

    @classmethod
    def load_from_storage(
        cls,
        row_id: int,
        unique_id: str,
        first_viewed_timestamp: float,
        is_complete: bool,
        last_snoozed_timestamp: float,
    ) -> "ExperienceUpgrade":
        """Rehydrate a stored row. Anything that could not have come from a valid write is corrupt."""
        if isinstance(row_id, bool) or not isinstance(row_id, int) or not 0 < row_id <= MAX_ROW_ID:
            raise CorruptRecordError(f"Stored experience upgrade has invalid row id {row_id!r}")
        if not isinstance(unique_id, str) or not unique_id:
            raise CorruptRecordError("Stored experience upgrade has an empty unique_id", row_id=row_id)
        if not _valid_timestamp(first_viewed_timestamp):
            raise CorruptRecordError(
                f"Stored experience upgrade {unique_id!r} has invalid first_viewed_timestamp "
                f"{first_viewed_timestamp!r}",
                row_id=row_id,
            )
        if not _valid_timestamp(last_snoozed_timestamp):
            raise CorruptRecordError(
                f"Stored experience upgrade {unique_id!r} has invalid last_snoozed_timestamp "
                f"{last_snoozed_timestamp!r}",
                row_id=row_id,
            )
        if is_complete not in (True, False):
            raise CorruptRecordError(
                f"Stored experience upgrade {unique_id!r} has invalid is_complete {is_complete!r}",
                row_id=row_id,
            )

        return cls(
            unique_id=unique_id,
            row_id=row_id,
            first_viewed_timestamp=float(first_viewed_timestamp),
            last_snoozed_timestamp=float(last_snoozed_timestamp),
            is_complete=bool(is_complete),
        )

    @classmethod
    def decode_legacy(cls, archive: Any) -> "ExperienceUpgrade":
        # No row id survives decoding, callers re-persist to get one.
        fields = decode_legacy_archive(archive)
        return cls(
            unique_id=fields.unique_id,
            first_viewed_timestamp=fields.first_viewed_timestamp,
            last_snoozed_timestamp=fields.last_snoozed_timestamp,
            is_complete=fields.is_complete,
        )

    # --- Mutators ---

    def mark_viewed(self, now: Optional[float] = None) -> None:
        """Record the first presentation. Later calls keep the original timestamp."""
        timestamp = _resolve_now(now)
        if self.first_viewed_timestamp:
            return
        self.first_viewed_timestamp = timestamp

    def mark_snoozed(self, now: Optional[float] = None) -> None:
        self.last_snoozed_timestamp = _resolve_now(now)

    def mark_complete(self) -> None:
        self.is_complete = True

    def adopt_stored(
        self,
        row_id: int,
        first_viewed_timestamp: float,
        last_snoozed_timestamp: float,
        is_complete: bool,
    ) -> None:
        """Take on the persisted state of this upgrade after a save or reload.

        A stored first view is authoritative, even when it is earlier than the
        one held here. Completion is never undone.
        """
        self.row_id = row_id
        if first_viewed_timestamp and first_viewed_timestamp != self.first_viewed_timestamp:
            if not _valid_timestamp(first_viewed_timestamp):
                raise InvalidArgumentError(
                    f"first_viewed_timestamp must be a finite, non-negative number, got {first_viewed_timestamp!r}"
                )
            self.__dict__["first_viewed_timestamp"] = float(first_viewed_timestamp)
        self.last_snoozed_timestamp = last_snoozed_timestamp
        self.is_complete = self.is_complete or bool(is_complete)

    # --- Read helpers ---

    @property
    def has_been_viewed(self) -> bool:
        return self.first_viewed_timestamp > 0

    @property
    def has_been_snoozed(self) -> bool:
        return self.last_snoozed_timestamp > 0

    @property
    def is_persisted(self) -> bool:
        return self.row_id is not None

    def copy(self) -> "ExperienceUpgrade":
        return replace(self)


__all__ = ["ExperienceUpgrade", "MAX_ROW_ID"]
