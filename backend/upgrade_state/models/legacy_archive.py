from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from upgrade_state.models.errors import LegacyDecodeError


class LegacyArchive(BaseModel):
    """Fields of an experience upgrade as written by the old file-backed store.

    Only ``uniqueId`` is required. The legacy row id (``grdbId``/``id``) is
    dropped: rows must be re-persisted to get a new one.
    """

    unique_id: str = Field(alias="uniqueId", min_length=1)
    first_viewed_timestamp: float = Field(default=0.0, alias="firstViewedTimestamp", ge=0, allow_inf_nan=False)
    last_snoozed_timestamp: float = Field(default=0.0, alias="lastSnoozedTimestamp", ge=0, allow_inf_nan=False)
    is_complete: bool = Field(default=False, alias="isComplete")

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    @field_validator("first_viewed_timestamp", "last_snoozed_timestamp", "is_complete", mode="before")
    def _unset_to_default(cls, v: Any) -> Any:
        # Old archives wrote null for fields that were never set
        if v is None:
            return 0
        return v


def _describe(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())) or "archive"
        problems.append(f"{field}: {err.get('msg')}")
    return "; ".join(problems)


def decode_legacy_archive(payload: Any) -> LegacyArchive:
    """Decode one legacy archive from JSON bytes/str or an already parsed mapping."""
    try:
        if isinstance(payload, (bytes, bytearray, str)):
            return LegacyArchive.model_validate_json(payload)
        if isinstance(payload, Mapping):
            return LegacyArchive.model_validate(dict(payload))
    except ValidationError as exc:
        raise LegacyDecodeError(f"Invalid legacy experience upgrade archive ({_describe(exc)})") from exc

    raise LegacyDecodeError(f"Unsupported legacy archive payload: {type(payload).__name__}")


__all__ = ["LegacyArchive", "decode_legacy_archive"]
