# In src/feed_archives/schemas.py

from dataclasses import dataclass
from datetime import datetime
from typing import Any, NamedTuple, Sequence, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import InvalidRowError, MalformedPayloadError, get_error_context

# --- Column order of the preferences table ---
PREFERENCE_COLUMNS = ("id", "payload", "alternate_id", "created", "updated", "enabled")


# --- Runtime Validation (using Pydantic) ---


class PreferencePayload(BaseModel):
    """
    Typed view of a tenant's preferences payload.

    Only the fields relevant to archiving are modelled; anything else stored
    in the payload is ignored.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    data_format: list[str] = Field(..., min_length=1)
    default_archive_container_url: str | None = None
    archive_container_urls: dict[str, str | None] | None = None


class PreferenceRow(BaseModel):
    """
    One row of the preferences table, as produced by the query store.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tenant_id: str = Field(..., min_length=1, alias="id")
    payload: str
    alternate_id: str = ""
    created: datetime | None = None
    updated: datetime | None = None
    enabled: bool

    @field_validator("alternate_id", mode="before")
    @classmethod
    def null_alternate_id_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @classmethod
    def from_query_row(cls, row: Sequence[Any]) -> "PreferenceRow":
        """Builds a row from a positional tuple in PREFERENCE_COLUMNS order."""
        if len(row) != len(PREFERENCE_COLUMNS):
            raise ValueError(
                f"Expected {len(PREFERENCE_COLUMNS)} columns, got {len(row)}"
            )
        return cls.model_validate(dict(zip(PREFERENCE_COLUMNS, row)))


class TenantPreferences(BaseModel):
    """Resolved archiving preferences for one enabled tenant."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    alternate_id: str = ""
    containers: dict[str, str]
    formats: list[str] = Field(..., min_length=1)


def validation_error_details(error: pydantic.ValidationError) -> list[dict[str, Any]]:
    """Trims a ValidationError down to JSON-safe location/type/message entries."""
    return [
        {"loc": list(err["loc"]), "type": err["type"], "msg": err["msg"]}
        for err in error.errors()
    ]


def parse_payload(text: str | bytes, tenant_id: str = "unknown") -> PreferencePayload:
    """
    Parses a raw preferences payload into a PreferencePayload.

    Raises:
        MalformedPayloadError: If the text is not JSON, or `data_format` is
            missing, not a list of strings, or empty.
    """
    try:
        return PreferencePayload.model_validate_json(text)
    except pydantic.ValidationError as e:
        raise MalformedPayloadError(
            tenant_id,
            f"{e.error_count()} validation error(s)",
            context={"validation_errors": validation_error_details(e)},
        ) from e


# --- Structured per-tenant results ---


@dataclass(frozen=True)
class TenantError:
    """A per-tenant failure, as handed to reporting and alerting."""

    tenant_id: str
    step: str
    cause: BaseException

    @classmethod
    def from_exception(cls, error: Any) -> "TenantError":
        return cls(tenant_id=error.tenant_id, step=error.step, cause=error)

    def to_dict(self) -> dict[str, Any]:
        details = get_error_context(self.cause)
        root = self.cause.__cause__
        if root is not None:
            details["cause"] = get_error_context(root)
        return {"tenant_id": self.tenant_id, "step": self.step, **details}


@dataclass(frozen=True)
class ImpersonationSuccess:
    tenant_id: str
    token: str


@dataclass(frozen=True)
class ImpersonationFailure:
    tenant_id: str
    error: TenantError


ImpersonationOutcome = Union[ImpersonationSuccess, ImpersonationFailure]


@dataclass(frozen=True)
class RejectedRow:
    """
    A row of the export that names a tenant but failed validation.

    `enabled` is the row's flag when it could still be read as a boolean.
    """

    tenant_id: str
    enabled: bool | None
    error: InvalidRowError


PreferenceRecord = Union[PreferenceRow, RejectedRow]


class PreferenceResolution(NamedTuple):
    tenants: dict[str, TenantPreferences]
    errors: list[TenantError]


class TokenResolution(NamedTuple):
    tokens: dict[str, str]
    errors: list[TenantError]
