# src/feed_archives/preferences.py

"""
Builds per-tenant archiving preferences from rows of the preferences table.

For every row that passes the run's tenant filter and is enabled, the payload
is parsed, the archive formats are read in order, and the destination
container of each requested region is resolved. A tenant whose payload cannot
be parsed is reported as a TenantError; the rest of the batch carries on.
The same holds for an export row whose columns are invalid: as long as it
names a tenant, only that tenant fails.
"""

import json
import logging
from contextlib import closing
from typing import Any, Iterable, Iterator

import pydantic

from .clients import S3Client
from .config import RunConfig
from .containers import resolve_containers
from .exceptions import InvalidRowError, MalformedPayloadError, PreferenceSourceError
from .schemas import (
    PREFERENCE_COLUMNS,
    PreferenceRecord,
    PreferenceResolution,
    PreferenceRow,
    RejectedRow,
    TenantError,
    TenantPreferences,
    parse_payload,
    validation_error_details,
)

logger = logging.getLogger(__name__)

_ENABLED_COLUMN = PREFERENCE_COLUMNS.index("enabled")


def build_tenant_preferences(row: PreferenceRow, regions: Iterable[str]) -> TenantPreferences:
    """
    Resolves one enabled tenant's preferences.

    Raises:
        MalformedPayloadError: If the row's payload cannot be parsed.
    """
    payload = parse_payload(row.payload, tenant_id=row.tenant_id)
    containers = resolve_containers(
        regions,
        payload.default_archive_container_url,
        payload.archive_container_urls,
    )
    return TenantPreferences(
        tenant_id=row.tenant_id,
        alternate_id=row.alternate_id,
        containers=containers,
        formats=list(payload.data_format),
    )


def resolve_preferences(
    rows: Iterable[PreferenceRecord], run_config: RunConfig
) -> PreferenceResolution:
    """
    Creates the tenant id -> TenantPreferences map for one archiving run.

    Rows outside `run_config.tenant_ids` (when it is non-empty) and disabled
    rows produce nothing. Rejected rows and payload failures are returned
    alongside the resolved tenants instead of being raised.
    """
    tenants: dict[str, TenantPreferences] = {}
    errors: list[TenantError] = []
    seen: set[str] = set()
    skipped_disabled = 0

    for row in rows:
        if not run_config.includes(row.tenant_id):
            continue
        if row.tenant_id in seen:
            logger.warning(
                "Duplicate preferences row ignored.",
                extra={"tenant_id": row.tenant_id},
            )
            continue
        seen.add(row.tenant_id)

        if row.enabled is False:
            skipped_disabled += 1
            continue
        if isinstance(row, RejectedRow):
            errors.append(TenantError.from_exception(row.error))
            continue

        try:
            prefs = build_tenant_preferences(row, run_config.regions)
        except MalformedPayloadError as e:
            logger.warning(
                "Skipping tenant with malformed preferences.",
                extra={"tenant_id": row.tenant_id, "error": e.message},
            )
            errors.append(TenantError.from_exception(e))
            continue

        if not prefs.containers:
            # Valid record, but nothing will be archived for this tenant.
            logger.warning(
                "Tenant has no archive container for any requested region.",
                extra={"tenant_id": row.tenant_id, "regions": list(run_config.regions)},
            )
        tenants[row.tenant_id] = prefs

    logger.info(
        "Resolved tenant preferences",
        extra={
            "resolved": len(tenants),
            "disabled": skipped_disabled,
            "failed": len(errors),
        },
    )
    return PreferenceResolution(tenants=tenants, errors=errors)


def _recover_identity(raw: Any) -> tuple[Any, bool | None]:
    """Best-effort (tenant id, enabled flag) of a row that failed validation."""
    if isinstance(raw, dict):
        tenant_id, enabled = raw.get("id"), raw.get("enabled")
    elif isinstance(raw, list) and raw:
        tenant_id = raw[0]
        enabled = raw[_ENABLED_COLUMN] if len(raw) == len(PREFERENCE_COLUMNS) else None
    else:
        return None, None
    return tenant_id, enabled if isinstance(enabled, bool) else None


def _reject_row(raw: Any, line_number: int, error: ValueError) -> RejectedRow:
    tenant_id, enabled = _recover_identity(raw)
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise PreferenceSourceError(
            f"Invalid preferences row on line {line_number}",
            context={"line_number": line_number, "reason": str(error)[:512]},
        ) from error

    if isinstance(error, pydantic.ValidationError):
        reason = f"{error.error_count()} validation error(s)"
        details = validation_error_details(error)
    else:
        reason = str(error)
        details = []
    rejection = InvalidRowError(
        tenant_id,
        reason,
        context={"line_number": line_number, "validation_errors": details},
    )
    rejection.__cause__ = error
    logger.warning(
        "Preferences row failed validation.",
        extra={"tenant_id": tenant_id, "line_number": line_number},
    )
    return RejectedRow(tenant_id=tenant_id, enabled=enabled, error=rejection)


def iter_preference_rows(lines: Iterable[str | bytes]) -> Iterator[PreferenceRecord]:
    """
    Parses a JSON Lines export of the preferences table.

    Each line is either an object keyed by column name or an array in
    column order. Blank lines are skipped. A line that names a tenant but
    whose columns do not validate is yielded as a RejectedRow, so the
    failure stays scoped to that tenant.

    Raises:
        PreferenceSourceError: If a line is not UTF-8 JSON, or no tenant id
            can be read from it.
    """
    for line_number, line in enumerate(lines, start=1):
        try:
            if isinstance(line, bytes):
                line = line.decode("utf-8")
            if not line.strip():
                continue
            raw = json.loads(line)
        except ValueError as e:
            raise PreferenceSourceError(
                f"Unreadable preferences line {line_number}",
                context={"line_number": line_number, "reason": str(e)[:512]},
            ) from e

        try:
            if isinstance(raw, list):
                row = PreferenceRow.from_query_row(raw)
            else:
                row = PreferenceRow.model_validate(raw)
        except ValueError as e:
            yield _reject_row(raw, line_number, e)
            continue
        yield row


def load_preference_rows(s3_client: S3Client, bucket: str, key: str) -> list[PreferenceRecord]:
    """Reads every row of the preferences export stored at s3://bucket/key."""
    stream = s3_client.get_file_content_stream(bucket, key)
    with closing(stream):
        rows = list(iter_preference_rows(stream.iter_lines()))
    logger.info(
        "Loaded preferences export",
        extra={
            "bucket": bucket,
            "key": key,
            "rows": len(rows),
            "rejected": sum(isinstance(row, RejectedRow) for row in rows),
        },
    )
    return rows
