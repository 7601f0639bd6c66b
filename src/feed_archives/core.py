# src/feed_archives/core.py

"""
Core orchestration of one archiving cycle.

`run_archive_cycle` takes the raw preference rows and produces everything the
downstream archiving stages need: where each tenant's archives go, which
credential to write them with, and which tenants could not be resolved.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from .clients import IdentityService
from .config import RunConfig
from .exceptions import IdentityServiceUnavailableError
from .impersonation import DEFAULT_MAX_WORKERS, resolve_tokens
from .preferences import resolve_preferences
from .schemas import PreferenceRecord, TenantError, TenantPreferences

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveCycleResult:
    """Resolved destinations and credentials for one archiving cycle."""

    preferences: dict[str, TenantPreferences]
    tokens: dict[str, str]
    errors: list[TenantError] = field(default_factory=list)

    @property
    def ready_tenants(self) -> list[str]:
        """Tenants with both preferences and a token, in a stable order."""
        return sorted(tid for tid in self.preferences if tid in self.tokens)

    def summary(self) -> dict[str, Any]:
        """A report of the cycle that is safe to log or return; tokens are omitted."""
        return {
            "resolved_tenants": len(self.preferences),
            "impersonated_tenants": len(self.tokens),
            "failed_tenants": len(self.errors),
            "ready_tenants": self.ready_tenants,
            "containers": {
                tid: dict(prefs.containers)
                for tid, prefs in sorted(self.preferences.items())
            },
            "errors": [error.to_dict() for error in self.errors],
        }


def run_archive_cycle(
    rows: Iterable[PreferenceRecord],
    run_config: RunConfig,
    caller_token: str,
    identity: IdentityService,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> ArchiveCycleResult:
    """
    Resolves preferences, then impersonation tokens for every resolved tenant.

    Per-tenant failures from either phase are collected in the result's
    `errors`. The cycle itself only fails on infrastructure faults.

    Raises:
        IdentityServiceUnavailableError: If there were tenants to impersonate
            and every attempt failed because the identity service was
            unreachable.
    """
    preferences, parse_errors = resolve_preferences(rows, run_config)
    tokens, token_errors = resolve_tokens(
        caller_token, preferences.values(), identity, max_workers=max_workers
    )

    if preferences and not tokens and token_errors and all(
        isinstance(error.cause.__cause__, IdentityServiceUnavailableError)
        for error in token_errors
    ):
        raise IdentityServiceUnavailableError(
            "resolve_tokens",
            f"all {len(token_errors)} tenant attempts failed",
            context={"tenants": len(preferences)},
        )

    logger.info(
        "Archive cycle resolved",
        extra={
            "regions": list(run_config.regions),
            "resolved_tenants": len(preferences),
            "impersonated_tenants": len(tokens),
            "parse_errors": len(parse_errors),
            "token_errors": len(token_errors),
        },
    )
    return ArchiveCycleResult(
        preferences=preferences,
        tokens=tokens,
        errors=[*parse_errors, *token_errors],
    )
