# src/feed_archives/impersonation.py

"""
Resolves an impersonation token for every tenant of an archiving run.

Each tenant is handled by an independent task: look up the tenant's admin
principal, then ask the identity service for a token acting as that
principal. A task never raises; it returns an ImpersonationSuccess or an
ImpersonationFailure, and the aggregator sorts those into a token map and an
error list. Every input tenant lands in exactly one of the two.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable

from .clients import IdentityService
from .exceptions import IdentityLookupError, ImpersonationError, TenantProcessingError
from .schemas import (
    ImpersonationFailure,
    ImpersonationOutcome,
    ImpersonationSuccess,
    TenantError,
    TenantPreferences,
    TokenResolution,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 16


def _describe(error: Exception) -> str:
    return getattr(error, "message", None) or str(error) or type(error).__name__


def _failure(error: TenantProcessingError, cause: Exception) -> ImpersonationFailure:
    error.__cause__ = cause
    return ImpersonationFailure(tenant_id=error.tenant_id, error=TenantError.from_exception(error))


def impersonate_tenant(
    tenant_id: str, caller_token: str, identity: IdentityService
) -> ImpersonationOutcome:
    """Runs both identity calls for one tenant and captures the outcome."""
    try:
        principal = identity.get_tenant_admin(tenant_id)
    except Exception as e:
        return _failure(IdentityLookupError(tenant_id, _describe(e)), e)

    try:
        token = identity.impersonate(principal, caller_token)
    except Exception as e:
        return _failure(
            ImpersonationError(tenant_id, _describe(e), context={"principal": principal}),
            e,
        )

    return ImpersonationSuccess(tenant_id=tenant_id, token=token)


def partition_outcomes(outcomes: Iterable[ImpersonationOutcome]) -> TokenResolution:
    """Sorts outcomes into the tenant id -> token map and the error list."""
    tokens: dict[str, str] = {}
    errors: list[TenantError] = []
    for outcome in outcomes:
        if isinstance(outcome, ImpersonationSuccess):
            tokens[outcome.tenant_id] = outcome.token
        else:
            errors.append(outcome.error)
    return TokenResolution(tokens=tokens, errors=errors)


def resolve_tokens(
    caller_token: str,
    tenants: Iterable[TenantPreferences],
    identity: IdentityService,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> TokenResolution:
    """
    Creates the tenant id -> impersonation token map for the given tenants.

    Identity calls run concurrently on a pool of at most `max_workers`
    threads. Tenants that fail are returned in the error list; nothing is
    retried here.

    Args:
        caller_token: Token of the archiving job, used to authorize each
            impersonation.
        tenants: Resolved tenant preferences. Repeated tenant ids are
            impersonated once.
        identity: The identity service.
        max_workers: Upper bound on concurrent identity calls.

    Returns:
        (tokens, errors), with `len(tokens) + len(errors)` equal to the number
        of distinct input tenants.
    """
    tenant_ids = list(dict.fromkeys(t.tenant_id for t in tenants))
    if not tenant_ids:
        return TokenResolution(tokens={}, errors=[])

    outcomes: list[ImpersonationOutcome] = []
    executor = ThreadPoolExecutor(
        max_workers=min(max_workers, len(tenant_ids)),
        thread_name_prefix="impersonation",
    )
    try:
        futures = [
            executor.submit(impersonate_tenant, tenant_id, caller_token, identity)
            for tenant_id in tenant_ids
        ]
        for future in as_completed(futures):
            outcomes.append(future.result())
    except BaseException:
        # Abandon in-flight work; the caller decides whether to rerun the batch.
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)

    resolution = partition_outcomes(outcomes)
    logger.info(
        "Resolved impersonation tokens",
        extra={
            "tenants": len(tenant_ids),
            "succeeded": len(resolution.tokens),
            "failed": len(resolution.errors),
        },
    )
    return resolution
