"""
The Lambda Adapter & Orchestrator for the Feed Archives resolver.

This module is the entry point invoked by the daily archiving schedule. It is
responsible for:
1.  Initializing AWS Lambda Powertools (Logger, Tracer, Metrics).
2.  Loading configuration and applying per-run overrides from the event.
3.  Reading the preferences export from S3.
4.  Fetching the archiving job's caller token from Secrets Manager.
5.  Invoking the core resolution logic (`run_archive_cycle`).
6.  Reporting per-tenant failures through logs, metrics and an optional
    S3 error report, without failing the whole run.
"""

from datetime import datetime, timezone
from typing import Any

import boto3
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities import parameters
from aws_lambda_powertools.utilities.typing import LambdaContext

from .clients import IdentityClient, S3Client
from .config import AppConfig, RunConfig, get_config
from .core import ArchiveCycleResult, run_archive_cycle
from .exceptions import ConfigurationError, FeedArchivesError, get_error_context
from .preferences import load_preference_rows

# --- Global & Reusable Components ---
logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace="FeedArchives")


def _string_list(event: dict[str, Any], key: str) -> list[str] | None:
    value = event.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(
        isinstance(item, str) and item.strip() for item in value
    ):
        raise ConfigurationError(
            f"'{key}' must be a list of non-empty strings",
            context={"key": key, "value": repr(value)[:256]},
        )
    return [item.strip() for item in value]


def _run_config_from_event(event: dict[str, Any], config: AppConfig) -> RunConfig:
    """Event keys `tenant_ids` and `regions` override the configured defaults."""
    tenant_ids = _string_list(event, "tenant_ids")
    regions = _string_list(event, "regions")
    if regions is not None and not regions:
        raise ConfigurationError("'regions' must name at least one region")
    return config.run_config(tenant_ids=tenant_ids, regions=regions)


@tracer.capture_method
def _load_caller_token(config: AppConfig) -> str:
    return str(parameters.get_secret(config.caller_token_secret_name, max_age=300))


def _report_errors(
    result: ArchiveCycleResult,
    s3_client: S3Client,
    config: AppConfig,
    context: LambdaContext,
) -> str | None:
    """Logs each tenant failure and writes the error report, if configured."""
    for error in result.errors:
        logger.warning("Tenant could not be resolved.", extra={"tenant_error": error.to_dict()})

    if not result.errors or not config.error_report_bucket:
        return None

    now = datetime.now(timezone.utc)
    report_key = f"error-reports/{now.strftime('%Y/%m/%d')}/{context.aws_request_id}.json"
    s3_client.put_json(
        config.error_report_bucket,
        report_key,
        {
            "generated_at": now.isoformat(),
            "environment": config.environment,
            "errors": [error.to_dict() for error in result.errors],
        },
    )
    return report_key


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def handler(event: dict, context: LambdaContext) -> dict[str, Any]:
    """Main Lambda handler for scheduled and manual archiving runs."""
    config = get_config()
    logger.setLevel(config.log_level)
    metrics.add_dimension("environment", config.environment)

    s3_client = S3Client(s3_client=boto3.client("s3"))
    try:
        run_config = _run_config_from_event(event or {}, config)
        logger.info(
            "Starting archive resolution",
            extra={
                "regions": list(run_config.regions),
                "tenant_filter": sorted(run_config.tenant_ids),
                "request_id": context.aws_request_id,
            },
        )
        rows = load_preference_rows(
            s3_client, config.preferences_bucket, config.preferences_key
        )
        caller_token = _load_caller_token(config)
        identity = IdentityClient(
            base_url=config.identity_url,
            service_token=caller_token,
            timeout_seconds=config.identity_timeout_seconds,
            token_ttl_seconds=config.impersonation_ttl_seconds,
        )
        result = run_archive_cycle(
            rows, run_config, caller_token, identity, max_workers=config.max_workers
        )
    except FeedArchivesError as e:
        metrics.add_metric(name="FailedRuns", unit=MetricUnit.Count, value=1)
        logger.error(f"Archive resolution failed: {e}", extra={"error": get_error_context(e)})
        raise

    metrics.add_metric(
        name="ResolvedTenants", unit=MetricUnit.Count, value=len(result.preferences)
    )
    metrics.add_metric(
        name="ImpersonatedTenants", unit=MetricUnit.Count, value=len(result.tokens)
    )
    metrics.add_metric(
        name="ReadyTenants", unit=MetricUnit.Count, value=len(result.ready_tenants)
    )
    metrics.add_metric(
        name="TenantErrors", unit=MetricUnit.Count, value=len(result.errors)
    )

    report_key = _report_errors(result, s3_client, config, context)

    summary = result.summary()
    summary["error_report_key"] = report_key
    logger.info(
        "Archive resolution completed",
        extra={
            "resolved_tenants": summary["resolved_tenants"],
            "impersonated_tenants": summary["impersonated_tenants"],
            "failed_tenants": summary["failed_tenants"],
        },
    )
    return summary
