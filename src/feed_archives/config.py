import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_REGIONS = "DFW,ORD,IAD,LON,HKG,SYD"


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Parameters of a single archiving run."""

    # Empty means "all tenants".
    tenant_ids: frozenset[str] = field(default_factory=frozenset)
    regions: tuple[str, ...] = ()

    def includes(self, tenant_id: str) -> bool:
        return not self.tenant_ids or tenant_id in self.tenant_ids


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    service_name: str
    environment: str
    preferences_bucket: str
    identity_url: str
    caller_token_secret_name: str

    # --- Optional Variables with Defaults ---
    preferences_key: str
    error_report_bucket: str | None
    archive_regions: tuple[str, ...]
    tenant_ids: frozenset[str]
    max_workers: int
    identity_timeout_seconds: int
    impersonation_ttl_seconds: int
    log_level: str

    def run_config(
        self,
        tenant_ids: Iterable[str] | None = None,
        regions: Iterable[str] | None = None,
    ) -> RunConfig:
        """
        Builds the RunConfig for one cycle. Explicit arguments override the
        configured tenant filter and region list.
        """
        return RunConfig(
            tenant_ids=frozenset(tenant_ids) if tenant_ids is not None else self.tenant_ids,
            regions=tuple(regions) if regions is not None else self.archive_regions,
        )

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            service_name = os.environ["SERVICE_NAME"]
            environment = os.environ["ENVIRONMENT"]
            preferences_bucket = os.environ["PREFERENCES_BUCKET"]
            identity_url = os.environ["IDENTITY_URL"]
            caller_token_secret_name = os.environ["CALLER_TOKEN_SECRET_NAME"]

            preferences_key = os.getenv(
                "PREFERENCES_KEY", "preferences/preferences.jsonl"
            )
            error_report_bucket = os.getenv("ERROR_REPORT_BUCKET") or None

            # --- Handle list variables ---
            archive_regions = tuple(
                _split_csv(os.getenv("ARCHIVE_REGIONS", DEFAULT_ARCHIVE_REGIONS))
            )
            if not archive_regions:
                raise ValueError("ARCHIVE_REGIONS must name at least one region.")

            tenant_ids = frozenset(_split_csv(os.getenv("TENANT_IDS", "")))

            # --- Handle optional and numeric variables with validation ---
            max_workers = int(os.getenv("MAX_WORKERS", "16"))
            if max_workers <= 0:
                raise ValueError("MAX_WORKERS must be a positive integer.")

            identity_timeout_seconds = int(
                os.getenv("IDENTITY_TIMEOUT_SECONDS", "10")
            )
            if identity_timeout_seconds <= 0:
                raise ValueError(
                    "IDENTITY_TIMEOUT_SECONDS must be a positive integer."
                )

            impersonation_ttl_seconds = int(
                os.getenv("IMPERSONATION_TTL_SECONDS", "10800")
            )
            if impersonation_ttl_seconds <= 0:
                raise ValueError(
                    "IMPERSONATION_TTL_SECONDS must be a positive integer."
                )

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            allowed_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            if log_level not in allowed_log_levels:
                raise ValueError(
                    f"LOG_LEVEL must be one of {allowed_log_levels}, not '{log_level}'"
                )

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            service_name=service_name,
            environment=environment,
            preferences_bucket=preferences_bucket,
            identity_url=identity_url,
            caller_token_secret_name=caller_token_secret_name,
            preferences_key=preferences_key,
            error_report_bucket=error_report_bucket,
            archive_regions=archive_regions,
            tenant_ids=tenant_ids,
            max_workers=max_workers,
            identity_timeout_seconds=identity_timeout_seconds,
            impersonation_ttl_seconds=impersonation_ttl_seconds,
            log_level=log_level,
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()
