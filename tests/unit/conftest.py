"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import json
import os
import types
import uuid

import pytest

# Powertools reads these when src.feed_archives.app is imported at collection time.
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "feed-archives-test")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

from src.feed_archives.config import RunConfig  # noqa: E402
from src.feed_archives.schemas import PreferenceRow, TenantPreferences  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _env_vars():
    """
    Ensures a deterministic environment for every test run.
    Overwrite *only* the variables needed by the handler.
    """
    original = os.environ.copy()
    os.environ.setdefault("POWERTOOLS_LOG_LEVEL", "INFO")
    os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "FeedArchivesTest")
    yield
    os.environ.clear()
    os.environ.update(original)


# ---------- Minimal, realistic preference data ---------- #
def _make_payload(
    formats=("JSON",),
    default: str | None = None,
    urls: dict | None = None,
    **extra,
) -> str:
    """Serializes a preferences payload the way the preferences service stores it."""
    body: dict = {"enabled": True, "data_format": list(formats), **extra}
    if default is not None:
        body["default_archive_container_url"] = default
    if urls is not None:
        body["archive_container_urls"] = urls
    return json.dumps(body)


def _make_row(tenant_id: str, payload: str | None = None, enabled: bool = True,
             alternate_id: str = "") -> PreferenceRow:
    return PreferenceRow(
        id=tenant_id,
        payload=payload if payload is not None else _make_payload(default="https://storage/default"),
        alternate_id=alternate_id,
        created="2015-03-01T10:00:00Z",
        updated="2015-03-02T10:00:00Z",
        enabled=enabled,
    )


def _make_tenant(tenant_id: str) -> TenantPreferences:
    return TenantPreferences(
        tenant_id=tenant_id,
        alternate_id="",
        containers={"DFW": f"https://storage/{tenant_id}"},
        formats=["JSON"],
    )


@pytest.fixture
def run_config() -> RunConfig:
    return RunConfig(tenant_ids=frozenset(), regions=("DFW", "ORD"))


@pytest.fixture
def lambda_context():
    """A *very* small stand-in for the LambdaContext object."""
    return types.SimpleNamespace(
        function_name="feed-archives-resolver",
        function_version="$LATEST",
        memory_limit_in_mb=256,
        aws_request_id="req-" + uuid.uuid4().hex,
        invoked_function_arn="arn:aws:lambda:us-east-1:000000000000:function:feed-archives-resolver",
        log_group_name="/aws/lambda/feed-archives-resolver",
        log_stream_name="2015/03/02/[$LATEST]abc",
        get_remaining_time_in_millis=lambda: 30000,
    )


@pytest.fixture
def make_payload():
    return _make_payload


@pytest.fixture
def make_row():
    return _make_row


@pytest.fixture
def make_tenant():
    return _make_tenant
