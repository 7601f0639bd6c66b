# tests/unit/test_app.py

"""
Unit tests for the Lambda entry point. Collaborators (S3, Secrets Manager and
the identity service) are patched out; the resolution logic runs for real.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from aws_lambda_powertools.metrics import MetricUnit

from src.feed_archives import app
from src.feed_archives.config import get_config
from src.feed_archives.exceptions import ConfigurationError, PreferenceSourceError


@pytest.fixture(autouse=True)
def app_env(monkeypatch):
    monkeypatch.setenv("SERVICE_NAME", "feed-archives")
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("PREFERENCES_BUCKET", "prefs-bucket")
    monkeypatch.setenv("PREFERENCES_KEY", "preferences.jsonl")
    monkeypatch.setenv("IDENTITY_URL", "https://identity.example.com")
    monkeypatch.setenv("CALLER_TOKEN_SECRET_NAME", "feed-archives/caller-token")
    monkeypatch.setenv("ERROR_REPORT_BUCKET", "report-bucket")
    monkeypatch.setenv("ARCHIVE_REGIONS", "DFW,ORD")
    monkeypatch.delenv("TENANT_IDS", raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def rows(make_row, make_payload):
    return [
        make_row("1", payload=make_payload(default="C1")),
        make_row("2", payload="not json"),
        make_row("3", payload=make_payload(urls={"ORD": "C3"})),
    ]


@pytest.fixture
def identity() -> MagicMock:
    identity = MagicMock()
    identity.get_tenant_admin.side_effect = lambda tenant_id: f"admin-{tenant_id}"
    identity.impersonate.side_effect = lambda principal, token: f"tok-{principal}"
    return identity


@pytest.fixture
def patched(rows, identity):
    """Patches every external collaborator of the handler."""
    mock_boto3 = MagicMock()
    with patch.object(app, "boto3", mock_boto3), \
            patch.object(app, "load_preference_rows", return_value=rows) as mock_load, \
            patch.object(app, "_load_caller_token", return_value="caller-token"), \
            patch.object(app, "IdentityClient", return_value=identity) as mock_identity_cls:
        yield {
            "s3": mock_boto3.client.return_value,
            "load": mock_load,
            "identity_cls": mock_identity_cls,
        }


def test_handler_resolves_all_tenants(patched, lambda_context, identity):
    summary = app.handler({}, lambda_context)

    assert summary["resolved_tenants"] == 2
    assert summary["impersonated_tenants"] == 2
    assert summary["failed_tenants"] == 1
    assert summary["ready_tenants"] == ["1", "3"]
    assert summary["containers"] == {
        "1": {"DFW": "C1", "ORD": "C1"},
        "3": {"ORD": "C3"},
    }
    assert summary["errors"][0]["tenant_id"] == "2"
    assert "tok-admin-1" not in json.dumps(summary, default=str)

    patched["load"].assert_called_once()
    assert patched["load"].call_args.args[1:] == ("prefs-bucket", "preferences.jsonl")
    patched["identity_cls"].assert_called_once_with(
        base_url="https://identity.example.com",
        service_token="caller-token",
        timeout_seconds=10,
        token_ttl_seconds=10800,
    )


def test_handler_writes_error_report(patched, lambda_context):
    summary = app.handler({}, lambda_context)

    s3 = patched["s3"]
    s3.put_object.assert_called_once()
    kwargs = s3.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "report-bucket"
    assert kwargs["Key"].startswith("error-reports/")
    assert kwargs["Key"].endswith(f"{lambda_context.aws_request_id}.json")
    assert summary["error_report_key"] == kwargs["Key"]

    report = json.loads(kwargs["Body"])
    assert report["environment"] == "test"
    assert [e["tenant_id"] for e in report["errors"]] == ["2"]


def test_handler_skips_report_without_errors(patched, lambda_context, rows):
    del rows[1]

    summary = app.handler({}, lambda_context)

    patched["s3"].put_object.assert_not_called()
    assert summary["error_report_key"] is None
    assert summary["failed_tenants"] == 0


def test_handler_event_overrides_run_config(patched, lambda_context, identity):
    summary = app.handler({"tenant_ids": ["3"], "regions": ["ORD"]}, lambda_context)

    assert summary["containers"] == {"3": {"ORD": "C3"}}
    identity.get_tenant_admin.assert_called_once_with("3")


@pytest.mark.parametrize(
    "event",
    [
        {"tenant_ids": "1"},
        {"tenant_ids": [12345]},
        {"tenant_ids": ["1", None]},
        {"regions": []},
        {"regions": "DFW"},
        {"regions": ["DFW", 1]},
    ],
)
def test_handler_rejects_invalid_overrides(patched, lambda_context, event):
    with patch.object(app.metrics, "add_metric") as mock_add_metric:
        with pytest.raises(ConfigurationError):
            app.handler(event, lambda_context)

    mock_add_metric.assert_called_once_with(name="FailedRuns", unit=MetricUnit.Count, value=1)
    patched["load"].assert_not_called()


def test_handler_strips_string_overrides(patched, lambda_context, identity):
    summary = app.handler({"tenant_ids": [" 3 "], "regions": ["ORD "]}, lambda_context)

    assert summary["containers"] == {"3": {"ORD": "C3"}}


def test_handler_propagates_source_failures(patched, lambda_context):
    patched["load"].side_effect = PreferenceSourceError("corrupt export")

    with pytest.raises(PreferenceSourceError):
        app.handler({}, lambda_context)


def test_load_caller_token_reads_secret():
    config = MagicMock(caller_token_secret_name="feed-archives/caller-token")
    with patch.object(app.parameters, "get_secret", return_value="secret-token") as mock_get:
        assert app._load_caller_token(config) == "secret-token"

    mock_get.assert_called_once_with("feed-archives/caller-token", max_age=300)
