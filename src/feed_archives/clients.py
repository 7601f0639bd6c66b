# src/feed_archives/clients.py

"""
Client wrappers for the external collaborators of an archiving run: S3, which
holds the preferences export and receives error reports, and the identity
service, which issues impersonation tokens.

These classes keep transport details (boto3, HTTP) out of the resolution
logic and translate transport failures into the service's own exception types.
"""

import json
import logging
from typing import Any, BinaryIO, NoReturn, Protocol, TYPE_CHECKING, cast
from urllib.parse import quote

import requests
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from .exceptions import (
    IdentityRequestError,
    IdentityServiceUnavailableError,
    PreferenceSourceError,
    S3AccessDeniedError,
    S3ObjectNotFoundError,
    S3ThrottlingError,
    S3TimeoutError,
)

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client as S3ClientType

logger = logging.getLogger(__name__)

_THROTTLING_CODES = {"Throttling", "ThrottlingException", "RequestLimitExceeded", "SlowDown"}
_TIMEOUT_CODES = {"RequestTimeout", "RequestTimeoutException"}


def _raise_for_client_error(e: ClientError, operation: str, bucket: str, key: str) -> NoReturn:
    """Map boto3 error codes to our specific exception types."""
    error_code = e.response["Error"]["Code"]
    error_message = e.response["Error"]["Message"]
    aws_context = {"aws_error_code": error_code, "aws_error_message": error_message}

    if error_code in ("NoSuchKey", "NoSuchBucket"):
        raise S3ObjectNotFoundError(bucket=bucket, key=key, context=aws_context) from e
    elif error_code == "AccessDenied":
        raise S3AccessDeniedError(bucket=bucket, key=key, context=aws_context) from e
    elif error_code in _THROTTLING_CODES:
        raise S3ThrottlingError(
            operation, context={"bucket": bucket, "key": key, **aws_context}
        ) from e
    elif error_code in _TIMEOUT_CODES:
        raise S3TimeoutError(
            operation, context={"bucket": bucket, "key": key, **aws_context}
        ) from e
    else:
        raise PreferenceSourceError(
            f"S3 client error during {operation}: {error_message}",
            context={"bucket": bucket, "key": key, **aws_context},
        ) from e


class S3Client:
    """
    A wrapper for the S3 operations an archiving run needs.
    """

    def __init__(self, s3_client: "S3ClientType"):
        """
        Initializes the S3Client.

        Args:
            s3_client: A typed boto3 S3 client.
        """
        self._client = s3_client

    def get_file_content_stream(self, bucket: str, key: str) -> BinaryIO:
        """
        Retrieves an S3 object's body as a file-like streaming object.
        Raises specific S3 exceptions based on the error type.
        """
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            return cast(BinaryIO, response["Body"])
        except ClientError as e:
            _raise_for_client_error(e, "get_object", bucket, key)
        except ReadTimeoutError as e:
            raise S3TimeoutError(
                "get_object",
                context={"bucket": bucket, "key": key, "timeout_error": str(e)},
            ) from e
        except EndpointConnectionError as e:
            raise S3TimeoutError(
                "get_object",
                context={"bucket": bucket, "key": key, "connection_error": str(e)},
            ) from e

    def put_json(self, bucket: str, key: str, body: Any) -> None:
        """Serializes *body* as JSON and writes it to s3://bucket/key."""
        logger.info("Writing JSON object", extra={"bucket": bucket, "key": key})
        try:
            self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=json.dumps(body, default=str).encode("utf-8"),
                ContentType="application/json",
            )
        except ClientError as e:
            _raise_for_client_error(e, "put_object", bucket, key)
        except (ReadTimeoutError, EndpointConnectionError) as e:
            raise S3TimeoutError(
                "put_object",
                context={"bucket": bucket, "key": key, "connection_error": str(e)},
            ) from e


class IdentityService(Protocol):
    """The two identity operations an archiving run depends on."""

    def get_tenant_admin(self, tenant_id: str) -> str: ...

    def impersonate(self, principal: str, caller_token: str) -> str: ...


class IdentityClient:
    """
    HTTP client for the identity service's tenant-user and impersonation APIs.

    The client owns its timeout. It never retries; a failed call surfaces as
    IdentityServiceUnavailableError (worth retrying later) or
    IdentityRequestError (will fail the same way again).
    """

    def __init__(
        self,
        base_url: str,
        service_token: str,
        timeout_seconds: float = 10.0,
        token_ttl_seconds: int = 10800,
        session: requests.Session | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._service_token = service_token
        self._timeout = timeout_seconds
        self._token_ttl = token_ttl_seconds
        self._session = session or requests.Session()

    def get_tenant_admin(self, tenant_id: str) -> str:
        """Returns the username of the tenant's enabled admin user."""
        body = self._request(
            "lookup_admin",
            "GET",
            f"/v2.0/tenants/{quote(tenant_id, safe='')}/users",
            token=self._service_token,
            params={"admin_only": "true"},
        )
        users = body.get("users")
        if not isinstance(users, list):
            raise IdentityRequestError(
                "lookup_admin", "response has no 'users' list",
                context={"tenant_id": tenant_id},
            )
        for user in users:
            if isinstance(user, dict) and user.get("enabled", True) and user.get("username"):
                return str(user["username"])
        raise IdentityRequestError(
            "lookup_admin", "tenant has no enabled admin user",
            context={"tenant_id": tenant_id},
        )

    def impersonate(self, principal: str, caller_token: str) -> str:
        """Issues a token that acts as *principal*, authorized by *caller_token*."""
        body = self._request(
            "impersonate",
            "POST",
            "/v2.0/RAX-AUTH/impersonation-tokens",
            token=caller_token,
            json={
                "RAX-AUTH:impersonation": {
                    "user": {"username": principal},
                    "expire-in-seconds": self._token_ttl,
                }
            },
        )
        try:
            return str(body["access"]["token"]["id"])
        except (KeyError, TypeError) as e:
            raise IdentityRequestError(
                "impersonate", "response has no access.token.id",
                context={"principal": principal},
            ) from e

    def _request(self, operation: str, method: str, path: str, token: str, **kwargs) -> dict:
        url = self._base_url + path
        headers = {"X-Auth-Token": token, "Accept": "application/json"}
        try:
            response = self._session.request(
                method, url, headers=headers, timeout=self._timeout, **kwargs
            )
        except requests.Timeout as e:
            raise IdentityServiceUnavailableError(
                operation, "request timed out", context={"url": url}
            ) from e
        except requests.RequestException as e:
            raise IdentityServiceUnavailableError(
                operation, str(e)[:256], context={"url": url}
            ) from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise IdentityServiceUnavailableError(
                operation, f"http_{status}", context={"url": url, "status_code": status}
            )
        if status >= 400:
            raise IdentityRequestError(
                operation,
                f"http_{status}",
                context={"url": url, "status_code": status, "body": response.text[:256]},
            )
        try:
            body = response.json()
        except ValueError as e:
            raise IdentityRequestError(
                operation, "response is not JSON", context={"url": url}
            ) from e
        if not isinstance(body, dict):
            raise IdentityRequestError(
                operation, "response is not a JSON object", context={"url": url}
            )
        logger.debug(
            "Identity request succeeded",
            extra={"operation": operation, "status_code": status},
        )
        return body
