"""S3 object store access.

Keeps boto3 details out of the delivery pipeline: a metadata-only
``HeadObject`` and a streaming ``GetObject`` body. Calls are blocking; the
async layer runs them in worker threads.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from filegate.enums import OwnerMetadataKey
from filegate.errors import (
    ObjectChangedError,
    ObjectNotFoundError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from filegate.models.domain import ObjectMetadata

if TYPE_CHECKING:
    from filegate.config import GatewayConfig

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_PRECONDITION_CODES = {"412", "PreconditionFailed"}


def create_s3_client(config: "GatewayConfig") -> Any:
    """Create the S3 client (custom endpoint for local dev).

    Timeouts are bounded and botocore retries are disabled; a failed call is
    reported, never retried.
    """
    botocore_config = Config(
        region_name=config.aws_region,
        connect_timeout=config.s3_connect_timeout_seconds,
        read_timeout=config.s3_read_timeout_seconds,
        retries={"total_max_attempts": 1, "mode": "standard"},
    )
    kwargs: dict[str, Any] = {
        "region_name": config.aws_region,
        "aws_access_key_id": config.aws_access_key_id,
        "aws_secret_access_key": config.aws_secret_access_key,
        "config": botocore_config,
    }
    if config.aws_endpoint_url:
        logger.info("Using S3-compatible endpoint at %s", config.aws_endpoint_url)
        kwargs["endpoint_url"] = config.aws_endpoint_url
    else:
        logger.info("Using AWS S3 in region %s", config.aws_region)
    return boto3.client("s3", **kwargs)


def _translate(exc: Exception, key: str) -> Exception:
    if isinstance(exc, ClientError):
        code = str(exc.response.get("Error", {}).get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in _NOT_FOUND_CODES or status == 404:
            return ObjectNotFoundError(f"No object at key {key!r}")
        if code in _PRECONDITION_CODES or status == 412:
            return ObjectChangedError(
                f"Object at key {key!r} no longer matches its checked version"
            )
        return UpstreamUnavailableError(f"Object store error {code or status} for key {key!r}")
    if isinstance(exc, (ReadTimeoutError, ConnectTimeoutError)):
        return UpstreamTimeoutError(f"Object store timed out for key {key!r}")
    if isinstance(exc, EndpointConnectionError):
        return UpstreamUnavailableError(f"Object store unreachable: {exc}")
    return UpstreamUnavailableError(f"Object store failure for key {key!r}: {exc}")


class ObjectStoreClient:
    """Bucket-scoped S3 reader."""

    def __init__(self, s3_client: Any, *, bucket: str) -> None:
        self._s3 = s3_client
        self.bucket = bucket

    def head(self, key: str) -> ObjectMetadata:
        """Fetch object metadata without the body.

        Raises:
            ObjectNotFoundError: No object under ``key``.
            UpstreamTimeoutError: The store timed out.
            UpstreamUnavailableError: Any other store failure.
        """
        try:
            response = self._s3.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, key) from e

        # boto3 returns user metadata with lower-cased keys.
        user_metadata = {
            str(k).lower(): str(v) for k, v in (response.get("Metadata") or {}).items()
        }
        return ObjectMetadata(
            key=key,
            content_type=response.get("ContentType"),
            content_length=int(response.get("ContentLength") or 0),
            etag=response.get("ETag"),
            owner_record_type=user_metadata.get(OwnerMetadataKey.LINKED_ENTITY_API_NAME),
            owner_record_id=user_metadata.get(OwnerMetadataKey.LINKED_ENTITY_ID),
            user_metadata=user_metadata,
        )

    def open_body(self, key: str, *, etag: str | None = None) -> Any:
        """Open the object's body stream.

        With ``etag`` the read is conditional (``If-Match``): a replaced
        object fails with ``ObjectChangedError`` instead of streaming bytes
        whose metadata was never checked.

        Returns:
            botocore ``StreamingBody``; the caller must close it.
        """
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if etag:
            kwargs["IfMatch"] = etag
        try:
            response = self._s3.get_object(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, key) from e
        return response["Body"]
