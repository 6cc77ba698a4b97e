from botocore.config import Config
from botocore.exceptions import ClientError
from botocore.exceptions import ConnectionError as BotoConnectionError
from botocore.exceptions import HTTPClientError
from botocore.exceptions import NoCredentialsError
from botocore.exceptions import ParamValidationError
from botocore.exceptions import PartialCredentialsError
from s3_gateway.errors import BackendRejected
from s3_gateway.errors import BackendUnavailable
from s3_gateway.errors import ConfigurationError
from s3_gateway.errors import InvalidInput
from s3_gateway.errors import NotFound
from s3_gateway.interfaces import IObjectStoreClient
from zope.interface import implementer

import boto3
import logging
import os


logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NoSuchBucket", "NotFound"})
_UNAVAILABLE_CODES = frozenset(
    {"500", "503", "InternalError", "ServiceUnavailable", "SlowDown", "RequestTimeout"}
)


def _error_class(code, status):
    if code in _NOT_FOUND_CODES or status == 404:
        return NotFound
    if code in _UNAVAILABLE_CODES or (status is not None and status >= 500):
        return BackendUnavailable
    return BackendRejected


@implementer(IObjectStoreClient)
class S3Client:
    """Thin boto3 wrapper for S3-compatible object storage.

    Every call names its bucket explicitly. Failures are raised as
    ``BackendError`` subclasses and are never retried here.
    """

    def __init__(
        self,
        region_name=None,
        endpoint_url=None,
        aws_access_key_id=None,
        aws_secret_access_key=None,
        use_ssl=True,
        addressing_style="auto",
        connect_timeout=60,
        read_timeout=60,
    ):
        config = Config(
            signature_version="s3v4",
            s3={"addressing_style": addressing_style},
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )

        kwargs = {"config": config}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        if region_name:
            kwargs["region_name"] = region_name
        if aws_access_key_id:
            kwargs["aws_access_key_id"] = aws_access_key_id
        if aws_secret_access_key:
            kwargs["aws_secret_access_key"] = aws_secret_access_key
        kwargs["use_ssl"] = use_ssl
        if not use_ssl:
            logger.warning(
                "S3 SSL is disabled, data and credentials are transmitted in cleartext"
            )

        self._client = boto3.client("s3", **kwargs)

    @classmethod
    def from_settings(cls, settings):
        return cls(
            region_name=settings.region,
            endpoint_url=settings.endpoint_url,
            aws_access_key_id=settings.access_key,
            aws_secret_access_key=settings.secret_key,
            use_ssl=settings.use_ssl,
            addressing_style=settings.addressing_style,
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
        )

    @property
    def boto_client(self):
        return self._client

    def _wrap_client_error(self, e, operation, key):
        """Wrap ClientError in a gateway error, logging the original at DEBUG."""
        logger.debug("S3 %s failed for key=%s: %s", operation, key, e)
        error = e.response.get("Error", {})
        code = error.get("Code", "Unknown")
        status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        error_class = _error_class(code, status)
        raise error_class(
            f"S3 {operation} failed for key={key}: {code}",
            operation=operation,
            key=key,
            status=status,
            code=code,
        ) from e

    def _call(self, operation, key, method, **params):
        try:
            return method(**params)
        except ClientError as e:
            self._wrap_client_error(e, operation, key)
        except (BotoConnectionError, HTTPClientError) as e:
            logger.debug("S3 %s failed for key=%s: %s", operation, key, e)
            raise BackendUnavailable(
                f"S3 {operation} failed for key={key}: backend unreachable",
                operation=operation,
                key=key,
            ) from e
        except (NoCredentialsError, PartialCredentialsError) as e:
            raise ConfigurationError(f"S3 credentials are not usable: {e}") from e
        except ParamValidationError as e:
            raise InvalidInput(f"S3 {operation} rejected key={key!r}: {e}") from e

    def store(self, bucket, key, source):
        if isinstance(source, (str, os.PathLike)):
            with open(source, "rb") as f:
                return self.store(bucket, key, f)
        logger.info("Uploading '%s' to bucket '%s'", key, bucket)
        self._call(
            "store", key, self._client.put_object, Bucket=bucket, Key=key, Body=source
        )
        logger.info("'%s' uploaded successfully", key)

    def fetch(self, bucket, key, target):
        response = self._call(
            "fetch", key, self._client.get_object, Bucket=bucket, Key=key
        )
        body = response["Body"]
        try:
            for chunk in body.iter_chunks():
                target.write(chunk)
        finally:
            body.close()

    def exists(self, bucket, key):
        try:
            self._call("head", key, self._client.head_object, Bucket=bucket, Key=key)
        except NotFound:
            return False
        return True

    def delete(self, bucket, key):
        self._call("delete", key, self._client.delete_object, Bucket=bucket, Key=key)

    def list(self, bucket, prefix=""):
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    yield obj["Key"]
        except ClientError as e:
            self._wrap_client_error(e, "list", prefix)
        except (BotoConnectionError, HTTPClientError) as e:
            logger.debug("S3 list failed for prefix=%s: %s", prefix, e)
            raise BackendUnavailable(
                f"S3 list failed for key={prefix}: backend unreachable",
                operation="list",
                key=prefix,
            ) from e
