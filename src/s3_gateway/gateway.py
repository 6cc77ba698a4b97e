from s3_gateway.errors import ConfigurationError
from s3_gateway.errors import InvalidInput
from s3_gateway.errors import LocalResourceError
from s3_gateway.interfaces import IStorageGateway
from s3_gateway.signer import as_timedelta
from zope.interface import implementer

import datetime
import logging
import os
import re
import shutil
import tempfile
import uuid


logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "uploads/"
DEFAULT_TTL = datetime.timedelta(minutes=10)

# S3 rejects keys longer than 1024 bytes of UTF-8.
MAX_KEY_BYTES = 1024

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


def check_display_name(display_name):
    """Reject names that would escape or alias the managed namespace."""
    if not isinstance(display_name, str) or not display_name.strip():
        raise InvalidInput("file name must not be blank")
    if display_name in (".", ".."):
        raise InvalidInput(f"file name must not be {display_name!r}")
    if "/" in display_name or "\\" in display_name:
        raise InvalidInput(
            f"file name must not contain path separators: {display_name!r}"
        )
    if _CONTROL_CHARS_RE.search(display_name):
        raise InvalidInput(
            f"file name must not contain control characters: {display_name!r}"
        )


def check_key(key):
    if not isinstance(key, str) or not key.strip():
        raise InvalidInput("file key must not be blank")
    try:
        encoded = key.encode("utf-8")
    except UnicodeEncodeError:
        raise InvalidInput(f"file key is not valid unicode: {key!r}") from None
    if len(encoded) > MAX_KEY_BYTES:
        raise InvalidInput(f"file key exceeds {MAX_KEY_BYTES} bytes")


@implementer(IStorageGateway)
class StorageGateway:
    """Decides where objects live and how long grants last.

    Direct uploads are stored under ``prefix + display_name``. Upload grants
    get a random token in front of the display name so that concurrent
    requests for the same name never share a key. Download grants sign the
    key exactly as given. Listings never leave ``prefix``.
    """

    def __init__(
        self,
        bucket,
        client,
        signer,
        prefix=DEFAULT_PREFIX,
        ttl=DEFAULT_TTL,
        staging_dir=None,
    ):
        if not bucket:
            raise ConfigurationError("bucket must not be blank")
        if not prefix or not prefix.endswith("/"):
            raise ConfigurationError(f"prefix must end with '/': {prefix!r}")
        self.bucket = bucket
        self.prefix = prefix
        try:
            self.ttl = as_timedelta(ttl)
        except InvalidInput as e:
            raise ConfigurationError(f"grant ttl: {e}") from e
        self._client = client
        self._signer = signer
        self._staging_dir = staging_dir

    def __repr__(self):
        return f"<StorageGateway bucket={self.bucket!r} prefix={self.prefix!r}>"

    def put_object(self, display_name, source):
        check_display_name(display_name)
        key = self.prefix + display_name
        check_key(key)
        logger.info("Uploading file '%s' to bucket '%s'", key, self.bucket)
        staged_path = self._stage(source)
        try:
            self._client.store(self.bucket, key, staged_path)
        except BaseException:
            self._discard(staged_path, strict=False)
            raise
        self._discard(staged_path)
        logger.info("File '%s' uploaded successfully", key)
        return key

    def create_upload_grant(self, display_name):
        check_display_name(display_name)
        key = f"{self.prefix}{uuid.uuid4()}-{display_name}"
        check_key(key)
        logger.info("Generating pre-signed upload URL for file '%s'", key)
        return self._signer.sign_put(self.bucket, key, self.ttl)

    def create_download_grant(self, key):
        check_key(key)
        logger.info("Generating pre-signed download URL for file '%s'", key)
        return self._signer.sign_get(self.bucket, key, self.ttl)

    def list_objects(self):
        logger.info(
            "Listing files in bucket '%s' under prefix '%s'", self.bucket, self.prefix
        )
        keys = []
        for key in self._client.list(self.bucket, self.prefix):
            if key.startswith(self.prefix):
                keys.append(key)
            else:
                logger.warning("Ignoring key outside '%s': %s", self.prefix, key)
        logger.info("Found %d files in '%s'", len(keys), self.prefix)
        return keys

    def delete_object(self, key):
        check_key(key)
        if not key.startswith(self.prefix) or key == self.prefix:
            raise InvalidInput(f"key is not managed by this gateway: {key!r}")
        logger.info("Deleting file '%s' from bucket '%s'", key, self.bucket)
        self._client.delete(self.bucket, key)

    # -- Staging --

    def _stage(self, source):
        """Copy ``source`` into a private temp file and return its path."""
        try:
            fd, path = tempfile.mkstemp(
                prefix="upload-", suffix=".tmp", dir=self._staging_dir
            )
        except OSError as e:
            raise LocalResourceError(f"cannot create staging file: {e}") from e
        try:
            with os.fdopen(fd, "wb") as f:
                shutil.copyfileobj(source, f)
        except OSError as e:
            self._discard(path, strict=False)
            raise LocalResourceError(f"cannot write staging file: {e}") from e
        except BaseException:
            self._discard(path, strict=False)
            raise
        return path

    def _discard(self, path, strict=True):
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            if strict:
                raise LocalResourceError(
                    f"cannot remove staging file {path}: {e}"
                ) from e
            logger.warning("Failed to remove staging file %s", path, exc_info=True)
