from botocore.exceptions import NoCredentialsError
from botocore.exceptions import ParamValidationError
from botocore.exceptions import PartialCredentialsError
from s3_gateway.errors import ConfigurationError
from s3_gateway.errors import InvalidInput
from s3_gateway.interfaces import IURLSigner
from zope.interface import implementer

import collections
import datetime
import logging


logger = logging.getLogger(__name__)

# SigV4 presigned URLs cannot outlive one week.
MAX_TTL = datetime.timedelta(days=7)

PUT = "PUT"
GET = "GET"

_CLIENT_METHODS = {PUT: "put_object", GET: "get_object"}

SignedUrlGrant = collections.namedtuple(
    "SignedUrlGrant", ["url", "operation", "bucket", "key", "expires_at"]
)


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


def as_timedelta(ttl):
    """Accept seconds or a timedelta, reject anything SigV4 cannot express."""
    if not isinstance(ttl, datetime.timedelta):
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
            raise InvalidInput(f"ttl must be seconds or a timedelta, got {ttl!r}")
        ttl = datetime.timedelta(seconds=ttl)
    if ttl.total_seconds() < 1:
        raise InvalidInput(f"ttl must be at least one second, got {ttl}")
    if ttl > MAX_TTL:
        raise InvalidInput(f"ttl must not exceed {MAX_TTL}, got {ttl}")
    # X-Amz-Expires only carries whole seconds
    return datetime.timedelta(seconds=int(ttl.total_seconds()))


@implementer(IURLSigner)
class URLSigner:
    """Presigns single PUT or GET requests with the server's credentials.

    Signing is local computation: no request reaches the backend, and the
    existence of the key is never checked. The backend enforces expiry when
    the URL is used.

    ``expires_at`` is derived from ``clock``, truncated to whole seconds and
    read before signing. botocore stamps X-Amz-Date from its own wall clock
    at signing time, so with the default clock the stated expiry is never
    later than the one the backend enforces.
    """

    def __init__(self, boto_client, clock=utcnow):
        self._client = boto_client
        self._clock = clock

    def sign_put(self, bucket, key, ttl):
        return self._sign(PUT, bucket, key, ttl)

    def sign_get(self, bucket, key, ttl):
        return self._sign(GET, bucket, key, ttl)

    def _sign(self, operation, bucket, key, ttl):
        if not bucket or not bucket.strip():
            raise InvalidInput("bucket must not be blank")
        if not key or not key.strip():
            raise InvalidInput("key must not be blank")
        ttl = as_timedelta(ttl)
        issued_at = self._clock().replace(microsecond=0)
        try:
            url = self._client.generate_presigned_url(
                ClientMethod=_CLIENT_METHODS[operation],
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=int(ttl.total_seconds()),
            )
        except (NoCredentialsError, PartialCredentialsError) as e:
            raise ConfigurationError(f"cannot sign without credentials: {e}") from e
        except ParamValidationError as e:
            raise InvalidInput(f"cannot sign {operation} for key={key!r}: {e}") from e
        logger.info(
            "Pre-signed %s URL generated for '%s' in bucket '%s', valid for %s",
            operation,
            key,
            bucket,
            ttl,
        )
        return SignedUrlGrant(url, operation, bucket, key, issued_at + ttl)
