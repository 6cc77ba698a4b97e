from urllib.parse import unquote
from urllib.parse import urlsplit

import datetime
import hashlib
import hmac
import pytest


def _hmac(key, msg):
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def verify_presigned_url(url, method, secret_key, now=None):
    """Check a SigV4 query-signed S3 URL the way the backend would.

    Returns True only if the signature matches the method, host, path and
    query of ``url`` and the URL has not expired at ``now``.
    """
    parts = urlsplit(url)
    pairs = [pair.partition("=") for pair in parts.query.split("&")]
    params = {k: v for k, _, v in pairs}
    signature = params.get("X-Amz-Signature")
    if signature is None or params.get("X-Amz-SignedHeaders") != "host":
        return False

    canonical_query = "&".join(
        f"{k}={v}"
        for k, v in sorted((k, v) for k, _, v in pairs if k != "X-Amz-Signature")
    )
    canonical_request = "\n".join(
        [
            method,
            parts.path,
            canonical_query,
            f"host:{parts.netloc.lower()}\n",
            "host",
            "UNSIGNED-PAYLOAD",
        ]
    )
    timestamp = params["X-Amz-Date"]
    _access_key, scope = unquote(params["X-Amz-Credential"]).split("/", 1)
    date, region, service, _terminator = scope.split("/")
    string_to_sign = "\n".join(
        [
            "AWS4-HMAC-SHA256",
            timestamp,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )
    signing_key = f"AWS4{secret_key}".encode("utf-8")
    for part in (date, region, service, "aws4_request"):
        signing_key = _hmac(signing_key, part)
    expected = hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    if not hmac.compare_digest(expected, signature):
        return False

    issued = datetime.datetime.strptime(timestamp, "%Y%m%dT%H%M%SZ").replace(
        tzinfo=datetime.timezone.utc
    )
    expires = issued + datetime.timedelta(seconds=int(params["X-Amz-Expires"]))
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return now <= expires


@pytest.fixture
def verify_presigned():
    return verify_presigned_url
