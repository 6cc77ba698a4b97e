import datetime
from unittest import mock
from urllib.parse import parse_qs
from urllib.parse import quote
from urllib.parse import urlsplit
from urllib.parse import urlunsplit

import pytest
from botocore.exceptions import NoCredentialsError

from s3_gateway.errors import ConfigurationError
from s3_gateway.errors import InvalidInput
from s3_gateway.interfaces import IURLSigner
from s3_gateway.s3client import S3Client
from s3_gateway.signer import GET
from s3_gateway.signer import PUT
from s3_gateway.signer import URLSigner
from s3_gateway.signer import as_timedelta


BUCKET = "test-bucket"
SECRET = "testing-secret"
NOW = datetime.datetime(2026, 10, 19, 12, 0, tzinfo=datetime.timezone.utc)
TEN_MINUTES = datetime.timedelta(minutes=10)


@pytest.fixture
def boto_client():
    return S3Client(
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key=SECRET,
    ).boto_client


@pytest.fixture
def signer(boto_client):
    return URLSigner(boto_client, clock=lambda: NOW)


def _query(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def _with_path(url, path):
    return urlunsplit(urlsplit(url)._replace(path=path))


class TestURLSignerInterface:
    def test_interface_provided(self, signer):
        assert IURLSigner.providedBy(signer)


class TestGrants:
    def test_sign_put_grant(self, signer):
        grant = signer.sign_put(BUCKET, "uploads/report.txt", TEN_MINUTES)
        assert grant.operation == PUT
        assert grant.bucket == BUCKET
        assert grant.key == "uploads/report.txt"
        assert grant.expires_at == NOW + TEN_MINUTES

    def test_sign_get_grant(self, signer):
        grant = signer.sign_get(BUCKET, "uploads/report.txt", TEN_MINUTES)
        assert grant.operation == GET
        assert grant.expires_at == NOW + TEN_MINUTES

    def test_url_carries_expiry(self, signer):
        grant = signer.sign_put(BUCKET, "uploads/report.txt", 600)
        query = _query(grant.url)
        assert query["X-Amz-Expires"] == "600"
        assert query["X-Amz-Algorithm"] == "AWS4-HMAC-SHA256"
        assert "X-Amz-Signature" in query

    def test_ttl_in_seconds(self, signer):
        grant = signer.sign_get(BUCKET, "uploads/a", 30)
        assert grant.expires_at == NOW + datetime.timedelta(seconds=30)
        assert _query(grant.url)["X-Amz-Expires"] == "30"

    def test_key_used_verbatim(self, signer):
        grant = signer.sign_get(BUCKET, "other/place/file name.txt", TEN_MINUTES)
        assert urlsplit(grant.url).path.endswith(quote("other/place/file name.txt"))
        assert grant.key == "other/place/file name.txt"

    def test_bucket_in_url(self, signer):
        grant = signer.sign_get(BUCKET, "uploads/a", TEN_MINUTES)
        assert BUCKET in grant.url

    def test_fractional_ttl_rounded_down(self, signer):
        grant = signer.sign_put(BUCKET, "uploads/a", 1.9)
        expires_in = int(_query(grant.url)["X-Amz-Expires"])
        assert expires_in == 1
        assert grant.expires_at - NOW == datetime.timedelta(seconds=expires_in)

    def test_expiry_in_whole_seconds(self, boto_client):
        signer = URLSigner(
            boto_client, clock=lambda: NOW.replace(microsecond=750000)
        )
        grant = signer.sign_get(BUCKET, "uploads/a", TEN_MINUTES)
        assert grant.expires_at == NOW + TEN_MINUTES

    def test_expiry_not_later_than_url(self, boto_client):
        grant = URLSigner(boto_client).sign_get(BUCKET, "uploads/a", TEN_MINUTES)
        query = _query(grant.url)
        signed_at = datetime.datetime.strptime(
            query["X-Amz-Date"], "%Y%m%dT%H%M%SZ"
        ).replace(tzinfo=datetime.timezone.utc)
        url_expiry = signed_at + datetime.timedelta(
            seconds=int(query["X-Amz-Expires"])
        )
        assert grant.expires_at <= url_expiry

    def test_grant_is_immutable(self, signer):
        grant = signer.sign_get(BUCKET, "uploads/a", TEN_MINUTES)
        with pytest.raises(AttributeError):
            grant.key = "uploads/b"


class TestSignatureBinding:
    def test_put_url_verifies(self, signer, verify_presigned):
        grant = signer.sign_put(BUCKET, "uploads/report.txt", TEN_MINUTES)
        assert verify_presigned(grant.url, "PUT", SECRET)

    def test_get_url_verifies(self, signer, verify_presigned):
        grant = signer.sign_get(BUCKET, "uploads/report.txt", TEN_MINUTES)
        assert verify_presigned(grant.url, "GET", SECRET)

    def test_other_key_rejected(self, signer, verify_presigned):
        grant = signer.sign_get(BUCKET, "uploads/report.txt", TEN_MINUTES)
        path = urlsplit(grant.url).path.replace("report.txt", "payroll.txt")
        assert not verify_presigned(_with_path(grant.url, path), "GET", SECRET)

    def test_other_operation_rejected(self, signer, verify_presigned):
        grant = signer.sign_put(BUCKET, "uploads/report.txt", TEN_MINUTES)
        assert not verify_presigned(grant.url, "GET", SECRET)

    def test_other_bucket_rejected(self, signer, verify_presigned):
        grant = signer.sign_get(BUCKET, "uploads/report.txt", TEN_MINUTES)
        tampered = grant.url.replace(BUCKET, "other-bucket", 1)
        assert not verify_presigned(tampered, "GET", SECRET)

    def test_wrong_secret_rejected(self, signer, verify_presigned):
        grant = signer.sign_get(BUCKET, "uploads/report.txt", TEN_MINUTES)
        assert not verify_presigned(grant.url, "GET", "another-secret")

    def test_expired_url_rejected(self, signer, verify_presigned):
        grant = signer.sign_get(BUCKET, "uploads/report.txt", 60)
        later = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
            minutes=5
        )
        assert not verify_presigned(grant.url, "GET", SECRET, now=later)


class TestInvalidInput:
    @pytest.mark.parametrize("bucket", ["", "   ", None])
    def test_blank_bucket(self, signer, bucket):
        with pytest.raises(InvalidInput):
            signer.sign_get(bucket, "uploads/a", TEN_MINUTES)

    @pytest.mark.parametrize("key", ["", "   ", None])
    def test_blank_key(self, signer, key):
        with pytest.raises(InvalidInput):
            signer.sign_put(BUCKET, key, TEN_MINUTES)

    @pytest.mark.parametrize(
        "ttl",
        [0, -5, 0.5, datetime.timedelta(days=8), "600", None, True],
    )
    def test_bad_ttl(self, signer, ttl):
        with pytest.raises(InvalidInput):
            signer.sign_get(BUCKET, "uploads/a", ttl)

    def test_max_ttl_accepted(self):
        assert as_timedelta(datetime.timedelta(days=7)) == datetime.timedelta(days=7)


class TestCredentials:
    def test_missing_credentials_is_configuration_error(self):
        boto_client = mock.Mock()
        boto_client.generate_presigned_url.side_effect = NoCredentialsError()
        signer = URLSigner(boto_client, clock=lambda: NOW)
        with pytest.raises(ConfigurationError):
            signer.sign_get(BUCKET, "uploads/a", TEN_MINUTES)

    def test_no_network_calls(self, boto_client):
        signer = URLSigner(boto_client, clock=lambda: NOW)
        with mock.patch.object(boto_client, "_make_api_call") as api_call:
            signer.sign_put(BUCKET, "uploads/a", TEN_MINUTES)
        api_call.assert_not_called()
