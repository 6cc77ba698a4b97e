from zope.interface import Attribute
from zope.interface import Interface


class IObjectStoreClient(Interface):
    """Synchronous access to an S3-compatible object store."""

    boto_client = Attribute("The shared boto3 S3 client")

    def store(bucket, key, source):
        """Create or overwrite ``key`` with the bytes of ``source``."""

    def fetch(bucket, key, target):
        """Write the bytes of ``key`` into the writable file ``target``."""

    def exists(bucket, key):
        """Return True if the key exists in the bucket."""

    def delete(bucket, key):
        """Delete an object. Missing keys are not an error."""

    def list(bucket, prefix):
        """Yield keys starting with ``prefix``, in backend order."""


class IURLSigner(Interface):
    """Produces time-limited presigned URLs for single operations."""

    def sign_put(bucket, key, ttl):
        """Return a SignedUrlGrant allowing one PUT of ``key``."""

    def sign_get(bucket, key, ttl):
        """Return a SignedUrlGrant allowing one GET of ``key``."""


class IStorageGateway(Interface):
    """Key-naming and expiry policy on top of a client and a signer."""

    bucket = Attribute("Bucket every operation is scoped to")
    prefix = Attribute("Namespace prefix for managed keys")

    def put_object(display_name, source):
        """Store ``source`` under the prefix and return the key used."""

    def create_upload_grant(display_name):
        """Return a PUT grant for a fresh, unique key under the prefix."""

    def create_download_grant(key):
        """Return a GET grant for exactly ``key``."""

    def list_objects():
        """Return the keys under the prefix."""

    def delete_object(key):
        """Delete a managed key."""
