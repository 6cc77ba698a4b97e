from s3_gateway.errors import ConfigurationError
from s3_gateway.errors import InvalidInput
from s3_gateway.signer import as_timedelta

import collections
import datetime
import logging
import os
import re
import ZConfig


logger = logging.getLogger(__name__)

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.xml")

_BUCKET_RE = re.compile(r"[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]")
_PREFIX_RE = re.compile(r"[a-zA-Z0-9._/-]*")
_ADDRESSING_STYLES = ("auto", "virtual", "path")

_SettingsBase = collections.namedtuple(
    "GatewaySettings",
    [
        "bucket_name",
        "region",
        "access_key",
        "secret_key",
        "endpoint_url",
        "use_ssl",
        "addressing_style",
        "connect_timeout",
        "read_timeout",
        "upload_prefix",
        "grant_ttl",
        "staging_dir",
    ],
)


class GatewaySettings(_SettingsBase):
    """Immutable process-wide configuration, built once at startup.

    Use ``GatewaySettings.create`` rather than the raw constructor; it
    applies defaults and raises ``ConfigurationError`` for anything the
    gateway could not serve requests with.
    """

    __slots__ = ()

    def __repr__(self):
        # never print the secret
        return (
            f"<GatewaySettings bucket={self.bucket_name!r} region={self.region!r} "
            f"prefix={self.upload_prefix!r}>"
        )

    @classmethod
    def create(
        cls,
        bucket_name,
        region,
        access_key,
        secret_key,
        endpoint_url=None,
        use_ssl=True,
        addressing_style="auto",
        connect_timeout=60,
        read_timeout=60,
        upload_prefix="uploads/",
        grant_ttl=600,
        staging_dir=None,
    ):
        bucket_name = (bucket_name or "").strip()
        if not bucket_name:
            raise ConfigurationError("bucket name is required")
        if not _BUCKET_RE.fullmatch(bucket_name) or ".." in bucket_name:
            raise ConfigurationError(f"invalid bucket name: {bucket_name!r}")

        region = (region or "").strip()
        if not region:
            raise ConfigurationError("region is required")

        access_key = (access_key or "").strip()
        secret_key = (secret_key or "").strip()
        if not access_key or not secret_key:
            raise ConfigurationError(
                "both an access key and a secret key are required"
            )

        if addressing_style not in _ADDRESSING_STYLES:
            raise ConfigurationError(
                f"addressing style must be one of {', '.join(_ADDRESSING_STYLES)}, "
                f"got {addressing_style!r}"
            )
        for name, value in (
            ("connect timeout", connect_timeout),
            ("read timeout", read_timeout),
        ):
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")

        upload_prefix = (upload_prefix or "").strip().lstrip("/")
        if not upload_prefix:
            raise ConfigurationError("upload prefix must not be empty")
        if not _PREFIX_RE.fullmatch(upload_prefix):
            raise ConfigurationError(
                f"upload prefix contains invalid characters: {upload_prefix!r}. "
                "Only alphanumeric characters, dots, hyphens, underscores, "
                "and slashes are allowed."
            )
        if ".." in upload_prefix:
            raise ConfigurationError(
                f"upload prefix must not contain '..': {upload_prefix!r}"
            )
        if not upload_prefix.endswith("/"):
            upload_prefix += "/"

        try:
            grant_ttl = as_timedelta(grant_ttl)
        except InvalidInput as e:
            raise ConfigurationError(f"grant ttl: {e}") from e

        if staging_dir is not None and not os.path.isdir(staging_dir):
            raise ConfigurationError(
                f"staging directory does not exist: {staging_dir!r}"
            )

        if not use_ssl:
            logger.warning(
                "S3 SSL is disabled for bucket '%s', credentials travel in cleartext",
                bucket_name,
            )

        return cls(
            bucket_name,
            region,
            access_key,
            secret_key,
            endpoint_url or None,
            bool(use_ssl),
            addressing_style,
            connect_timeout,
            read_timeout,
            upload_prefix,
            grant_ttl,
            staging_dir,
        )


def open_gateway(settings):
    """Wire client, signer and gateway around one shared boto3 client."""
    from s3_gateway.gateway import StorageGateway
    from s3_gateway.s3client import S3Client
    from s3_gateway.signer import URLSigner

    client = S3Client.from_settings(settings)
    signer = URLSigner(client.boto_client)
    logger.info(
        "Initialized S3 gateway for bucket '%s' in region '%s'",
        settings.bucket_name,
        settings.region,
    )
    return StorageGateway(
        settings.bucket_name,
        client,
        signer,
        prefix=settings.upload_prefix,
        ttl=settings.grant_ttl,
        staging_dir=settings.staging_dir,
    )


class GatewayConfig:
    """ZConfig factory for the ``<s3gateway>`` section."""

    def __init__(self, config):
        self.config = config
        self.name = config.getSectionName()

    def settings(self):
        config = self.config
        return GatewaySettings.create(
            bucket_name=config.bucket_name,
            region=config.region,
            access_key=config.access_key,
            secret_key=config.secret_key,
            endpoint_url=config.endpoint_url,
            use_ssl=config.use_ssl,
            addressing_style=config.addressing_style,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            upload_prefix=config.upload_prefix,
            grant_ttl=config.grant_ttl,
            staging_dir=config.staging_dir,
        )

    def open(self):
        return open_gateway(self.settings())


def load_config(source):
    """Load a ZConfig file (path or open text file) and return its section."""
    schema = ZConfig.loadSchema(SCHEMA_PATH)
    try:
        if isinstance(source, (str, os.PathLike)):
            config, _handlers = ZConfig.loadConfig(schema, os.fspath(source))
        else:
            config, _handlers = ZConfig.loadConfigFile(schema, source)
    except ZConfig.ConfigurationError as e:
        raise ConfigurationError(str(e)) from e
    return config.gateway


def _env(environ, name, default=None):
    value = (environ.get(name) or "").strip()
    return value or default


def _env_int(environ, name, default):
    value = _env(environ, name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer, got {value!r}"
        ) from None


def settings_from_environ(environ=None):
    """Build settings from ``AWS_S3_*`` and ``S3_GATEWAY_*`` variables."""
    environ = os.environ if environ is None else environ
    use_ssl = _env(environ, "AWS_S3_USE_SSL", "true").lower()
    return GatewaySettings.create(
        bucket_name=_env(environ, "AWS_S3_BUCKET"),
        region=_env(environ, "AWS_S3_REGION"),
        access_key=_env(environ, "AWS_S3_ACCESS_KEY"),
        secret_key=_env(environ, "AWS_S3_SECRET_KEY"),
        endpoint_url=_env(environ, "AWS_S3_ENDPOINT_URL"),
        use_ssl=use_ssl not in ("0", "false", "no", "off"),
        addressing_style=_env(environ, "AWS_S3_ADDRESSING_STYLE", "auto"),
        connect_timeout=_env_int(environ, "AWS_S3_CONNECT_TIMEOUT", 60),
        read_timeout=_env_int(environ, "AWS_S3_READ_TIMEOUT", 60),
        upload_prefix=_env(environ, "S3_GATEWAY_UPLOAD_PREFIX", "uploads/"),
        grant_ttl=datetime.timedelta(
            seconds=_env_int(environ, "S3_GATEWAY_GRANT_TTL", 600)
        ),
        staging_dir=_env(environ, "S3_GATEWAY_STAGING_DIR"),
    )
