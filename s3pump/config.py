# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Client configuration.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/s3pump/s3pump.yaml``
    (typically ``~/.config/s3pump/s3pump.yaml``)

``!env`` tags resolve values from environment variables, so credentials
can stay out of the file::

    region: eu-west-1
    credentials:
      access_key: !env AWS_ACCESS_KEY_ID
      secret_key: !env AWS_SECRET_ACCESS_KEY
    endpoint:
      hostname: minio.internal
      port: 9000
      use_ssl: false
    upload:
      part_size: 8388608
      write_queue_max_size: 4
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml
from platformdirs import user_config_path

from s3pump.dotenv_loader import load_dotenv_once
from s3pump.errors import ConfigError
from s3pump.logging import SecretFilter


logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Application name for XDG path resolution.
_APP_NAME = "s3pump"

#: Smallest part size the storage service accepts (except the last part).
FIVE_MB = 5 * 1024 * 1024

DEFAULT_REGION = "us-east-1"
DEFAULT_HOSTNAME = "s3.amazonaws.com"

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})


def get_config_path() -> Path:
    """Return the default config file path.

    Returns:
        ``$XDG_CONFIG_HOME/s3pump/s3pump.yaml``.
    """
    return user_config_path(_APP_NAME) / "s3pump.yaml"


def get_dotenv_path() -> Path:
    """Return the default ``.env`` file path inside the XDG config directory.

    Returns:
        ``$XDG_CONFIG_HOME/s3pump/.env``.
    """
    return user_config_path(_APP_NAME) / ".env"


def resolve_hostname(region: str, hostname_override: str | None = None) -> str:
    """Resolve the endpoint host for a region.

    Args:
        region: Signing region.
        hostname_override: Explicit host; always wins when set.

    Returns:
        ``s3.amazonaws.com`` for us-east-1, ``s3-{region}.amazonaws.com``
        for any other region, or the override.
    """
    if hostname_override:
        return hostname_override
    if region == DEFAULT_REGION:
        return DEFAULT_HOSTNAME
    return f"s3-{region}.amazonaws.com"


@dataclass(frozen=True)
class ClientConfig:
    """Connection, identity and upload settings for one client.

    Attributes:
        region: Signing region.
        access_key: Access key id.
        secret_key: Secret access key.  Registered for log redaction.
        service_name: Signing service name.
        hostname_override: Explicit endpoint host (MinIO, Ceph, ...).
        use_ssl: Use https.
        port: Explicit endpoint port.
        global_timeout_ms: Per-request timeout in milliseconds.
        sign_payload: Hash request bodies into the signature.
        part_size: Chunk size and multipart part size in bytes.
        write_queue_max_size: Parts in flight at once per upload.
        stream_high_water_mark: Chunks buffered ahead of the uploader.
        abort_on_failure: Abort multipart uploads that fail.
    """

    region: str
    access_key: str
    secret_key: str
    service_name: str = "s3"
    hostname_override: str | None = None
    use_ssl: bool = True
    port: int | None = None
    global_timeout_ms: int = 10000
    sign_payload: bool = False
    part_size: int = FIVE_MB
    write_queue_max_size: int = 2
    stream_high_water_mark: int = 1
    abort_on_failure: bool = True

    def __post_init__(self) -> None:
        """Validate configuration and register the secret key.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if isinstance(self.secret_key, str):
            SecretFilter.register_secret(self.secret_key)

        for name in ("region", "service_name", "access_key", "secret_key"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"'{name}' must be a non-empty string")
        if self.port is not None and not 0 < self.port < 65536:
            raise ConfigError(f"Port out of range: {self.port}")
        if self.global_timeout_ms <= 0:
            raise ConfigError(
                f"Timeout must be > 0 ms: {self.global_timeout_ms}"
            )
        if self.part_size <= 0:
            raise ConfigError(f"Part size must be > 0: {self.part_size}")
        if self.part_size < FIVE_MB:
            logger.warning(
                "Part size %d is below the 5 MiB service minimum; "
                "multipart uploads will be rejected by AWS S3",
                self.part_size,
            )
        if self.write_queue_max_size <= 0:
            raise ConfigError(
                f"Write queue size must be > 0: {self.write_queue_max_size}"
            )
        if self.stream_high_water_mark <= 0:
            raise ConfigError(
                f"High water mark must be > 0: {self.stream_high_water_mark}"
            )

    @property
    def hostname(self) -> str:
        return resolve_hostname(self.region, self.hostname_override)

    @property
    def host_header(self) -> str:
        """Value of the ``host`` header (includes a non-default port)."""
        if self.port is None:
            return self.hostname
        return f"{self.hostname}:{self.port}"

    @property
    def endpoint_url(self) -> str:
        """Base URL: ``{scheme}://{host}[:{port}]``."""
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.host_header}"

    @property
    def timeout(self) -> float:
        """Per-request timeout in seconds."""
        return self.global_timeout_ms / 1000

    def __repr__(self) -> str:
        return (
            f"ClientConfig(region={self.region!r}, "
            f"endpoint={self.endpoint_url!r}, "
            f"access_key={self.access_key!r}, secret_key=***)"
        )

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "ClientConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  ``.env`` files are loaded first.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``~/.config/s3pump/s3pump.yaml`` (XDG).

        Returns:
            ClientConfig instance.

        Raises:
            ConfigError: If the file is missing or values are invalid.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls.from_raw(raw)
        logger.debug("Loaded config from %s: %r", config_path, config)
        return config

    @classmethod
    def from_raw(cls, raw: dict) -> "ClientConfig":
        """Build config from a parsed (but unresolved) YAML mapping."""
        endpoint = _section(raw, "endpoint")
        credentials = _section(raw, "credentials")
        upload = _section(raw, "upload")

        try:
            return cls(
                region=_resolve(raw.get("region"), str, required="region"),
                service_name=_resolve(raw.get("service"), str, default="s3"),
                access_key=_resolve(
                    credentials.get("access_key"),
                    str,
                    required="credentials.access_key",
                ),
                secret_key=_resolve(
                    credentials.get("secret_key"),
                    str,
                    required="credentials.secret_key",
                ),
                hostname_override=_resolve(endpoint.get("hostname"), str),
                port=_resolve(endpoint.get("port"), int),
                use_ssl=_resolve(endpoint.get("use_ssl"), bool, default=True),
                global_timeout_ms=_resolve(
                    raw.get("timeout_ms"), int, default=10000
                ),
                sign_payload=_resolve(
                    raw.get("sign_payload"), bool, default=False
                ),
                part_size=_resolve(
                    upload.get("part_size"), int, default=FIVE_MB
                ),
                write_queue_max_size=_resolve(
                    upload.get("write_queue_max_size"), int, default=2
                ),
                stream_high_water_mark=_resolve(
                    upload.get("high_water_mark"), int, default=1
                ),
                abort_on_failure=_resolve(
                    upload.get("abort_on_failure"), bool, default=True
                ),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid config value: {e}") from e


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a YAML mapping")
    return value


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is not set.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if value is None:
        return None
    return str(value)


_MISSING = object()


@overload
def _resolve(value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve(
    value: object,
    coerce: type[T],
    *,
    required: str,
) -> T: ...


@overload
def _resolve(value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``bool``).
        default: Default when value is absent.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent.

    Returns:
        The resolved, coerced value, or None when optional and absent.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)

    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    return coerce(resolved)
