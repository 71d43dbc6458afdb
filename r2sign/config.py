# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for presigning, link signing and the file server.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/r2sign/r2sign.yaml``
    (typically ``~/.config/r2sign/r2sign.yaml``)

``!env`` tags resolve values from environment variables, so secrets
can stay in the environment (or a ``.env`` file) while the rest of the
settings live in YAML::

    storage:
      endpoint: !env R2_ENDPOINT
      access_key_id: !env R2_ACCESS_KEY_ID
      secret_access_key: !env R2_SECRET_ACCESS_KEY
      bucket: !env R2_BUCKET
      put_ttl: 600
    links:
      secret: !env WORKER_SECRET
      base_url: https://files.example.com
    files:
      port: 8787

Deployments without a YAML file use :meth:`Config.from_env`, which reads
the same settings from the ``R2_*`` / ``WORKER_*`` variables directly.

Every missing credential raises ``ConfigError`` at load time, before
any signing is attempted.  Resolved secrets are registered with
``SecretFilter`` so they never appear in log output.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, overload

import yaml
from platformdirs import user_config_path

from r2sign.dotenv_loader import load_dotenv_once
from r2sign.errors import ConfigError
from r2sign.links import LinkSigner
from r2sign.logging import SecretFilter
from r2sign.sigv4 import (
    DEFAULT_EXPIRES_IN,
    DEFAULT_REGION,
    Clock,
    Credential,
    Presigner,
    utc_now,
)
from r2sign.uploads import UploadSigner


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "r2sign"

DEFAULT_GET_TTL = 300
DEFAULT_FILES_HOST = "127.0.0.1"
DEFAULT_FILES_PORT = 8787
#: 30 days; stored objects never change under a given key.
DEFAULT_CACHE_MAX_AGE = 2592000


def get_config_path() -> Path:
    """Return the default config file path.

    Returns:
        ``$XDG_CONFIG_HOME/r2sign/r2sign.yaml``.
    """
    return user_config_path(_APP_NAME) / "r2sign.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` file path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag.

    Several names may be given; the first one that is set wins.
    """

    def __init__(self, *var_names: str) -> None:
        self.var_names = var_names

    def describe(self) -> str:
        """Human-readable variable name(s) for error messages."""
        return " or ".join(f"'{name}'" for name in self.var_names)


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


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or no listed env var is set.
    """
    if isinstance(value, _EnvVar):
        for name in value.var_names:
            raw = os.environ.get(name)
            if raw is not None:
                return raw
        return None
    if value is None:
        return None
    return str(value)


_MISSING = object()


@overload
def _resolve[T](value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve[T](
    value: object,
    coerce: type[T],
    *,
    required: str,
) -> T: ...


@overload
def _resolve[T](value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Blank paths count as absent, since ``Path("")`` is the working
    directory.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``Path``).
        default: Default when value is absent.  Not allowed together
            with *required*.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent or empty.

    Returns:
        The resolved, coerced value, or None when optional and absent.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if isinstance(value, coerce) and not isinstance(value, bool):
            if not (required and value == ""):
                return value

    resolved = _raw_resolve(value)

    blank = resolved is not None and not resolved.strip()
    if resolved is None or (blank and (required or coerce is Path)):
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"{value.describe()} is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is Path:
        return Path(resolved).expanduser()
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _section(raw: dict, name: str) -> dict:
    """Return a top-level mapping, treating a missing one as empty."""
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a YAML mapping")
    return section


# ---------------------------------------------------------------------------
# Configuration objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StorageConfig:
    """Object store connection and presign policy.

    Attributes:
        endpoint: Store endpoint (``https://<account>.r2.example.com``).
        access_key_id: Access key ID.
        secret_access_key: Secret access key (never logged).
        bucket: Bucket holding uploaded documents.
        region: Signing region; ``auto`` for region-agnostic stores.
        put_ttl: Validity of presigned upload URLs, in seconds.
        get_ttl: Validity of presigned download URLs, in seconds.
    """

    endpoint: str
    access_key_id: str
    secret_access_key: str = field(repr=False)
    bucket: str
    region: str = DEFAULT_REGION
    put_ttl: int = DEFAULT_EXPIRES_IN
    get_ttl: int = DEFAULT_GET_TTL

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ConfigError: If a TTL is not positive.
        """
        if self.put_ttl < 1:
            raise ConfigError(f"Upload URL TTL must be >= 1s: {self.put_ttl}")
        if self.get_ttl < 1:
            raise ConfigError(
                f"Download URL TTL must be >= 1s: {self.get_ttl}"
            )
        SecretFilter.register_secret(self.secret_access_key)

    def credential(self) -> Credential:
        """Access key pair for the presigner."""
        return Credential(self.access_key_id, self.secret_access_key)

    def presigner(self, clock: Clock = utc_now) -> Presigner:
        """Build a presigner for this store."""
        return Presigner(
            self.credential(), self.endpoint, region=self.region, clock=clock
        )

    def upload_signer(self, clock: Clock = utc_now) -> UploadSigner:
        """Build an upload ticket issuer for this bucket."""
        return UploadSigner(
            self.presigner(clock),
            self.bucket,
            put_ttl=self.put_ttl,
            get_ttl=self.get_ttl,
            clock=clock,
        )


@dataclass(frozen=True)
class LinkConfig:
    """Shared secret and origin for signed file links.

    Attributes:
        secret: HMAC secret shared with the file server (never logged).
        base_url: File server origin for absolute links, or None for
            root-relative links.
    """

    secret: str = field(repr=False)
    base_url: str | None = None

    def __post_init__(self) -> None:
        SecretFilter.register_secret(self.secret)

    def signer(self) -> LinkSigner:
        """Build a link signer."""
        return LinkSigner(self.secret, base_url=self.base_url)


@dataclass(frozen=True)
class FileServerConfig:
    """File server settings.

    Attributes:
        host: Bind address.
        port: Bind port.
        cache_max_age: ``Cache-Control`` max-age for served objects.
        root: Serve objects from this directory instead of the bucket.
    """

    host: str = DEFAULT_FILES_HOST
    port: int = DEFAULT_FILES_PORT
    cache_max_age: int = DEFAULT_CACHE_MAX_AGE
    root: Path | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"File server port out of range: {self.port}")
        if self.cache_max_age < 0:
            raise ConfigError(
                f"Cache max-age must be >= 0: {self.cache_max_age}"
            )


@dataclass(frozen=True)
class Config:
    """Complete configuration."""

    storage: StorageConfig
    links: LinkConfig
    files: FileServerConfig = field(default_factory=FileServerConfig)

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "Config":
        """Load configuration from a YAML file.

        A ``.env`` file is loaded first if present, then ``!env`` tags
        are resolved from the environment.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``~/.config/r2sign/r2sign.yaml`` (XDG).

        Returns:
            Config instance.

        Raises:
            ConfigError: If the file is missing or required values are
                absent.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            raw = yaml.load(f, Loader=_make_loader())

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        return cls._from_raw(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables only.

        Variables: ``R2_ENDPOINT``, ``R2_ACCESS_KEY_ID``,
        ``R2_SECRET_ACCESS_KEY``, ``R2_BUCKET`` (or ``R2_BUCKET_NAME``),
        ``R2_REGION``, ``R2_PRESIGN_PUT_TTL``, ``R2_PRESIGN_GET_TTL``,
        ``WORKER_SECRET``, ``WORKER_URL``, ``FILES_HOST``,
        ``FILES_PORT``, ``FILES_CACHE_MAX_AGE``, ``FILES_ROOT``.

        Raises:
            ConfigError: If a required variable is not set.
        """
        load_dotenv_once()
        raw = {
            "storage": {
                "endpoint": _EnvVar("R2_ENDPOINT"),
                "access_key_id": _EnvVar("R2_ACCESS_KEY_ID"),
                "secret_access_key": _EnvVar("R2_SECRET_ACCESS_KEY"),
                "bucket": _EnvVar("R2_BUCKET", "R2_BUCKET_NAME"),
                "region": _EnvVar("R2_REGION"),
                "put_ttl": _EnvVar("R2_PRESIGN_PUT_TTL"),
                "get_ttl": _EnvVar("R2_PRESIGN_GET_TTL"),
            },
            "links": {
                "secret": _EnvVar("WORKER_SECRET"),
                "base_url": _EnvVar("WORKER_URL"),
            },
            "files": {
                "host": _EnvVar("FILES_HOST"),
                "port": _EnvVar("FILES_PORT"),
                "cache_max_age": _EnvVar("FILES_CACHE_MAX_AGE"),
                "root": _EnvVar("FILES_ROOT"),
            },
        }
        return cls._from_raw(raw)

    @classmethod
    def _from_raw(cls, raw: dict) -> "Config":
        """Build config from parsed (but unresolved) YAML dict."""
        storage = _section(raw, "storage")
        links = _section(raw, "links")
        files = _section(raw, "files")

        storage_config = StorageConfig(
            endpoint=_resolve(
                storage.get("endpoint"), str, required="storage.endpoint"
            ),
            access_key_id=_resolve(
                storage.get("access_key_id"),
                str,
                required="storage.access_key_id",
            ),
            secret_access_key=_resolve(
                storage.get("secret_access_key"),
                str,
                required="storage.secret_access_key",
            ),
            bucket=_resolve(
                storage.get("bucket"), str, required="storage.bucket"
            ),
            region=_resolve(storage.get("region"), str, default=DEFAULT_REGION)
            or DEFAULT_REGION,
            put_ttl=_resolve(
                storage.get("put_ttl"), int, default=DEFAULT_EXPIRES_IN
            ),
            get_ttl=_resolve(
                storage.get("get_ttl"), int, default=DEFAULT_GET_TTL
            ),
        )

        link_config = LinkConfig(
            secret=_resolve(links.get("secret"), str, required="links.secret"),
            base_url=_resolve(links.get("base_url"), str) or None,
        )

        files_config = FileServerConfig(
            host=_resolve(files.get("host"), str, default=DEFAULT_FILES_HOST),
            port=_resolve(files.get("port"), int, default=DEFAULT_FILES_PORT),
            cache_max_age=_resolve(
                files.get("cache_max_age"), int, default=DEFAULT_CACHE_MAX_AGE
            ),
            root=_resolve(files.get("root"), Path),
        )

        logger.info(
            "Config loaded: bucket=%s, region=%s, put_ttl=%ds, get_ttl=%ds",
            storage_config.bucket,
            storage_config.region,
            storage_config.put_ttl,
            storage_config.get_ttl,
        )
        return cls(
            storage=storage_config, links=link_config, files=files_config
        )
