"""Configuration management with XDG paths, precedence resolution and client construction.

This module handles all persistent configuration for festivals_api:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.festivals-api/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir` and :func:`get_request_cache_dir`.
* **Client config** -- A single ``config.json`` deserialised into a
  :class:`~festivals_api.models.ClientConfig`.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables and the config file into the effective
  configuration.
* **Credential resolution** -- :func:`resolve_credential` reads secrets
  (API key, user token, container passphrase) from env vars, files or an
  interactive prompt.
* **Client construction** -- :func:`build_client` loads the trust material,
  opens the response cache and returns a ready
  :class:`~festivals_api.client.festivals.FestivalsClient`.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

import httpx

from festivals_api.cache import ResponseCache
from festivals_api.client.festivals import FestivalsClient
from festivals_api.exceptions import ConfigError
from festivals_api.models import ClientConfig, TLSConfig
from festivals_api.tls import TrustEvaluator, TrustMaterial, load_trust_material

_APP_NAME = "festivals-api"
_CONFIG_FILENAME = "config.json"
_REQUEST_CACHE_DIRNAME = "requestscache"

ENV_BASE_URL = "FESTIVALS_API_BASE_URL"
ENV_CONFIG = "FESTIVALS_API_CONFIG"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory.

    On Linux/BSD: ``$XDG_CONFIG_HOME/festivals-api/`` (default
    ``~/.config/festivals-api/``). On macOS/Windows: ``~/.festivals-api/``.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    return _fallback_base_dir()


def get_cache_dir() -> Path:
    """Return the cache directory.

    Cached data can be safely deleted at any time.

    On Linux/BSD: ``$XDG_CACHE_HOME/festivals-api/`` (default
    ``~/.cache/festivals-api/``). On macOS/Windows: ``~/.festivals-api/cache/``.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    return _fallback_base_dir() / "cache"


def get_request_cache_dir() -> Path:
    """Return the directory holding the cold tier of the response cache."""
    return get_cache_dir() / _REQUEST_CACHE_DIRNAME


# --- Client config ---


def get_config_path(path: Optional[str | Path] = None) -> Path:
    """Return the config file to use: *path*, then ``$FESTIVALS_API_CONFIG``, then the default."""
    if path is not None:
        return Path(path).expanduser()
    env_path = os.environ.get(ENV_CONFIG)
    if env_path:
        return Path(env_path).expanduser()
    return get_config_dir() / _CONFIG_FILENAME


def load_client_config(path: Optional[str | Path] = None) -> ClientConfig:
    """Load the client configuration.

    Args:
        path: Explicit config file. Defaults to :func:`get_config_path`.

    Returns:
        The deserialised :class:`~festivals_api.models.ClientConfig`. If
        the file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    config_path = get_config_path(path)
    if not config_path.is_file():
        return ClientConfig()
    try:
        text = config_path.read_text(encoding="utf-8")
        data = json.loads(text)
        return ClientConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {config_path}: {exc}") from exc


# --- Precedence resolution ---


def resolve_config(
    cli_base_url: Optional[str] = None,
    config_path: Optional[str] = None,
) -> ClientConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_base_url``, ``config_path``)
        2. Environment variables (``FESTIVALS_API_BASE_URL``,
           ``FESTIVALS_API_CONFIG``)
        3. User config (``~/.config/festivals-api/config.json``)
        4. Defaults

    Returns:
        The effective :class:`~festivals_api.models.ClientConfig`.
    """
    config = load_client_config(config_path)

    env_base_url = os.environ.get(ENV_BASE_URL)
    if cli_base_url is not None:
        config.base_url = cli_base_url
    elif env_base_url:
        config.base_url = env_base_url

    return config


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)

    Args:
        source: The source descriptor string.

    Returns:
        The resolved credential string.

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter credential: ")

    raise ConfigError(f"Unknown credential source format: {source}")


# --- Client construction ---


def _read_bytes(path_str: str, what: str) -> bytes:
    path = Path(path_str).expanduser()
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ConfigError(f"Cannot read {what} {path}: {exc}") from exc


def load_trust_material_from_files(tls: TLSConfig) -> TrustMaterial:
    """Read the PKCS#12 container and root certificate named by *tls* and load them.

    Raises:
        ConfigError: If a file cannot be read or the passphrase source
            cannot be resolved.
        CredentialError: If the files do not hold usable trust material.
    """
    container = _read_bytes(tls.certificate, "client certificate container")
    root = _read_bytes(tls.root_ca, "root certificate")
    passphrase = resolve_credential(tls.passphrase_source)
    return load_trust_material(container, passphrase, root)


def build_trust_evaluator(config: ClientConfig) -> Optional[TrustEvaluator]:
    """Return the mutual-TLS evaluator for *config*, or ``None`` without a ``tls`` section.

    The server name defaults to the host of ``config.base_url``.
    """
    if config.tls is None:
        return None
    material = load_trust_material_from_files(config.tls)
    server_name = config.tls.server_name
    if server_name is None and config.base_url:
        server_name = urlsplit(config.base_url).hostname
    return TrustEvaluator(material, server_name=server_name)


def build_cache(config: ClientConfig) -> Optional[ResponseCache]:
    """Return the response cache for *config*, or ``None`` when caching is disabled."""
    if not config.cache.enabled:
        return None
    return ResponseCache.from_config(config.cache, get_request_cache_dir())


def build_client(
    config: ClientConfig,
    transport: Optional[httpx.BaseTransport] = None,
) -> FestivalsClient:
    """Construct a :class:`~festivals_api.client.festivals.FestivalsClient` from *config*.

    Trust material is loaded before anything else so credential problems
    surface here, never on the first request.

    Raises:
        ConfigError: If no base URL is configured or a credential source
            cannot be resolved.
        CredentialError: If the client certificate or root is unusable.
    """
    if not config.base_url:
        raise ConfigError(
            f"No base URL configured (set base_url in the config file or {ENV_BASE_URL})"
        )
    trust = build_trust_evaluator(config)
    api_key = resolve_credential(config.api_key_source)
    jwt = resolve_credential(config.jwt_source) if config.jwt_source else None

    return FestivalsClient(
        config.base_url,
        api_key,
        api_version=config.api_version,
        jwt=jwt,
        trust=trust,
        cache=build_cache(config),
        request=config.request,
        use_cold_cache=config.cache.use_cold_cache,
        transport=transport,
    )
