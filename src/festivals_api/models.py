"""Pydantic configuration models shared across festivals_api.

These models describe how a client is constructed: where the web service
lives, which credentials to present, and how the response cache and
request layer behave. They are deserialised from ``config.json`` by
:mod:`festivals_api.config` and passed to the dispatcher and cache at
construction time. Every value is fixed for the life of a client.

The entity records returned by the web service live in
:mod:`festivals_api.entities`, not here.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR


class CacheConfig(BaseModel):
    """Two-tier response cache settings.

    The hot tier lives in memory and is short-lived; the cold tier lives on
    disk and survives process restarts. Both tiers are keyed by the full
    request URL.
    """

    enabled: bool = Field(default=True, description="Enable response caching")
    hot_lifetime_seconds: float = Field(
        default=10 * MINUTE, ge=0, description="Lifetime of in-memory entries"
    )
    cold_lifetime_seconds: float = Field(
        default=7 * DAY, ge=0, description="Lifetime of on-disk entries"
    )
    max_hot_entries: int = Field(
        default=512, gt=0, description="Capacity of the in-memory tier"
    )
    use_cold_cache: bool = Field(
        default=True, description="Consult the disk tier after an in-memory miss"
    )
    directory: Optional[str] = Field(
        default=None, description="Override for the on-disk cache directory"
    )


class RequestConfig(BaseModel):
    """Default HTTP request settings applied to every call."""

    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    max_retries: int = Field(
        default=2, ge=0, description="Retry attempts for read requests"
    )


class TLSConfig(BaseModel):
    """Mutual-TLS material, referenced by file path.

    ``passphrase_source`` uses the credential source syntax understood by
    :func:`~festivals_api.config.resolve_credential` (``env:VAR``,
    ``file:/path`` or ``prompt``).
    """

    certificate: str = Field(description="Path to the PKCS#12 client container")
    passphrase_source: str = Field(
        default="env:FESTIVALS_API_CERT_PASSPHRASE",
        description="Credential source for the container passphrase",
    )
    root_ca: str = Field(description="Path to the pinned root CA certificate")
    server_name: Optional[str] = Field(
        default=None,
        description="Name the server certificate must match (defaults to the base URL host)",
    )


class ClientConfig(BaseModel):
    """Everything needed to construct a :class:`~festivals_api.client.FestivalsClient`.

    Loaded from ``config.json`` by :func:`~festivals_api.config.load_client_config`.
    Unknown keys are preserved in ``model_extra``.

    Example::

        ClientConfig(
            base_url="https://api.festivalsapp.org",
            api_key_source="env:FESTIVALS_API_KEY",
            tls=TLSConfig(certificate="~/client.p12", root_ca="~/ca.crt"),
        )
    """

    model_config = ConfigDict(extra="allow")

    base_url: Optional[str] = Field(default=None, description="Web service base URL")
    api_version: str = Field(default="0.1", description="Web service API version")
    api_key_source: str = Field(
        default="env:FESTIVALS_API_KEY", description="Credential source for the API key"
    )
    jwt_source: Optional[str] = Field(
        default=None, description="Credential source for a user bearer token"
    )
    tls: Optional[TLSConfig] = None
    cache: CacheConfig = Field(default_factory=CacheConfig)
    request: RequestConfig = Field(default_factory=RequestConfig)
