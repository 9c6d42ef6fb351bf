"""Shared test fixtures for festivals_api.

Provides reusable fixtures for isolated config environments, a fake clock
for the response cache, a throw-away PKI (pinned root, intermediate,
server and client leaves, a rogue CA) and helpers for building mocked web
service responses. These fixtures are automatically discovered by pytest
and available to all test modules without explicit imports.
"""

from __future__ import annotations

import datetime
import ipaddress
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from rich.logging import RichHandler

from festivals_api.output import OutputFormat, OutputManager, reset_output, set_output

SERVER_NAME = "api.festivals.test"
BASE_URL = f"https://{SERVER_NAME}"
PASSPHRASE = "festivals"


# ---------------------------------------------------------------------------
# Auto-reset global output and logging state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager and CLI log handlers after every test.

    Both cache references to sys.stdout/sys.stderr at creation time. When
    Typer's CliRunner redirects those streams during a test and the test
    finishes, the cached references become stale.
    """
    yield
    reset_output()
    logger = logging.getLogger("festivals_api")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_CACHE_HOME to subdirectories of tmp_path
    so that tests never touch real user config, and clears all
    FESTIVALS_API_* environment variables.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setattr("festivals_api.config._is_xdg_platform", lambda: True)

    for var in [
        "FESTIVALS_API_BASE_URL",
        "FESTIVALS_API_CONFIG",
        "FESTIVALS_API_KEY",
        "FESTIVALS_API_CERT_PASSPHRASE",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced replacement for :func:`time.time`."""

    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_700_000_000.0)


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Web service payloads
# ---------------------------------------------------------------------------


def envelope(records: Optional[list[dict[str, Any]]]) -> bytes:
    """Encode *records* the way the web service does."""
    return json.dumps({"data": records}).encode("utf-8")


def json_response(records: Optional[list[dict[str, Any]]], status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        headers={"content-type": "application/json"},
        content=envelope(records),
    )


def festival_record(festival_id: int = 1, name: str = "Stemweder Open Air", **extra: Any) -> dict[str, Any]:
    record = {
        "festival_id": festival_id,
        "festival_version": "2024-05-01T10:00:00Z",
        "festival_is_valid": True,
        "festival_name": name,
        "festival_start": 1_722_000_000,
        "festival_end": 1_722_200_000,
        "festival_description": "Umsonst und draussen",
        "festival_price": "free",
    }
    record.update(extra)
    return record


def event_record(event_id: int = 7, start: int = 1_722_010_000, end: int = 1_722_020_000, **extra: Any) -> dict[str, Any]:
    record = {
        "event_id": event_id,
        "event_version": "2024-05-01T10:00:00Z",
        "event_name": "Headliner",
        "event_start": start,
        "event_end": end,
        "event_description": "Main stage",
        "event_type": 0,
    }
    record.update(extra)
    return record


def place_record(place_id: int = 3) -> dict[str, Any]:
    return {
        "place_id": place_id,
        "place_version": "2024-05-01T10:00:00Z",
        "place_street": "Am Sportplatz 1",
        "place_zip": "32351",
        "place_town": "Stemwede",
        "place_street_addition": "",
        "place_country": "Germany",
        "place_lat": 52.42,
        "place_lon": 8.45,
        "place_description": "Festival ground",
    }


# ---------------------------------------------------------------------------
# PKI
# ---------------------------------------------------------------------------


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def issue_certificate(
    common_name: str,
    key: ec.EllipticCurvePrivateKey,
    issuer: Optional[x509.Certificate],
    issuer_key: ec.EllipticCurvePrivateKey,
    *,
    ca: bool,
    dns_names: tuple[str, ...] = (),
    usage: Optional[x509.ObjectIdentifier] = None,
    not_before: Optional[datetime.datetime] = None,
    not_after: Optional[datetime.datetime] = None,
) -> x509.Certificate:
    """Issue a certificate with the extensions an RFC 5280 verifier expects."""
    now = datetime.datetime.now(datetime.timezone.utc)
    not_before = not_before or now - datetime.timedelta(days=1)
    not_after = not_after or now + datetime.timedelta(days=30)

    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(issuer.subject if issuer is not None else _name(common_name))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=ca,
                crl_sign=ca,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
            critical=False,
        )
    )
    if dns_names:
        names: list[x509.GeneralName] = [x509.DNSName(name) for name in dns_names]
        names.append(x509.IPAddress(ipaddress.ip_address("127.0.0.1")))
        builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)
    if usage is not None:
        builder = builder.add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
    return builder.sign(issuer_key, hashes.SHA256())


def _key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@dataclass
class TestPKI:
    """Certificates and keys shared by the TLS tests."""

    root_key: ec.EllipticCurvePrivateKey
    root: x509.Certificate
    intermediate: x509.Certificate
    server: x509.Certificate
    expired_server: x509.Certificate
    client_key: ec.EllipticCurvePrivateKey
    client: x509.Certificate
    rogue_root: x509.Certificate
    rogue_server: x509.Certificate

    __test__ = False

    def root_pem(self) -> bytes:
        return self.root.public_bytes(serialization.Encoding.PEM)

    def root_der(self) -> bytes:
        return self.root.public_bytes(serialization.Encoding.DER)

    def container(self, passphrase: str = PASSPHRASE) -> bytes:
        """PKCS#12 container with the client identity and the intermediate."""
        return pkcs12.serialize_key_and_certificates(
            name=b"festivals-client",
            key=self.client_key,
            cert=self.client,
            cas=[self.intermediate],
            encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode()),
        )

    def container_without_identity(self, passphrase: str = PASSPHRASE) -> bytes:
        return pkcs12.serialize_key_and_certificates(
            name=None,
            key=None,
            cert=None,
            cas=[self.intermediate],
            encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode()),
        )


@pytest.fixture(scope="session")
def pki() -> TestPKI:
    now = datetime.datetime.now(datetime.timezone.utc)
    # CA validity spans every leaf window and clock override used by the tests.
    ca_validity = {
        "not_before": now - datetime.timedelta(days=365),
        "not_after": now + datetime.timedelta(days=365),
    }

    root_key = _key()
    root = issue_certificate(
        "Festivals Test Root CA", root_key, None, root_key, ca=True, **ca_validity
    )

    intermediate_key = _key()
    intermediate = issue_certificate(
        "Festivals Test Intermediate CA", intermediate_key, root, root_key, ca=True, **ca_validity
    )

    server_key = _key()
    server = issue_certificate(
        SERVER_NAME,
        server_key,
        intermediate,
        intermediate_key,
        ca=False,
        dns_names=(SERVER_NAME,),
        usage=ExtendedKeyUsageOID.SERVER_AUTH,
    )
    expired_server = issue_certificate(
        SERVER_NAME,
        server_key,
        intermediate,
        intermediate_key,
        ca=False,
        dns_names=(SERVER_NAME,),
        usage=ExtendedKeyUsageOID.SERVER_AUTH,
        not_before=now - datetime.timedelta(days=60),
        not_after=now - datetime.timedelta(days=30),
    )

    client_key = _key()
    client = issue_certificate(
        "festivals-api client",
        client_key,
        intermediate,
        intermediate_key,
        ca=False,
        usage=ExtendedKeyUsageOID.CLIENT_AUTH,
    )

    rogue_key = _key()
    rogue_root = issue_certificate("Well Known Public Root", rogue_key, None, rogue_key, ca=True)
    rogue_server = issue_certificate(
        SERVER_NAME,
        _key(),
        rogue_root,
        rogue_key,
        ca=False,
        dns_names=(SERVER_NAME,),
        usage=ExtendedKeyUsageOID.SERVER_AUTH,
    )

    return TestPKI(
        root_key=root_key,
        root=root,
        intermediate=intermediate,
        server=server,
        expired_server=expired_server,
        client_key=client_key,
        client=client,
        rogue_root=rogue_root,
        rogue_server=rogue_server,
    )


@pytest.fixture
def trust_material(pki: TestPKI):
    from festivals_api.tls import load_trust_material

    return load_trust_material(pki.container(), PASSPHRASE, pki.root_pem())


@pytest.fixture
def tls_files(tmp_path: Path, pki: TestPKI) -> tuple[Path, Path]:
    """Write the client container and pinned root to disk."""
    container = tmp_path / "client.p12"
    root = tmp_path / "ca.crt"
    container.write_bytes(pki.container())
    root.write_bytes(pki.root_pem())
    return container, root
