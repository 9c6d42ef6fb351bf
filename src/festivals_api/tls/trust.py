"""Pinned-root server trust and client credential hand-off.

:class:`TrustEvaluator` answers the two questions a mutual-TLS connection
asks of the client:

* Is the chain the server presented acceptable? Only if it validates to the
  single pinned root of the :class:`~festivals_api.tls.credentials.TrustMaterial`.
  The platform trust store is never consulted, not even as a fallback.
* Which identity does the client present? Always the configured one.

For the transport, :meth:`TrustEvaluator.ssl_context` builds an
:class:`ssl.SSLContext` whose only trust anchor is the pinned root and which
carries the client identity. :meth:`TrustEvaluator.check_response` re-runs
the chain evaluation on the live connection as an httpx response hook.
"""

from __future__ import annotations

import enum
import ipaddress
import logging
import secrets
import ssl
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.verification import PolicyBuilder, Store

from festivals_api.exceptions import TrustError
from festivals_api.tls.credentials import PrivateKey, TrustMaterial

logger = logging.getLogger(__name__)

PresentedCertificate = Union[x509.Certificate, bytes]


class TrustDecision(str, enum.Enum):
    """Outcome of a server chain evaluation."""

    ACCEPT = "accept"
    REJECT = "reject"


class TrustEvaluator:
    """Decides whether a server chain is trusted, and supplies the client identity.

    Holds a read-only reference to the trust material; one evaluator may
    serve any number of concurrent handshakes.

    Args:
        material: The loaded client identity and pinned root.
        server_name: DNS name or IP address the server certificate must be
            issued for. Used when an evaluation call does not pass one.
        clock: Returns the validation time. Defaults to the current time.
    """

    def __init__(
        self,
        material: TrustMaterial,
        server_name: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._material = material
        self._server_name = server_name
        self._clock = clock
        self._context: Optional[ssl.SSLContext] = None
        self._context_lock = threading.Lock()

    @property
    def material(self) -> TrustMaterial:
        return self._material

    @property
    def server_name(self) -> Optional[str]:
        return self._server_name

    # ------------------------------------------------------------------ #
    # Server evaluation
    # ------------------------------------------------------------------ #

    def evaluate_server(
        self,
        presented_chain: Iterable[PresentedCertificate],
        server_name: Optional[str] = None,
    ) -> TrustDecision:
        """Return :attr:`TrustDecision.ACCEPT` only if *presented_chain* validates to the pinned root.

        Args:
            presented_chain: Server certificates, leaf first, as
                :class:`~cryptography.x509.Certificate` objects or DER/PEM bytes.
            server_name: Overrides the evaluator's configured server name.
        """
        try:
            self.verify_server(presented_chain, server_name)
        except TrustError as exc:
            logger.warning("Rejected server certificate chain: %s", exc)
            return TrustDecision.REJECT
        return TrustDecision.ACCEPT

    def verify_server(
        self,
        presented_chain: Iterable[PresentedCertificate],
        server_name: Optional[str] = None,
    ) -> None:
        """Like :meth:`evaluate_server`, but raise instead of returning a decision.

        Raises:
            TrustError: If the chain is empty, malformed, expired, issued
                for another name, or anchored anywhere but the pinned root.
        """
        name = server_name or self._server_name
        if not name:
            raise TrustError("No server name to verify the certificate against")

        try:
            certificates = [_as_certificate(cert) for cert in presented_chain]
        except ValueError as exc:
            raise TrustError(f"Malformed server certificate: {exc}") from exc
        if not certificates:
            raise TrustError("The server presented no certificates")

        leaf, intermediates = certificates[0], certificates[1:]
        builder = PolicyBuilder().store(Store([self._material.root]))
        if self._clock is not None:
            builder = builder.time(self._clock())
        try:
            verifier = builder.build_server_verifier(_subject_name(name))
            verifier.verify(leaf, intermediates)
        except Exception as exc:
            # Any evaluation failure rejects.
            raise TrustError(
                f"Server chain for {name} does not validate to the pinned root: {exc}"
            ) from exc

    # ------------------------------------------------------------------ #
    # Client identity
    # ------------------------------------------------------------------ #

    def supply_client_credential(
        self,
    ) -> tuple[PrivateKey, tuple[x509.Certificate, ...]]:
        """Return the client private key and certificate chain to present."""
        return self._material.private_key, self._material.chain

    # ------------------------------------------------------------------ #
    # Transport integration
    # ------------------------------------------------------------------ #

    def ssl_context(self) -> ssl.SSLContext:
        """Return the mutual-TLS context for this evaluator, building it once.

        The context trusts only the pinned root and presents the client
        identity when the server asks for a certificate.
        """
        with self._context_lock:
            if self._context is None:
                self._context = self._build_ssl_context()
            return self._context

    def check_response(self, response: httpx.Response) -> None:
        """httpx response hook re-evaluating the chain of the live connection.

        Skipped for plain HTTP, for transports that do not expose the
        network stream, and on interpreters without
        :meth:`ssl.SSLObject.get_unverified_chain`; the pinned
        :meth:`ssl_context` still applies in those cases.

        Raises:
            TrustError: If the peer chain does not validate to the pinned root.
        """
        stream = response.extensions.get("network_stream")
        if stream is None:
            return
        ssl_object = stream.get_extra_info("ssl_object")
        if ssl_object is None:
            return
        get_chain = getattr(ssl_object, "get_unverified_chain", None)
        if get_chain is None:
            return
        name = self._server_name or response.request.url.host
        self.verify_server(get_chain() or [], name)

    def _build_ssl_context(self) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.load_verify_locations(cadata=self._material.root_pem().decode("ascii"))

        # load_cert_chain only reads files; the key is written encrypted.
        password = secrets.token_urlsafe(32)
        key_pem = self._material.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(password.encode("ascii")),
        )
        with tempfile.TemporaryDirectory(prefix="festivals-api-tls-") as tmp:
            cert_path = Path(tmp) / "chain.pem"
            key_path = Path(tmp) / "key.pem"
            cert_path.write_bytes(self._material.chain_pem())
            key_path.write_bytes(key_pem)
            context.load_cert_chain(cert_path, key_path, password=password)
        logger.debug(
            "Built mutual-TLS context pinned to %s",
            self._material.root.subject.rfc4514_string(),
        )
        return context


def _as_certificate(value: Any) -> x509.Certificate:
    if isinstance(value, x509.Certificate):
        return value
    if isinstance(value, (bytes, bytearray)):
        data = bytes(value)
        if b"-----BEGIN" in data:
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)
    raise ValueError(f"unsupported certificate type {type(value).__name__}")


def _subject_name(name: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(name))
    except ValueError:
        return x509.DNSName(name)
