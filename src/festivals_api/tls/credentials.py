"""Trust material extraction from a PKCS#12 client container.

The web service authenticates the SDK with mutual TLS. The client identity
(private key plus leaf certificate) and its issuing chain ship in a
password-protected PKCS#12 container; the root authority the server chain
must validate to is shipped separately. :func:`load_trust_material` turns
those byte buffers into an immutable :class:`TrustMaterial`.

This module never touches the disk or the network. Reading the files is
the job of :func:`festivals_api.config.load_trust_material_from_files`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from festivals_api.exceptions import CredentialError, CredentialErrorReason

logger = logging.getLogger(__name__)

PrivateKey = pkcs12.PKCS12PrivateKeyTypes


@dataclass(frozen=True)
class TrustMaterial:
    """Client identity, its certificate chain and the pinned root.

    Attributes:
        private_key: Private key of the client identity.
        certificate: Leaf certificate of the client identity.
        chain: Certificates presented to the server, leaf first, followed by
            every additional certificate of the container in container order.
        root: The only certificate authority a server chain may validate to.
    """

    private_key: PrivateKey
    certificate: x509.Certificate
    chain: tuple[x509.Certificate, ...]
    root: x509.Certificate

    def chain_pem(self) -> bytes:
        """Return :attr:`chain` as concatenated PEM blocks."""
        return b"".join(
            cert.public_bytes(serialization.Encoding.PEM) for cert in self.chain
        )

    def root_pem(self) -> bytes:
        return self.root.public_bytes(serialization.Encoding.PEM)


def load_trust_material(
    container: bytes,
    passphrase: Union[str, bytes, None],
    root: bytes,
) -> TrustMaterial:
    """Decrypt a PKCS#12 *container* and pair it with the pinned *root*.

    Args:
        container: Raw PKCS#12 bytes holding one private key, its leaf
            certificate and optionally its issuing chain.
        passphrase: Decryption secret of the container. ``None`` for an
            unencrypted container.
        root: The pinned root certificate, PEM or DER encoded.

    Returns:
        The loaded :class:`TrustMaterial`.

    Raises:
        CredentialError: ``DECODE_FAILED`` when the passphrase is wrong or
            the container is corrupt, ``MISSING_IDENTITY`` when the container
            holds no key or no certificate, ``MISSING_ROOT`` when *root* is
            not a certificate.
    """
    if isinstance(passphrase, str):
        passphrase = passphrase.encode("utf-8")

    try:
        private_key, certificate, additional = pkcs12.load_key_and_certificates(
            container, passphrase
        )
    except (ValueError, TypeError) as exc:
        raise CredentialError(
            f"Could not decode the client certificate container: {exc}",
            CredentialErrorReason.DECODE_FAILED,
        ) from exc

    if private_key is None or certificate is None:
        raise CredentialError(
            "The client certificate container holds no identity "
            "(a private key and its certificate are both required)",
            CredentialErrorReason.MISSING_IDENTITY,
        )

    material = TrustMaterial(
        private_key=private_key,
        certificate=certificate,
        chain=(certificate, *additional),
        root=_load_root(root),
    )
    logger.debug(
        "Loaded client identity %s with %d chain certificate(s)",
        certificate.subject.rfc4514_string(),
        len(material.chain),
    )
    return material


def _load_root(data: Optional[bytes]) -> x509.Certificate:
    if not data:
        raise CredentialError(
            "No root certificate was provided", CredentialErrorReason.MISSING_ROOT
        )
    try:
        if b"-----BEGIN" in data:
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)
    except ValueError as exc:
        raise CredentialError(
            f"Could not parse the root certificate: {exc}",
            CredentialErrorReason.MISSING_ROOT,
        ) from exc
