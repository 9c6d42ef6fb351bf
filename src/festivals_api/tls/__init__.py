"""Mutual-TLS support for festivals_api.

:func:`load_trust_material` extracts the client identity from a PKCS#12
container and pairs it with the pinned root. :class:`TrustEvaluator` uses
that material to accept or reject server chains and to build the
:class:`ssl.SSLContext` handed to httpx.
"""

from festivals_api.tls.credentials import TrustMaterial, load_trust_material
from festivals_api.tls.trust import TrustDecision, TrustEvaluator

__all__ = ["TrustDecision", "TrustEvaluator", "TrustMaterial", "load_trust_material"]
