"""
Keyed verification: signatures checked against a long-lived public key.

Supports the key types produced by common signing tools:
- ECDSA (cosign default, P-256) with SHA256
- RSA PKCS#1 v1.5 with SHA256
- Ed25519

Do NOT log key material or signature bytes.
"""
from __future__ import annotations

import logging
from typing import Tuple

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from ..error_handling import InvalidConfig
from ..models import ArtifactKind, AttachedSignature, Evidence
from .base import Verifier

logger = logging.getLogger(__name__)


def load_public_key(public_key_pem: bytes):
    try:
        key = serialization.load_pem_public_key(public_key_pem)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise InvalidConfig(f"publicKey could not be loaded: {e}") from e
    if not isinstance(key, (ec.EllipticCurvePublicKey, rsa.RSAPublicKey, ed25519.Ed25519PublicKey)):
        raise InvalidConfig(f"Unsupported public key type: {type(key).__name__}")
    return key


def verify_with_key(key, signature: bytes, payload: bytes) -> bool:
    try:
        if isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(signature, payload, ec.ECDSA(hashes.SHA256()))
        elif isinstance(key, rsa.RSAPublicKey):
            key.verify(signature, payload, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(key, ed25519.Ed25519PublicKey):
            key.verify(signature, payload)
        else:
            return False
        return True
    except InvalidSignature:
        return False
    except ValueError:
        # malformed DER signature
        return False


class KeyedVerifier(Verifier):
    def __init__(self, public_key_pem: bytes):
        self.key = load_public_key(public_key_pem)

    def check(self, digest: str, kind: ArtifactKind, signature: AttachedSignature) -> Tuple[bool, Evidence]:
        if verify_with_key(self.key, signature.signature, signature.payload):
            return True, Evidence(digest=digest)
        return False, Evidence(digest=digest, reason="signature does not verify with the configured public key")
