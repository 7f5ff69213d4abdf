"""
Signature verification.

build_verifier picks the verifier variant from the trust policy mode. Exactly one variant
is active per cycle; a keyed policy never consults keyless material and vice versa.
"""
from __future__ import annotations

from typing import Optional

import requests

from ..config import Mode, TrustPolicy
from .base import Verifier, payload_binds_digest
from .keyed import KeyedVerifier, load_public_key, verify_with_key
from .keyless import KeylessVerifier, fetch_fulcio_roots, load_certificates
from .tlog import LogEntry, RekorClient, TransparencyLog, entry_from_bundle


def build_verifier(policy: TrustPolicy, tlog: Optional[TransparencyLog] = None, http: Optional[requests.Session] = None) -> Verifier:
    if policy.mode == Mode.KEYED:
        return KeyedVerifier(policy.public_key)

    constraints = policy.identity_constraints
    if constraints.trusted_root_pem:
        roots = load_certificates(constraints.trusted_root_pem.encode("utf-8"))
    else:
        roots = fetch_fulcio_roots(constraints.fulcio_url, http=http)
    rekor_key = constraints.rekor_public_key.encode("utf-8") if constraints.rekor_public_key else None
    return KeylessVerifier(
        constraints,
        roots,
        tlog=tlog or RekorClient(constraints.rekor_url, http=http),
        rekor_public_key=rekor_key,
    )


__all__ = [
    "Verifier",
    "KeyedVerifier",
    "KeylessVerifier",
    "LogEntry",
    "RekorClient",
    "TransparencyLog",
    "build_verifier",
    "entry_from_bundle",
    "fetch_fulcio_roots",
    "load_certificates",
    "load_public_key",
    "payload_binds_digest",
    "verify_with_key",
]
