#!/usr/bin/env python3
"""
Keyless verification: short-lived certificates bound to an OIDC identity.

For each attached signature the checks run in this order, and the first failure rejects it:
1. the certificate chain leads to a trusted root (CA constraints on intermediates,
   code-signing EKU on the leaf)
2. the certificate identity: OIDC issuer extension equals the configured issuer and a
   SAN (email or URI) fully matches one of the configured subject patterns
3. the signature verifies with the certificate's public key over the signed payload
4. the signature is recorded in the transparency log (embedded bundle first, then an online search)
5. the log's integrated time falls inside the certificate's validity window

Certificates are short-lived, so "now" is never compared against their validity; the
log timestamp is what proves the signature was made while the certificate was valid.
"""
from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

import requests
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.x509.oid import ExtendedKeyUsageOID, ObjectIdentifier

from ..config import IdentityConstraints
from ..error_handling import InvalidConfig, ProviderError
from ..models import ArtifactKind, AttachedSignature, Evidence, split_pem_chain
from .base import Verifier
from .keyed import verify_with_key
from .tlog import LogEntry, TransparencyLog, entry_from_bundle

logger = logging.getLogger(__name__)

OIDC_ISSUER_V2_OID = ObjectIdentifier("1.3.6.1.4.1.57264.1.8")
OIDC_ISSUER_V1_OID = ObjectIdentifier("1.3.6.1.4.1.57264.1.1")
MAX_CHAIN_DEPTH = 5


def load_certificates(pem: bytes) -> List[x509.Certificate]:
    certs = []
    for block in split_pem_chain(pem):
        try:
            certs.append(x509.load_pem_x509_certificate(block))
        except ValueError as e:
            raise InvalidConfig(f"Trusted root is not a valid PEM certificate: {e}") from e
    if not certs:
        raise InvalidConfig("Trusted root PEM contains no certificates")
    return certs


def fetch_fulcio_roots(fulcio_url: str, http: Optional[requests.Session] = None, timeout: float = 15.0) -> List[x509.Certificate]:
    url = f"{fulcio_url.rstrip('/')}/api/v1/rootCert"
    http = http or requests.Session()
    try:
        resp = http.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise ProviderError(f"Fetching Fulcio roots from {url} failed: {e}") from e
    if resp.status_code != 200:
        raise ProviderError(f"Fetching Fulcio roots from {url} returned HTTP {resp.status_code}")
    return load_certificates(resp.content)


def _der_utf8(value: bytes) -> Optional[str]:
    # DER UTF8String: tag 0x0c, short or long-form length
    if len(value) < 2 or value[0] != 0x0C:
        return None
    length = value[1]
    offset = 2
    if length & 0x80:
        n = length & 0x7F
        length = int.from_bytes(value[2:2 + n], "big")
        offset = 2 + n
    return value[offset:offset + length].decode("utf-8", errors="replace")


def certificate_issuer(cert: x509.Certificate) -> Optional[str]:
    """OIDC issuer recorded by the CA, preferring the DER-encoded extension over the legacy raw one."""
    for oid, decode in ((OIDC_ISSUER_V2_OID, _der_utf8), (OIDC_ISSUER_V1_OID, lambda v: v.decode("utf-8", errors="replace"))):
        try:
            ext = cert.extensions.get_extension_for_oid(oid)
        except x509.ExtensionNotFound:
            continue
        raw = getattr(ext.value, "value", b"")
        issuer = decode(raw)
        if issuer:
            return issuer
    return None


def certificate_subjects(cert: x509.Certificate) -> List[str]:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return []
    return list(san.get_values_for_type(x509.RFC822Name)) + list(san.get_values_for_type(x509.UniformResourceIdentifier))


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        return bool(cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca)
    except x509.ExtensionNotFound:
        return False


def _issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(issuer)
        return True
    except (ValueError, TypeError, InvalidSignature):
        return False


class KeylessVerifier(Verifier):
    def __init__(
        self,
        constraints: IdentityConstraints,
        trusted_roots: Sequence[x509.Certificate],
        tlog: Optional[TransparencyLog] = None,
        rekor_public_key: Optional[bytes] = None,
    ):
        if not trusted_roots:
            raise InvalidConfig("Keyless verification needs at least one trusted root certificate")
        self.constraints = constraints
        self.trusted_roots = list(trusted_roots)
        self.tlog = tlog
        self.rekor_public_key = rekor_public_key
        self._patterns = []
        for pattern in constraints.subject_patterns:
            try:
                self._patterns.append(re.compile(pattern))
            except re.error as e:
                raise InvalidConfig(f"Invalid keyless subject pattern {pattern!r}: {e}") from e

    def check(self, digest: str, kind: ArtifactKind, signature: AttachedSignature) -> Tuple[bool, Evidence]:
        if not signature.certificate_chain:
            return False, Evidence(digest=digest, reason="no signing certificate attached")
        try:
            chain = [x509.load_pem_x509_certificate(c) for c in signature.certificate_chain]
        except ValueError as e:
            return False, Evidence(digest=digest, reason=f"unparsable signing certificate: {e}")
        leaf = chain[0]

        reason = self._check_chain(leaf, chain[1:])
        if reason:
            return False, Evidence(digest=digest, reason=reason)

        subject, reason = self._check_identity(leaf)
        if reason:
            return False, Evidence(digest=digest, certificate=subject, reason=reason)

        if not verify_with_key(leaf.public_key(), signature.signature, signature.payload):
            return False, Evidence(digest=digest, certificate=subject, reason="signature does not verify with the certificate key")

        entry = self._log_entry(signature)
        if entry is None:
            return False, Evidence(digest=digest, certificate=subject, reason="signature not found in the transparency log")

        integrated = datetime.fromtimestamp(entry.integrated_time, tz=timezone.utc)
        if not (leaf.not_valid_before_utc <= integrated <= leaf.not_valid_after_utc):
            return False, Evidence(
                digest=digest,
                certificate=subject,
                log_entry=entry.as_evidence(),
                reason="transparency log time is outside the certificate validity window",
            )
        return True, Evidence(digest=digest, certificate=subject, log_entry=entry.as_evidence())

    def _check_chain(self, leaf: x509.Certificate, intermediates: Sequence[x509.Certificate]) -> Optional[str]:
        try:
            eku = leaf.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        except x509.ExtensionNotFound:
            return "signing certificate has no extended key usage"
        if ExtendedKeyUsageOID.CODE_SIGNING not in eku:
            return "signing certificate is not valid for code signing"

        current = leaf
        for _ in range(MAX_CHAIN_DEPTH):
            if any(_issued_by(current, root) for root in self.trusted_roots):
                return None
            parent = next((c for c in intermediates if _is_ca(c) and _issued_by(current, c)), None)
            if parent is None:
                return "certificate chain does not lead to a trusted root"
            current = parent
        return "certificate chain is too long"

    def _check_identity(self, leaf: x509.Certificate) -> Tuple[Optional[str], Optional[str]]:
        issuer = certificate_issuer(leaf)
        subjects = certificate_subjects(leaf)
        first = subjects[0] if subjects else None
        if issuer != self.constraints.issuer:
            return first, f"certificate issuer {issuer!r} is not {self.constraints.issuer!r}"
        for subject in subjects:
            if any(p.fullmatch(subject) for p in self._patterns):
                return subject, None
        return first, f"certificate subject {subjects!r} matches no allowed pattern"

    def _log_entry(self, signature: AttachedSignature) -> Optional[LogEntry]:
        payload_sha256 = hashlib.sha256(signature.payload).hexdigest()
        leaf_pem = signature.certificate_chain[0]
        if signature.rekor_bundle:
            entry = entry_from_bundle(signature.rekor_bundle, self.rekor_public_key)
            if entry is not None and entry.matches(signature.signature, leaf_pem, payload_sha256):
                return entry
            logger.info("Embedded Rekor bundle from %s does not cover this signature; searching the log", signature.source or "attachment")
        if self.tlog is None:
            return None
        return self.tlog.find_entry(payload_sha256, signature.signature, leaf_pem)
