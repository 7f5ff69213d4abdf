"""Shared verification machinery: the Verifier interface and payload-to-digest binding."""
from __future__ import annotations

import abc
import json
import logging
from typing import Optional, Sequence, Tuple

from ..error_handling import FunctionClarityError
from ..models import (
    ArtifactKind,
    AttachedSignature,
    Evidence,
    VerificationOutcome,
    VerificationRequest,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


def payload_binds_digest(payload: bytes, digest: str, kind: ArtifactKind) -> bool:
    """
    Code packages sign the hex digest itself (optionally "sha256:"-prefixed).
    Images sign a simple-signing JSON document naming the manifest digest.
    """
    if kind == ArtifactKind.CODE_PACKAGE:
        text = payload.decode("utf-8", errors="replace").strip()
        return text == digest or "sha256:" + text == digest
    try:
        doc = json.loads(payload)
        signed = doc["critical"]["image"]["docker-manifest-digest"]
    except (ValueError, KeyError, TypeError):
        return False
    return signed == digest


class Verifier(abc.ABC):
    """
    Resolves one artifact digest plus its attached signatures to exactly one terminal status.

    - no signatures                      -> NotSigned
    - at least one signature checks out  -> Signed
    - otherwise                          -> SignatureInvalid
    """

    @abc.abstractmethod
    def check(self, digest: str, kind: ArtifactKind, signature: AttachedSignature) -> Tuple[bool, Evidence]:
        """Check a single attached signature. Returns (valid, evidence)."""

    def verify(self, request: VerificationRequest, digest: str, signatures: Sequence[AttachedSignature]) -> VerificationOutcome:
        if not signatures:
            return self._outcome(request, VerificationStatus.NOT_SIGNED, Evidence(digest=digest, reason="no signature attached"))

        last: Optional[Evidence] = None
        for signature in signatures:
            if not payload_binds_digest(signature.payload, digest, request.artifact_kind):
                last = Evidence(digest=digest, reason=f"signed payload does not name {digest}")
                continue
            try:
                valid, evidence = self.check(digest, request.artifact_kind, signature)
            except FunctionClarityError:
                raise
            except Exception as e:
                # attached material is untrusted
                logger.warning("Signature from %s could not be checked for %s: %r", signature.source or "attachment", request.function_identity, e)
                valid, evidence = False, Evidence(digest=digest, reason=f"signature material could not be checked: {type(e).__name__}")
            if valid:
                return self._outcome(request, VerificationStatus.SIGNED, evidence)
            logger.info("Signature from %s rejected for %s: %s", signature.source or "attachment", request.function_identity, evidence.reason)
            last = evidence
        return self._outcome(request, VerificationStatus.SIGNATURE_INVALID, last)

    @staticmethod
    def _outcome(request: VerificationRequest, status: VerificationStatus, evidence: Evidence) -> VerificationOutcome:
        return VerificationOutcome(
            status=status,
            evidence=evidence,
            function_identity=request.function_identity,
            observed_at=request.observed_at,
        )
