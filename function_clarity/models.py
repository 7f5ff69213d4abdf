#!/usr/bin/env python3
"""
Core data model shared by every stage of a verification cycle.

- VerificationRequest : one deployed artifact to check
- VerificationOutcome : terminal result (Signed / NotSigned / SignatureInvalid) plus evidence
- EnforcementRecord   : side effect applied to the monitored function
- RESULT_TAG_KEY / result_tag_value : the fixed result-tag vocabulary, kept in one place so
  the enforcement writer and any consumer read the same literal strings
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


class ArtifactKind(str, enum.Enum):
    CODE_PACKAGE = "CodePackage"
    CONTAINER_IMAGE = "ContainerImage"


class VerificationStatus(str, enum.Enum):
    SIGNED = "Signed"
    NOT_SIGNED = "NotSigned"
    SIGNATURE_INVALID = "SignatureInvalid"


RESULT_TAG_KEY = "FunctionVerifyResult"

_RESULT_TAG_VALUES: Dict[VerificationStatus, str] = {
    VerificationStatus.SIGNED: "Function signed and verified",
    VerificationStatus.NOT_SIGNED: "Function not signed",
    VerificationStatus.SIGNATURE_INVALID: "Function signature verification failed",
}


def result_tag_value(status: VerificationStatus) -> str:
    return _RESULT_TAG_VALUES[VerificationStatus(status)]


def status_from_tag_value(value: str) -> Optional[VerificationStatus]:
    for status, literal in _RESULT_TAG_VALUES.items():
        if literal == value:
            return status
    return None


@dataclass(frozen=True)
class CodeLocator:
    # Lambda reports CodeSha256 as base64 of the raw sha256 of the deployed zip
    function_identity: str
    code_sha256: Optional[str] = None


@dataclass(frozen=True)
class ImageLocator:
    image_uri: str
    digest: Optional[str] = None

    @property
    def registry(self) -> str:
        return self.image_uri.split("/", 1)[0]

    @property
    def repository(self) -> str:
        rest = self.image_uri.split("/", 1)[1] if "/" in self.image_uri else self.image_uri
        if "@" in rest:
            return rest.split("@", 1)[0]
        # strip a tag but not a registry port
        name, _, tag = rest.rpartition(":")
        return name if name and "/" not in tag else rest

    @property
    def reference(self) -> str:
        if self.digest:
            return self.digest
        if "@" in self.image_uri:
            return self.image_uri.split("@", 1)[1]
        rest = self.image_uri.split("/", 1)[-1]
        name, _, tag = rest.rpartition(":")
        return tag if name and "/" not in tag else "latest"


@dataclass(frozen=True)
class VerificationRequest:
    function_identity: str
    artifact_kind: ArtifactKind
    artifact_locator: Any
    observed_at: datetime
    region: Optional[str] = None
    event_name: Optional[str] = None

    @property
    def function_name(self) -> str:
        # arn:aws:lambda:region:acct:function:name[:qualifier]
        parts = self.function_identity.split(":")
        if len(parts) >= 7 and parts[5] == "function":
            return parts[6]
        return self.function_identity


@dataclass(frozen=True)
class FetchedArtifact:
    kind: ArtifactKind
    content: Optional[bytes] = None
    digest: Optional[str] = None
    reported_sha256: Optional[str] = None
    image: Optional[ImageLocator] = None


@dataclass(frozen=True)
class AttachedSignature:
    """A signature discovered next to the artifact, with whatever material came along with it."""
    signature: bytes
    payload: bytes
    certificate_chain: Tuple[bytes, ...] = ()
    rekor_bundle: Optional[Dict[str, Any]] = None
    source: str = ""


def split_pem_chain(data: bytes) -> Tuple[bytes, ...]:
    """Split concatenated PEM certificates, keeping their order (leaf first)."""
    marker = b"-----END CERTIFICATE-----"
    certs = []
    for chunk in data.split(marker):
        start = chunk.find(b"-----BEGIN CERTIFICATE-----")
        if start == -1:
            continue
        certs.append(chunk[start:] + marker + b"\n")
    return tuple(certs)


@dataclass(frozen=True)
class Evidence:
    digest: str
    certificate: Optional[str] = None
    log_entry: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class VerificationOutcome:
    status: VerificationStatus
    evidence: Evidence
    function_identity: str
    observed_at: datetime

    @property
    def tag_value(self) -> str:
        return result_tag_value(self.status)


@dataclass(frozen=True)
class EnforcementRecord:
    # 0 blocks invocation, None leaves the reserved concurrency untouched
    concurrency_limit: Optional[int]
    result_tag: Tuple[str, str]


@dataclass
class CycleResult:
    cycle_id: str
    request: Optional[VerificationRequest] = None
    outcome: Optional[VerificationOutcome] = None
    record: Optional[EnforcementRecord] = None
    message_id: Optional[str] = None
    skipped_reason: Optional[str] = None
    retryable_failure: bool = False
    errors: List[str] = field(default_factory=list)
