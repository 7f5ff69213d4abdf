#!/usr/bin/env python3
"""
Canonical content digests.

- code packages: sha256 over the exact deployed bytes, as "sha256:<hex>"
- container images: the content-addressed manifest digest, never a mutable tag

Lambda reports CodeSha256 as base64 of the raw sha256; compute_code_digest cross-checks it
so a package that changed between describe and download is re-fetched instead of verified.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import io
import re
from typing import BinaryIO, Optional, Union

from .error_handling import ArtifactUnavailable, MalformedEvent
from .models import ArtifactKind, FetchedArtifact

_IMAGE_DIGEST_RE = re.compile(r"^sha256:[0-9a-f]{64}$")


def sha256_stream(stream: BinaryIO, chunk_size: int = 8192) -> str:
    h = hashlib.sha256()
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        h.update(chunk)
    return h.hexdigest()


def compute_code_digest(content: Union[bytes, BinaryIO], reported_sha256: Optional[str] = None) -> str:
    stream = io.BytesIO(content) if isinstance(content, (bytes, bytearray)) else content
    hex_digest = sha256_stream(stream)
    if reported_sha256:
        try:
            reported = base64.b64decode(reported_sha256, validate=True).hex()
        except (binascii.Error, ValueError):
            reported = reported_sha256.lower().replace("sha256:", "")
        if reported != hex_digest:
            raise ArtifactUnavailable(
                "Downloaded code package does not match the deployed CodeSha256",
                {"computed": hex_digest, "reported": reported},
            )
    return f"sha256:{hex_digest}"


def normalize_image_digest(digest: str) -> str:
    value = (digest or "").strip().lower()
    if not _IMAGE_DIGEST_RE.match(value):
        raise MalformedEvent(f"Not a content-addressed image digest: {digest!r}")
    return value


def compute_digest(artifact: FetchedArtifact) -> str:
    if artifact.kind == ArtifactKind.CODE_PACKAGE:
        if artifact.content is None:
            raise ArtifactUnavailable("Code package bytes were not fetched")
        return compute_code_digest(artifact.content, artifact.reported_sha256)
    return normalize_image_digest(artifact.digest or "")


def hex_part(digest: str) -> str:
    return digest.split(":", 1)[1] if ":" in digest else digest
