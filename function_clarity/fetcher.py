#!/usr/bin/env python3
"""
Artifact fetcher.

- fetch(request): re-describes the function and retrieves what is deployed right now:
  the code package bytes, or the image's resolved manifest digest (no layers are pulled)
- signatures(artifact, digest): discovers signatures attached out-of-band
  * code packages: objects next to each other in the signature bucket, keyed by the hex digest
    (<hex>.sig base64 signature, <hex>.crt PEM chain, <hex>.bundle Rekor bundle)
  * images: cosign-style registry attachments (see providers.registry_adapter)

ArtifactNotFound means the locator does not resolve; ArtifactUnavailable is transient.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import List, Optional

from .digest import hex_part
from .error_handling import ArtifactNotFound, InvalidConfig
from .models import ArtifactKind, AttachedSignature, FetchedArtifact, ImageLocator, VerificationRequest, split_pem_chain
from .providers.abstract import CodeDownloader, FunctionClient, RegistryClient, SignatureStore

logger = logging.getLogger(__name__)


def _maybe_b64(data: bytes) -> bytes:
    stripped = data.strip()
    if stripped.startswith(b"-----BEGIN"):
        return stripped
    try:
        return base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError):
        return stripped


class ArtifactFetcher:
    def __init__(
        self,
        functions: FunctionClient,
        downloader: CodeDownloader,
        registry: RegistryClient,
        signature_store: Optional[SignatureStore] = None,
    ):
        self.functions = functions
        self.downloader = downloader
        self.registry = registry
        self.signature_store = signature_store

    def fetch(self, request: VerificationRequest) -> FetchedArtifact:
        description = self.functions.describe(request.function_identity)
        if description.package_type == "Image":
            uri = description.resolved_image_uri or description.image_uri
            if not uri or "@sha256:" not in uri:
                raise ArtifactNotFound(
                    "Deployed image has no content-addressed digest",
                    {"function_identity": request.function_identity, "image_uri": uri},
                )
            image = ImageLocator(image_uri=uri, digest=uri.split("@", 1)[1])
            if not self.registry.manifest_exists(image.registry, image.repository, image.digest):
                raise ArtifactNotFound(
                    f"Image manifest {image.repository}@{image.digest} does not exist",
                    {"function_identity": request.function_identity},
                )
            return FetchedArtifact(kind=ArtifactKind.CONTAINER_IMAGE, digest=image.digest, image=image)

        if not description.code_location:
            raise ArtifactNotFound("Function has no code location", {"function_identity": request.function_identity})
        content = self.downloader.download(description.code_location)
        return FetchedArtifact(kind=ArtifactKind.CODE_PACKAGE, content=content, reported_sha256=description.code_sha256)

    def signatures(self, artifact: FetchedArtifact, digest: str) -> List[AttachedSignature]:
        if artifact.kind == ArtifactKind.CONTAINER_IMAGE:
            return self.registry.signatures(artifact.image.registry, artifact.image.repository, digest)
        return self._code_signatures(digest)

    def _code_signatures(self, digest: str) -> List[AttachedSignature]:
        if self.signature_store is None:
            raise InvalidConfig("bucket must be configured to verify code-package signatures")
        hex_digest = hex_part(digest)
        raw_sig = self.signature_store.get(f"{hex_digest}.sig")
        if raw_sig is None:
            return []

        chain = ()
        raw_cert = self.signature_store.get(f"{hex_digest}.crt")
        if raw_cert:
            chain = split_pem_chain(_maybe_b64(raw_cert))

        bundle = None
        raw_bundle = self.signature_store.get(f"{hex_digest}.bundle")
        if raw_bundle:
            try:
                bundle = json.loads(raw_bundle)
            except ValueError:
                logger.warning("Ignoring unparsable Rekor bundle for %s", digest)

        return [AttachedSignature(
            # an undecodable signature is kept raw and fails verification
            signature=_maybe_b64(raw_sig),
            payload=hex_digest.encode("utf-8"),
            certificate_chain=chain,
            rekor_bundle=bundle,
            source=f"{hex_digest}.sig",
        )]
