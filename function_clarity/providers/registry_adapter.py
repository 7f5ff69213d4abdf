#!/usr/bin/env python3
"""
OCI registry client for container-image artifacts.

- manifest_exists(registry, repository, digest): HEAD on the content-addressed manifest,
  no layers are downloaded
- signatures(registry, repository, digest): reads cosign-style attachments stored under the
  tag "sha256-<hex>.sig"; each layer blob is the signed payload and the layer annotations carry
  the signature, certificate, chain and Rekor bundle

ECR registries are authorised with a token from boto3 (ecr:GetAuthorizationToken);
other registries are accessed anonymously.
"""
from __future__ import annotations

import base64
import hashlib
import json
import logging
from typing import Dict, List, Mapping, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from ..error_handling import ArtifactUnavailable, ProviderError
from ..models import AttachedSignature, split_pem_chain
from .abstract import RegistryClient

logger = logging.getLogger(__name__)

MANIFEST_ACCEPT = ", ".join([
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
])
SIGNATURE_ANNOTATION = "dev.cosignproject.cosign/signature"
CERTIFICATE_ANNOTATION = "dev.sigstore.cosign/certificate"
CHAIN_ANNOTATION = "dev.sigstore.cosign/chain"
BUNDLE_ANNOTATION = "dev.sigstore.cosign/bundle"


def signature_tag(digest: str) -> str:
    return digest.replace(":", "-") + ".sig"


class OCIRegistryAdapter(RegistryClient):
    def __init__(self, region: Optional[str] = None, ecr_client=None, http: Optional[requests.Session] = None, timeout: float = 15.0, session: Optional[boto3.session.Session] = None):
        self.region = region
        self._ecr = ecr_client
        self._session = session
        self.http = http or requests.Session()
        self.timeout = timeout
        self._auth_headers: Dict[str, str] = {}

    def _ecr_client(self):
        if self._ecr is None:
            session = self._session or boto3.session.Session()
            self._ecr = session.client("ecr", region_name=self.region)
        return self._ecr

    def _authorization(self, registry: str) -> Optional[str]:
        if ".dkr.ecr." not in registry:
            return None
        if registry not in self._auth_headers:
            account = registry.split(".", 1)[0]
            try:
                data = self._ecr_client().get_authorization_token(registryIds=[account])["authorizationData"][0]
            except (ClientError, BotoCoreError) as e:
                raise ProviderError(f"ECR authorization for {registry} failed: {e}", {"registry": registry}) from e
            self._auth_headers[registry] = "Basic " + data["authorizationToken"]
        return self._auth_headers[registry]

    def _request(self, method: str, registry: str, path: str, accept: Optional[str] = None) -> requests.Response:
        headers = {}
        auth = self._authorization(registry)
        if auth:
            headers["Authorization"] = auth
        if accept:
            headers["Accept"] = accept
        url = f"https://{registry}/v2/{path}"
        try:
            resp = self.http.request(method, url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ArtifactUnavailable(f"{method} {url} failed: {e}", {"registry": registry}) from e
        if resp.status_code == 429 or resp.status_code >= 500:
            raise ArtifactUnavailable(f"{method} {url} returned HTTP {resp.status_code}", {"registry": registry})
        if resp.status_code in (401, 403):
            err = ProviderError(f"{method} {url} denied: HTTP {resp.status_code}", {"registry": registry})
            err.retryable = False
            raise err
        return resp

    def manifest_exists(self, registry: str, repository: str, digest: str) -> bool:
        resp = self._request("HEAD", registry, f"{repository}/manifests/{digest}", accept=MANIFEST_ACCEPT)
        if resp.status_code == 404:
            return False
        if resp.status_code != 200:
            raise ArtifactUnavailable(f"Unexpected HTTP {resp.status_code} for manifest {repository}@{digest}")
        return True

    def signatures(self, registry: str, repository: str, digest: str) -> List[AttachedSignature]:
        tag = signature_tag(digest)
        resp = self._request("GET", registry, f"{repository}/manifests/{tag}", accept=MANIFEST_ACCEPT)
        if resp.status_code == 404:
            return []
        if resp.status_code != 200:
            raise ArtifactUnavailable(f"Unexpected HTTP {resp.status_code} for {repository}:{tag}")
        try:
            manifest = resp.json()
        except ValueError as e:
            raise ArtifactUnavailable(f"Signature manifest {repository}:{tag} is not JSON") from e

        if not isinstance(manifest, dict):
            raise ArtifactUnavailable(f"Signature manifest {repository}:{tag} is not a JSON object")

        found = []
        layers = manifest.get("layers") or []
        for layer in layers if isinstance(layers, list) else []:
            annotations = (layer.get("annotations") or {}) if isinstance(layer, Mapping) else None
            if not isinstance(annotations, Mapping) or not all(isinstance(v, str) for v in annotations.values()):
                logger.warning("Skipping malformed signature layer in %s:%s", repository, tag)
                continue
            sig_b64 = annotations.get(SIGNATURE_ANNOTATION)
            if not sig_b64:
                continue
            blob = self._request("GET", registry, f"{repository}/blobs/{layer.get('digest')}")
            if blob.status_code != 200:
                raise ArtifactUnavailable(f"Signature payload {layer.get('digest')} unavailable: HTTP {blob.status_code}")
            payload = blob.content
            if "sha256:" + hashlib.sha256(payload).hexdigest() != layer.get("digest"):
                logger.warning("Skipping signature layer with mismatching blob digest in %s:%s", repository, tag)
                continue
            chain = b""
            if annotations.get(CERTIFICATE_ANNOTATION):
                chain += annotations[CERTIFICATE_ANNOTATION].encode("utf-8")
            if annotations.get(CHAIN_ANNOTATION):
                chain += b"\n" + annotations[CHAIN_ANNOTATION].encode("utf-8")
            bundle = None
            if annotations.get(BUNDLE_ANNOTATION):
                try:
                    bundle = json.loads(annotations[BUNDLE_ANNOTATION])
                except ValueError:
                    logger.warning("Ignoring unparsable Rekor bundle annotation in %s:%s", repository, tag)
            try:
                signature = base64.b64decode(sig_b64)
            except ValueError:
                logger.warning("Ignoring non-base64 signature annotation in %s:%s", repository, tag)
                continue
            found.append(AttachedSignature(
                signature=signature,
                payload=payload,
                certificate_chain=split_pem_chain(chain),
                rekor_bundle=bundle,
                source=f"{registry}/{repository}:{tag}",
            ))
        return found
