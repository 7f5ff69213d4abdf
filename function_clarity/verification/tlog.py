#!/usr/bin/env python3
"""
Transparency-log lookups (Rekor).

Two ways to prove a signature was publicly recorded:
- an embedded Rekor bundle attached next to the signature (SignedEntryTimestamp + entry payload);
  when the Rekor public key is configured the SET signature is verified offline
- an online search of the log by payload hash, then matching the signature and certificate
  recorded in each candidate entry

A missing entry is returned as None; only transport failures raise (TransparencyLogUnavailable).
"""
from __future__ import annotations

import base64
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import requests
from cryptography import x509

from ..error_handling import TransparencyLogUnavailable
from .keyed import load_public_key, verify_with_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogEntry:
    uuid: str
    log_index: int
    integrated_time: int
    log_id: str
    body: Dict[str, Any] = field(default_factory=dict)

    def matches(self, signature: bytes, certificate_pem: bytes, payload_sha256: str) -> bool:
        spec = self.body.get("spec") or {}
        if self.body.get("kind") != "hashedrekord":
            return False
        try:
            recorded_hash = spec["data"]["hash"]["value"]
            recorded_sig = base64.b64decode(spec["signature"]["content"])
            recorded_cert = base64.b64decode(spec["signature"]["publicKey"]["content"])
        except (KeyError, TypeError, ValueError):
            return False
        if recorded_hash != payload_sha256 or recorded_sig != signature:
            return False
        try:
            recorded = x509.load_pem_x509_certificate(recorded_cert)
            presented = x509.load_pem_x509_certificate(certificate_pem)
        except ValueError:
            return False
        return recorded == presented

    def as_evidence(self) -> Dict[str, Any]:
        return {
            "uuid": self.uuid,
            "logIndex": self.log_index,
            "integratedTime": self.integrated_time,
            "logID": self.log_id,
        }


class TransparencyLog(Protocol):
    def find_entry(self, payload_sha256: str, signature: bytes, certificate_pem: bytes) -> Optional[LogEntry]:
        ...


def _decode_body(body_b64: str) -> Dict[str, Any]:
    return json.loads(base64.b64decode(body_b64))


def _canonical(doc: Dict[str, Any]) -> bytes:
    return json.dumps(doc, sort_keys=True, separators=(",", ":")).encode("utf-8")


def entry_from_bundle(bundle: Dict[str, Any], rekor_public_key: Optional[bytes] = None) -> Optional[LogEntry]:
    """Parse a cosign-style Rekor bundle. Returns None when it is malformed or its SET does not verify."""
    try:
        payload = bundle["Payload"]
        body = _decode_body(payload["body"])
        entry = LogEntry(
            uuid=hashlib.sha256(base64.b64decode(payload["body"])).hexdigest(),
            log_index=int(payload["logIndex"]),
            integrated_time=int(payload["integratedTime"]),
            log_id=str(payload["logID"]),
            body=body,
        )
    except (KeyError, TypeError, ValueError):
        logger.warning("Malformed Rekor bundle ignored")
        return None
    if rekor_public_key:
        try:
            set_sig = base64.b64decode(bundle.get("SignedEntryTimestamp") or "")
        except (TypeError, ValueError):
            logger.warning("Rekor bundle SignedEntryTimestamp is not base64; ignoring bundle")
            return None
        signed = {
            "body": payload["body"],
            "integratedTime": entry.integrated_time,
            "logIndex": entry.log_index,
            "logID": entry.log_id,
        }
        if not verify_with_key(load_public_key(rekor_public_key), set_sig, _canonical(signed)):
            logger.warning("Rekor bundle SignedEntryTimestamp does not verify; ignoring bundle")
            return None
    return entry


class RekorClient(TransparencyLog):
    def __init__(self, base_url: str, http: Optional[requests.Session] = None, timeout: float = 15.0, max_candidates: int = 20):
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()
        self.timeout = timeout
        self.max_candidates = max_candidates

    def _call(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransparencyLogUnavailable(f"{method} {url} failed: {e}") from e
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransparencyLogUnavailable(f"{method} {url} returned HTTP {resp.status_code}")
        return resp

    def find_entry(self, payload_sha256: str, signature: bytes, certificate_pem: bytes) -> Optional[LogEntry]:
        resp = self._call("POST", "/api/v1/index/retrieve", json={"hash": f"sha256:{payload_sha256}"})
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise TransparencyLogUnavailable(f"Rekor index search returned HTTP {resp.status_code}")
        uuids = resp.json() or []
        for uuid in uuids[: self.max_candidates]:
            entry = self._entry(uuid)
            if entry is not None and entry.matches(signature, certificate_pem, payload_sha256):
                return entry
        return None

    def _entry(self, uuid: str) -> Optional[LogEntry]:
        resp = self._call("GET", f"/api/v1/log/entries/{uuid}")
        if resp.status_code != 200:
            return None
        for entry_uuid, raw in (resp.json() or {}).items():
            try:
                return LogEntry(
                    uuid=entry_uuid,
                    log_index=int(raw["logIndex"]),
                    integrated_time=int(raw["integratedTime"]),
                    log_id=str(raw.get("logID", "")),
                    body=_decode_body(raw["body"]),
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed Rekor entry %s", entry_uuid)
        return None
