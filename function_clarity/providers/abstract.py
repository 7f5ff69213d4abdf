#!/usr/bin/env python3
"""
Provider capability interfaces.

The engine depends on these narrow Protocols, never on full cloud SDK clients.
AWS implementations live next to this module (lambda_adapter, s3_adapter, sns_adapter,
registry_adapter); tests use in-memory fakes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from ..models import AttachedSignature


@dataclass(frozen=True)
class FunctionDescription:
    function_identity: str
    package_type: str
    code_sha256: Optional[str] = None
    code_location: Optional[str] = None
    image_uri: Optional[str] = None
    resolved_image_uri: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)


class FunctionClient(Protocol):
    """
    Compute-function management capability.

    - describe(identity) -> FunctionDescription (raises ArtifactNotFound when the function is gone)
    - list_tags(identity) -> dict
    - tag(identity, tags)                : overwrite of the given tag keys
    - put_concurrency(identity, limit)   : overwrite of the reserved concurrency
    - get_concurrency(identity) -> Optional[int]
    - get_environment / update_environment : used for operator reconfiguration
    """
    def describe(self, function_identity: str) -> FunctionDescription:
        ...

    def list_tags(self, function_identity: str) -> Dict[str, str]:
        ...

    def tag(self, function_identity: str, tags: Dict[str, str]) -> None:
        ...

    def put_concurrency(self, function_identity: str, limit: int) -> None:
        ...

    def get_concurrency(self, function_identity: str) -> Optional[int]:
        ...

    def get_environment(self, function_identity: str) -> Dict[str, str]:
        ...

    def update_environment(self, function_identity: str, variables: Dict[str, str]) -> None:
        ...


class CodeDownloader(Protocol):
    def download(self, location: str) -> bytes:
        ...


class SignatureStore(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        ...


class RegistryClient(Protocol):
    def manifest_exists(self, registry: str, repository: str, digest: str) -> bool:
        ...

    def signatures(self, registry: str, repository: str, digest: str) -> List[AttachedSignature]:
        ...


class Notifier(Protocol):
    def publish(self, subject: str, message: str, attributes: Optional[Dict[str, str]] = None) -> str:
        ...


class QueueReader(Protocol):
    def receive(self, max_messages: int = 10) -> Sequence[str]:
        ...
