#!/usr/bin/env python3
"""
AWS Lambda adapter using boto3.

Implements FunctionClient. Every write is a full overwrite of one attribute (tag keys,
reserved concurrency), so repeating a call converges to the same state.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..error_handling import ArtifactNotFound, ProviderError
from .abstract import FunctionClient, FunctionDescription

logger = logging.getLogger(__name__)

_NOT_FOUND = {"ResourceNotFoundException", "404"}
_TRANSIENT = {
    "TooManyRequestsException",
    "ThrottlingException",
    "ServiceException",
    "ResourceConflictException",
    "EC2ThrottledException",
    "RequestTimeout",
}


def translate_client_error(e: Exception, operation: str, function_identity: str) -> Exception:
    ctx = {"function_identity": function_identity, "operation": operation}
    if isinstance(e, ClientError):
        code = e.response.get("Error", {}).get("Code", "")
        status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        if code in _NOT_FOUND:
            return ArtifactNotFound(f"{operation}: function not found", ctx)
        err = ProviderError(f"{operation} failed: {code}", ctx)
        err.retryable = code in _TRANSIENT or status >= 500
        return err
    return ProviderError(f"{operation} failed: {e}", ctx)


class LambdaFunctionAdapter(FunctionClient):
    def __init__(self, region: Optional[str] = None, client=None, session: Optional[boto3.session.Session] = None):
        if client is None:
            session = session or boto3.session.Session()
            client = session.client("lambda", region_name=region)
        self.client = client

    def describe(self, function_identity: str) -> FunctionDescription:
        try:
            resp = self.client.get_function(FunctionName=function_identity)
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, "GetFunction", function_identity) from e
        cfg = resp.get("Configuration", {})
        code = resp.get("Code", {})
        return FunctionDescription(
            function_identity=cfg.get("FunctionArn") or function_identity,
            package_type=cfg.get("PackageType") or "Zip",
            code_sha256=cfg.get("CodeSha256"),
            code_location=code.get("Location"),
            image_uri=code.get("ImageUri"),
            resolved_image_uri=code.get("ResolvedImageUri"),
            tags=dict(resp.get("Tags") or {}),
        )

    def list_tags(self, function_identity: str) -> Dict[str, str]:
        try:
            resp = self.client.list_tags(Resource=self._arn(function_identity))
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, "ListTags", function_identity) from e
        return dict(resp.get("Tags") or {})

    def tag(self, function_identity: str, tags: Dict[str, str]) -> None:
        try:
            self.client.tag_resource(Resource=self._arn(function_identity), Tags=dict(tags))
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, "TagResource", function_identity) from e

    def put_concurrency(self, function_identity: str, limit: int) -> None:
        try:
            self.client.put_function_concurrency(FunctionName=function_identity, ReservedConcurrentExecutions=int(limit))
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, "PutFunctionConcurrency", function_identity) from e

    def get_concurrency(self, function_identity: str) -> Optional[int]:
        try:
            resp = self.client.get_function_concurrency(FunctionName=function_identity)
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, "GetFunctionConcurrency", function_identity) from e
        return resp.get("ReservedConcurrentExecutions")

    def get_environment(self, function_identity: str) -> Dict[str, str]:
        try:
            resp = self.client.get_function_configuration(FunctionName=function_identity)
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, "GetFunctionConfiguration", function_identity) from e
        return dict((resp.get("Environment") or {}).get("Variables") or {})

    def update_environment(self, function_identity: str, variables: Dict[str, str]) -> None:
        try:
            self.client.update_function_configuration(FunctionName=function_identity, Environment={"Variables": dict(variables)})
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, "UpdateFunctionConfiguration", function_identity) from e

    def _arn(self, function_identity: str) -> str:
        # TagResource/ListTags only accept ARNs
        if function_identity.startswith("arn:"):
            return function_identity
        return self.describe(function_identity).function_identity
