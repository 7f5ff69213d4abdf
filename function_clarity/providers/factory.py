#!/usr/bin/env python3
"""
Provider factory.

Creates the provider adapters for one verification cycle from the resolved TrustPolicy
(region, bucket, notification topic). Adapters are built per cycle so a reconfiguration
that moves the bucket or topic takes effect on the next event.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import boto3
import requests

from ..config import TrustPolicy
from .abstract import CodeDownloader, FunctionClient, Notifier, RegistryClient, SignatureStore


@dataclass
class Providers:
    functions: FunctionClient
    downloader: CodeDownloader
    signatures: Optional[SignatureStore]
    registry: RegistryClient
    notifier: Optional[Notifier]
    http: Optional[requests.Session] = None

    def close(self) -> None:
        if self.http is not None:
            self.http.close()


def create_providers(policy: TrustPolicy, session: Optional[boto3.session.Session] = None) -> Providers:
    from .code_downloader import HTTPCodeDownloader
    from .lambda_adapter import LambdaFunctionAdapter
    from .registry_adapter import OCIRegistryAdapter
    from .s3_adapter import S3SignatureStore
    from .sns_adapter import SNSNotifier

    session = session or boto3.session.Session()
    http = requests.Session()
    return Providers(
        functions=LambdaFunctionAdapter(region=policy.region, session=session),
        downloader=HTTPCodeDownloader(http=http),
        signatures=S3SignatureStore(policy.bucket, region=policy.region, session=session) if policy.bucket else None,
        registry=OCIRegistryAdapter(region=policy.region, http=http, session=session),
        notifier=SNSNotifier(policy.notification_channel, region=policy.region, session=session) if policy.notification_channel else None,
        http=http,
    )
