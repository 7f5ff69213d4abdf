#!/usr/bin/env python3
"""
S3 signature store using boto3.

Code-package signatures are stored next to each other in one bucket, keyed by digest:
  <digest>.sig     base64 signature
  <digest>.crt     PEM certificate chain (keyless only)
  <digest>.bundle  Rekor bundle JSON (optional)
"""
from __future__ import annotations

from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..error_handling import ProviderError
from .abstract import SignatureStore

_MISSING = {"NoSuchKey", "404", "NotFound"}


class S3SignatureStore(SignatureStore):
    def __init__(self, bucket: str, region: Optional[str] = None, client=None, session: Optional[boto3.session.Session] = None):
        if client is None:
            session = session or boto3.session.Session()
            client = session.client("s3", region_name=region)
        self.client = client
        self.bucket = bucket

    def get(self, key: str) -> Optional[bytes]:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
            return resp["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _MISSING:
                return None
            raise ProviderError(f"GetObject s3://{self.bucket}/{key} failed: {code}", {"bucket": self.bucket}) from e
        except BotoCoreError as e:
            raise ProviderError(f"GetObject s3://{self.bucket}/{key} failed: {e}", {"bucket": self.bucket}) from e
