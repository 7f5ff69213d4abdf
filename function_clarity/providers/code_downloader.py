"""
Download the deployed code package from the pre-signed location returned by GetFunction.
The bytes fetched here are the bytes that execute; they are never re-read from the publisher's copy.
"""
from __future__ import annotations

from typing import Optional

import requests

from ..error_handling import ArtifactNotFound, ArtifactUnavailable
from .abstract import CodeDownloader


class HTTPCodeDownloader(CodeDownloader):
    def __init__(self, http: Optional[requests.Session] = None, timeout: float = 60.0, chunk_size: int = 1 << 16):
        self.http = http or requests.Session()
        self.timeout = timeout
        self.chunk_size = chunk_size

    def download(self, location: str) -> bytes:
        try:
            with self.http.get(location, stream=True, timeout=self.timeout) as resp:
                if resp.status_code == 404:
                    raise ArtifactNotFound("Code location returned HTTP 404")
                # 403 is usually an expired pre-signed URL; a retry re-describes the function
                if resp.status_code != 200:
                    raise ArtifactUnavailable(f"Code location returned HTTP {resp.status_code}")
                return b"".join(resp.iter_content(chunk_size=self.chunk_size))
        except requests.RequestException as e:
            raise ArtifactUnavailable(f"Code download failed: {e}") from e
