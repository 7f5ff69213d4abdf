import base64
import hashlib
import json

import pytest
import requests

from function_clarity.error_handling import TransparencyLogUnavailable
from function_clarity.verification.tlog import RekorClient, entry_from_bundle

from conftest import ec_sign, hashedrekord_body, make_bundle, pem_public

PAYLOAD = b"d" * 64


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload


class FakeHTTP:
    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, kwargs))
        handler = self.routes[(method, url)]
        if isinstance(handler, Exception):
            raise handler
        return handler


@pytest.fixture
def signed(pki):
    key, chain = pki.issue()
    return ec_sign(key, PAYLOAD), chain[0]


def test_bundle_parsing_and_set_verification(signed, rekor_key, other_key):
    signature, leaf = signed
    bundle = make_bundle(PAYLOAD, signature, leaf, integrated_time=1700000000, rekor_key=rekor_key)
    entry = entry_from_bundle(bundle, pem_public(rekor_key))
    assert entry.integrated_time == 1700000000
    assert entry.log_index == 42
    assert entry.matches(signature, leaf, hashlib.sha256(PAYLOAD).hexdigest())

    assert entry_from_bundle(bundle, pem_public(other_key)) is None
    # without a configured log key the bundle is taken as-is
    assert entry_from_bundle(bundle) is not None


def test_malformed_bundle_is_ignored():
    assert entry_from_bundle({"Payload": {"body": "!!"}}) is None
    assert entry_from_bundle({}) is None


def test_undecodable_set_is_ignored(signed, rekor_key):
    signature, leaf = signed
    bundle = make_bundle(PAYLOAD, signature, leaf, rekor_key=rekor_key)
    bundle["SignedEntryTimestamp"] = "abc"
    assert entry_from_bundle(bundle, pem_public(rekor_key)) is None
    bundle["SignedEntryTimestamp"] = 17
    assert entry_from_bundle(bundle, pem_public(rekor_key)) is None


def test_online_search_finds_matching_entry(signed):
    signature, leaf = signed
    payload_hash = hashlib.sha256(PAYLOAD).hexdigest()
    body = base64.b64encode(json.dumps(hashedrekord_body(PAYLOAD, signature, leaf)).encode()).decode()
    other_body = base64.b64encode(json.dumps(hashedrekord_body(PAYLOAD, b"x", leaf)).encode()).decode()
    http = FakeHTTP({
        ("POST", "https://rekor.test/api/v1/index/retrieve"): FakeResponse(200, ["u1", "u2"]),
        ("GET", "https://rekor.test/api/v1/log/entries/u1"): FakeResponse(200, {"u1": {"body": other_body, "integratedTime": 1, "logIndex": 1, "logID": "l"}}),
        ("GET", "https://rekor.test/api/v1/log/entries/u2"): FakeResponse(200, {"u2": {"body": body, "integratedTime": 2, "logIndex": 2, "logID": "l"}}),
    })
    entry = RekorClient("https://rekor.test/", http=http).find_entry(payload_hash, signature, leaf)
    assert entry.uuid == "u2"
    assert http.requests[0][2]["json"] == {"hash": f"sha256:{payload_hash}"}


def test_online_search_without_hits(signed):
    signature, leaf = signed
    http = FakeHTTP({("POST", "https://rekor.test/api/v1/index/retrieve"): FakeResponse(200, [])})
    assert RekorClient("https://rekor.test", http=http).find_entry("00", signature, leaf) is None


@pytest.mark.parametrize("failure", [FakeResponse(503), FakeResponse(429), requests.ConnectionError("reset")])
def test_log_outage_is_retryable(signed, failure):
    signature, leaf = signed
    http = FakeHTTP({("POST", "https://rekor.test/api/v1/index/retrieve"): failure})
    with pytest.raises(TransparencyLogUnavailable) as exc:
        RekorClient("https://rekor.test", http=http).find_entry("00", signature, leaf)
    assert exc.value.retryable
