# tests/conftest.py
"""
Shared fixtures: in-memory fakes of the provider Protocols, plus signing keys, a small
certificate authority and Rekor-style log material generated with `cryptography`.
Nothing here touches the network.
"""
import base64
import hashlib
import json
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID, ObjectIdentifier

from function_clarity.error_handling import ArtifactNotFound
from function_clarity.providers.abstract import FunctionDescription
from function_clarity.providers.factory import Providers

ISSUER = "https://token.actions.githubusercontent.com"
SUBJECT = "https://github.com/acme/payments/.github/workflows/release.yml@refs/heads/main"
REGION = "us-east-1"
INCLUDE_TAG = "funcclarity-include"


def function_arn(name):
    return f"arn:aws:lambda:{REGION}:123456789012:function:{name}"


def pem_public(key):
    return key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def ec_sign(key, payload):
    return key.sign(payload, ec.ECDSA(hashes.SHA256()))


# ---------------------------------------------------------------- fakes


class FakeFunctions:
    """FunctionClient backed by dicts. `failures[op]` is a list of exceptions raised before succeeding."""

    def __init__(self):
        self.descriptions = {}
        self.tags = {}
        self.concurrency = {}
        self.environment = {}
        self.failures = {}
        self.calls = []

    def add(self, description, tags=None):
        self.descriptions[description.function_identity] = description
        self.tags[description.function_identity] = dict(tags or {})

    def _maybe_fail(self, op):
        pending = self.failures.get(op)
        if pending:
            raise pending.pop(0)

    def _known(self, identity):
        if identity not in self.descriptions and identity not in self.environment:
            raise ArtifactNotFound(f"{identity} not found")

    def describe(self, function_identity):
        self.calls.append(("describe", function_identity))
        self._maybe_fail("describe")
        if function_identity not in self.descriptions:
            raise ArtifactNotFound(f"{function_identity} not found")
        return self.descriptions[function_identity]

    def list_tags(self, function_identity):
        self.calls.append(("list_tags", function_identity))
        self._maybe_fail("list_tags")
        self._known(function_identity)
        return dict(self.tags.get(function_identity, {}))

    def tag(self, function_identity, tags):
        self.calls.append(("tag", function_identity))
        self._maybe_fail("tag")
        self.tags.setdefault(function_identity, {}).update(tags)

    def put_concurrency(self, function_identity, limit):
        self.calls.append(("put_concurrency", function_identity))
        self._maybe_fail("put_concurrency")
        self.concurrency[function_identity] = limit

    def get_concurrency(self, function_identity):
        return self.concurrency.get(function_identity)

    def get_environment(self, function_identity):
        self._known(function_identity)
        return dict(self.environment.get(function_identity, {}))

    def update_environment(self, function_identity, variables):
        self.environment[function_identity] = dict(variables)


class FakeDownloader:
    def __init__(self):
        self.objects = {}
        self.failures = []

    def download(self, location):
        if self.failures:
            raise self.failures.pop(0)
        if location not in self.objects:
            raise ArtifactNotFound(f"{location} not found")
        return self.objects[location]


class FakeSignatureStore:
    def __init__(self):
        self.objects = {}

    def get(self, key):
        return self.objects.get(key)


class FakeRegistry:
    def __init__(self):
        self.manifests = set()
        self.attached = {}

    def manifest_exists(self, registry, repository, digest):
        return (registry, repository, digest) in self.manifests

    def signatures(self, registry, repository, digest):
        return list(self.attached.get((registry, repository, digest), []))


class FakeNotifier:
    def __init__(self):
        self.messages = []
        self.failures = []

    def publish(self, subject, message, attributes=None):
        if self.failures:
            raise self.failures.pop(0)
        self.messages.append({"subject": subject, "message": message, "attributes": attributes or {}})
        return f"msg-{len(self.messages)}"


class FakeQueue:
    def __init__(self, batches=None):
        self.batches = list(batches or [])
        self.receives = 0

    def receive(self, max_messages=10):
        self.receives += 1
        return self.batches.pop(0) if self.batches else []


class FakeTlog:
    def __init__(self, entries=None, failures=None):
        self.entries = list(entries or [])
        self.failures = list(failures or [])
        self.lookups = 0

    def find_entry(self, payload_sha256, signature, certificate_pem):
        self.lookups += 1
        if self.failures:
            raise self.failures.pop(0)
        for entry in self.entries:
            if entry.matches(signature, certificate_pem, payload_sha256):
                return entry
        return None


# ---------------------------------------------------------------- crypto material


@pytest.fixture(scope="session")
def signing_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def public_key_pem(signing_key):
    return pem_public(signing_key)


@pytest.fixture(scope="session")
def other_key():
    return ec.generate_private_key(ec.SECP256R1())


def _der_utf8(text):
    raw = text.encode("utf-8")
    assert len(raw) < 128
    return bytes([0x0C, len(raw)]) + raw


def _name(cn):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])


class TestPKI:
    """Root -> intermediate -> short-lived leaf, shaped like a keyless signing CA."""

    __test__ = False

    def __init__(self):
        now = datetime.now(timezone.utc)
        self.root_key = ec.generate_private_key(ec.SECP256R1())
        self.root = (
            x509.CertificateBuilder()
            .subject_name(_name("test-root"))
            .issuer_name(_name("test-root"))
            .public_key(self.root_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=365))
            .add_extension(x509.BasicConstraints(ca=True, path_length=1), critical=True)
            .sign(self.root_key, hashes.SHA256())
        )
        self.intermediate_key = ec.generate_private_key(ec.SECP256R1())
        self.intermediate = (
            x509.CertificateBuilder()
            .subject_name(_name("test-intermediate"))
            .issuer_name(self.root.subject)
            .public_key(self.intermediate_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=365))
            .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
            .sign(self.root_key, hashes.SHA256())
        )
        self.root_pem = self.root.public_bytes(serialization.Encoding.PEM)
        self.intermediate_pem = self.intermediate.public_bytes(serialization.Encoding.PEM)

    def issue(self, subject=SUBJECT, issuer=ISSUER, code_signing=True, legacy_issuer=False,
              not_before=None, lifetime=timedelta(minutes=10), signer=None):
        """Returns (leaf_key, chain) where chain is (leaf_pem, intermediate_pem)."""
        key = ec.generate_private_key(ec.SECP256R1())
        start = not_before or datetime.now(timezone.utc) - timedelta(minutes=1)
        builder = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([]))
            .issuer_name(self.intermediate.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(start)
            .not_valid_after(start + lifetime)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        )
        san = x509.RFC822Name(subject) if "@" in subject and "://" not in subject else x509.UniformResourceIdentifier(subject)
        builder = builder.add_extension(x509.SubjectAlternativeName([san]), critical=True)
        usage = [ExtendedKeyUsageOID.CODE_SIGNING] if code_signing else [ExtendedKeyUsageOID.CLIENT_AUTH]
        builder = builder.add_extension(x509.ExtendedKeyUsage(usage), critical=False)
        if issuer:
            if legacy_issuer:
                ext = x509.UnrecognizedExtension(ObjectIdentifier("1.3.6.1.4.1.57264.1.1"), issuer.encode("utf-8"))
            else:
                ext = x509.UnrecognizedExtension(ObjectIdentifier("1.3.6.1.4.1.57264.1.8"), _der_utf8(issuer))
            builder = builder.add_extension(ext, critical=False)
        leaf = builder.sign(signer or self.intermediate_key, hashes.SHA256())
        return key, (leaf.public_bytes(serialization.Encoding.PEM), self.intermediate_pem)


@pytest.fixture(scope="session")
def pki():
    return TestPKI()


@pytest.fixture(scope="session")
def rekor_key():
    return ec.generate_private_key(ec.SECP256R1())


def hashedrekord_body(payload, signature, leaf_pem):
    return {
        "apiVersion": "0.0.1",
        "kind": "hashedrekord",
        "spec": {
            "data": {"hash": {"algorithm": "sha256", "value": hashlib.sha256(payload).hexdigest()}},
            "signature": {
                "content": base64.b64encode(signature).decode(),
                "publicKey": {"content": base64.b64encode(leaf_pem).decode()},
            },
        },
    }


def make_bundle(payload, signature, leaf_pem, integrated_time=None, rekor_key=None, log_index=42):
    body_b64 = base64.b64encode(json.dumps(hashedrekord_body(payload, signature, leaf_pem)).encode()).decode()
    signed = {
        "body": body_b64,
        "integratedTime": int(integrated_time if integrated_time is not None else time.time()),
        "logIndex": log_index,
        "logID": "c0d23d6ad406973f9559f3ba2d1ca01f84147d8ffc5b8445c224f98b9591801d",
    }
    set_sig = b""
    if rekor_key is not None:
        canonical = json.dumps(signed, sort_keys=True, separators=(",", ":")).encode()
        set_sig = ec_sign(rekor_key, canonical)
    return {"SignedEntryTimestamp": base64.b64encode(set_sig).decode(), "Payload": signed}


@pytest.fixture
def bundle_factory():
    return make_bundle


# ---------------------------------------------------------------- configuration


def config_blob(**overrides):
    raw = {
        "region": REGION,
        "bucket": "function-clarity-signatures",
        "isKeyless": False,
        "publicKey": "",
        "action": "block",
        "snsTopicArn": f"arn:aws:sns:{REGION}:123456789012:function-clarity",
        "includedFuncTagKeys": [INCLUDE_TAG],
        "maxAttempts": 2,
        "cycleTimeoutSeconds": 60,
    }
    raw.update(overrides)
    return base64.b64encode(yaml.safe_dump(raw).encode()).decode()


@pytest.fixture
def make_config():
    return config_blob


# ---------------------------------------------------------------- world


@pytest.fixture
def world():
    """
    One fake account: functions, code store, signature bucket, registry, topic and log.
    `world.providers(policy)` is a drop-in provider factory for the engine.
    """
    ns = SimpleNamespace(
        functions=FakeFunctions(),
        downloader=FakeDownloader(),
        store=FakeSignatureStore(),
        registry=FakeRegistry(),
        notifier=FakeNotifier(),
        tlog=FakeTlog(),
        policies=[],
    )

    def providers(policy):
        ns.policies.append(policy)
        return Providers(
            functions=ns.functions,
            downloader=ns.downloader,
            signatures=ns.store,
            registry=ns.registry,
            notifier=ns.notifier,
        )

    def deploy_code(name, content, tags=None):
        arn = function_arn(name)
        location = f"https://awslambda-{REGION}-tasks.s3.amazonaws.com/snapshots/{name}.zip"
        ns.downloader.objects[location] = content
        ns.functions.add(
            FunctionDescription(
                function_identity=arn,
                package_type="Zip",
                code_sha256=base64.b64encode(hashlib.sha256(content).digest()).decode(),
                code_location=location,
            ),
            tags={INCLUDE_TAG: ""} if tags is None else tags,
        )
        return arn

    def deploy_image(name, repository="123456789012.dkr.ecr.us-east-1.amazonaws.com/payments", tags=None):
        arn = function_arn(name)
        digest = "sha256:" + hashlib.sha256(name.encode()).hexdigest()
        registry, repo = repository.split("/", 1)
        ns.registry.manifests.add((registry, repo, digest))
        ns.functions.add(
            FunctionDescription(
                function_identity=arn,
                package_type="Image",
                image_uri=f"{repository}:v1",
                resolved_image_uri=f"{repository}@{digest}",
            ),
            tags={INCLUDE_TAG: ""} if tags is None else tags,
        )
        return arn, registry, repo, digest

    ns.providers = providers
    ns.deploy_code = deploy_code
    ns.deploy_image = deploy_image
    return ns


def deployment_event(arn, event_name="CreateFunction20150331", image_uri=None, tags=None, code_sha256=None):
    """EventBridge envelope around a CloudTrail Lambda API call."""
    request = {"functionName": arn.split(":")[-1]}
    if image_uri:
        request["code"] = {"imageUri": image_uri}
        request["packageType"] = "Image"
    if tags is not None:
        request["tags"] = tags
    response = {"functionArn": arn}
    if code_sha256:
        response["codeSha256"] = code_sha256
    return {
        "version": "0",
        "detail-type": "AWS API Call via CloudTrail",
        "source": "aws.lambda",
        "region": REGION,
        "time": "2024-05-01T12:00:00Z",
        "detail": {
            "eventSource": "lambda.amazonaws.com",
            "eventName": event_name,
            "awsRegion": REGION,
            "eventTime": "2024-05-01T12:00:00Z",
            "requestParameters": request,
            "responseElements": response,
        },
    }


@pytest.fixture
def event_factory():
    return deployment_event
