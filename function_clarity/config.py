#!/usr/bin/env python3
"""
Trust policy resolution: decode the engine's runtime configuration.

The configuration is a YAML document, base64-encoded, delivered in the CONFIGURATION
environment variable. A fresh TrustPolicy is resolved at the start of every verification
cycle, so an operator rewrite of the blob takes effect on the next deployment event.

Usage:
  from function_clarity.config import ConfigResolver
  policy = ConfigResolver().resolve()
  print(policy.mode, policy.enforcement_action)
"""
from __future__ import annotations

import base64
import binascii
import enum
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import yaml

from .error_handling import InvalidConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CONFIGURATION"

DEFAULT_OIDC_ISSUER = "https://oauth2.sigstore.dev/auth"
DEFAULT_REKOR_URL = "https://rekor.sigstore.dev"
DEFAULT_FULCIO_URL = "https://fulcio.sigstore.dev"
DEFAULT_CYCLE_TIMEOUT_SECONDS = 300
DEFAULT_MAX_ATTEMPTS = 3


class Mode(str, enum.Enum):
    KEYED = "Keyed"
    KEYLESS = "Keyless"


class EnforcementAction(str, enum.Enum):
    BLOCK = "Block"
    ALERT = "Alert"
    ALLOW = "Allow"


_ACTION_ALIASES = {
    "block": EnforcementAction.BLOCK,
    "alert": EnforcementAction.ALERT,
    "detect": EnforcementAction.ALERT,
    "notify": EnforcementAction.ALERT,
    "allow": EnforcementAction.ALLOW,
}


@dataclass(frozen=True)
class IdentityConstraints:
    issuer: str = DEFAULT_OIDC_ISSUER
    subject_patterns: Tuple[str, ...] = (".+",)
    rekor_url: str = DEFAULT_REKOR_URL
    fulcio_url: str = DEFAULT_FULCIO_URL
    trusted_root_pem: Optional[str] = None
    rekor_public_key: Optional[str] = None


@dataclass(frozen=True)
class ScopeFilter:
    included_tag_keys: Tuple[str, ...] = ()
    included_regions: Tuple[str, ...] = ()
    excluded_identities: Tuple[str, ...] = ()

    def matches(self, function_identity: str, tags: Mapping[str, str], region: Optional[str] = None) -> bool:
        name = function_identity.split(":")[6] if function_identity.count(":") >= 6 else function_identity
        if function_identity in self.excluded_identities or name in self.excluded_identities:
            return False
        if self.included_regions and region and region not in self.included_regions:
            return False
        if not self.included_tag_keys:
            return True
        return any(key in tags for key in self.included_tag_keys)


@dataclass(frozen=True)
class TrustPolicy:
    mode: Mode
    enforcement_action: EnforcementAction
    scope_filter: ScopeFilter
    public_key: Optional[bytes] = None
    identity_constraints: Optional[IdentityConstraints] = None
    region: Optional[str] = None
    bucket: Optional[str] = None
    notification_channel: Optional[str] = None
    cycle_timeout_seconds: float = DEFAULT_CYCLE_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        if self.mode == Mode.KEYED and (not self.public_key or self.identity_constraints is not None):
            raise InvalidConfig("Keyed mode requires publicKey and no keyless identity constraints")
        if self.mode == Mode.KEYLESS and (self.public_key or self.identity_constraints is None):
            raise InvalidConfig("Keyless mode requires identity constraints and no publicKey")


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, str) and value.strip().lower() in ("1", "true", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("0", "false", "no", ""):
        return False
    raise InvalidConfig(f"{name} must be a boolean, got {value!r}")


def _as_str_tuple(value: Any, name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value else ()
    if not isinstance(value, (list, tuple)):
        raise InvalidConfig(f"{name} must be a list of strings")
    return tuple(str(v) for v in value if str(v))


def _setting(raw: Mapping[str, Any], key: str, default: Any) -> Any:
    value = raw.get(key)
    return default if value is None or value == "" else value


def _decode_public_key(value: Any) -> Optional[bytes]:
    """Accept PEM text or base64 of PEM."""
    if not value:
        return None
    text = str(value).strip()
    if text.startswith("-----BEGIN"):
        return text.encode("utf-8")
    try:
        decoded = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidConfig("publicKey is neither PEM nor base64-encoded PEM")
    if not decoded.lstrip().startswith(b"-----BEGIN"):
        raise InvalidConfig("publicKey is neither PEM nor base64-encoded PEM")
    return decoded


def _parse_identity(raw: Mapping[str, Any]) -> IdentityConstraints:
    keyless = raw.get("keyless") or {}
    if not isinstance(keyless, Mapping):
        raise InvalidConfig("keyless must be a mapping")
    patterns = _as_str_tuple(keyless.get("subjectPatterns"), "keyless.subjectPatterns")
    if not patterns:
        logger.warning("keyless.subjectPatterns not set; accepting any certificate subject from the issuer")
        patterns = (".+",)
    return IdentityConstraints(
        issuer=str(keyless.get("issuer") or DEFAULT_OIDC_ISSUER),
        subject_patterns=patterns,
        rekor_url=str(keyless.get("rekorUrl") or DEFAULT_REKOR_URL).rstrip("/"),
        fulcio_url=str(keyless.get("fulcioUrl") or DEFAULT_FULCIO_URL).rstrip("/"),
        trusted_root_pem=keyless.get("trustedRootPem") or None,
        rekor_public_key=keyless.get("rekorPublicKey") or None,
    )


def parse_configuration(raw: Mapping[str, Any], excluded_identities: Tuple[str, ...] = ()) -> TrustPolicy:
    if not isinstance(raw, Mapping):
        raise InvalidConfig("Configuration must be a YAML mapping")

    action_raw = str(raw.get("action") or "").strip().lower()
    action = _ACTION_ALIASES.get(action_raw)
    if action is None:
        raise InvalidConfig(f"Unsupported action: {raw.get('action')!r}")

    is_keyless = _as_bool(raw.get("isKeyless"), "isKeyless")
    public_key = _decode_public_key(raw.get("publicKey"))
    if is_keyless and public_key:
        raise InvalidConfig("publicKey must be empty when isKeyless is true")
    if not is_keyless and not public_key:
        raise InvalidConfig("publicKey is required when isKeyless is false")

    try:
        timeout = float(_setting(raw, "cycleTimeoutSeconds", DEFAULT_CYCLE_TIMEOUT_SECONDS))
        attempts = int(_setting(raw, "maxAttempts", DEFAULT_MAX_ATTEMPTS))
    except (TypeError, ValueError) as e:
        raise InvalidConfig(f"Invalid numeric setting: {e}") from e
    if timeout <= 0 or attempts < 1:
        raise InvalidConfig("cycleTimeoutSeconds must be > 0 and maxAttempts >= 1")

    return TrustPolicy(
        mode=Mode.KEYLESS if is_keyless else Mode.KEYED,
        enforcement_action=action,
        scope_filter=ScopeFilter(
            included_tag_keys=_as_str_tuple(raw.get("includedFuncTagKeys"), "includedFuncTagKeys"),
            included_regions=_as_str_tuple(raw.get("includedFuncRegions"), "includedFuncRegions"),
            excluded_identities=excluded_identities,
        ),
        public_key=None if is_keyless else public_key,
        identity_constraints=_parse_identity(raw) if is_keyless else None,
        region=raw.get("region") or None,
        bucket=raw.get("bucket") or None,
        notification_channel=raw.get("snsTopicArn") or None,
        cycle_timeout_seconds=timeout,
        max_attempts=attempts,
        raw=dict(raw),
    )


def decode_configuration(blob: str) -> Dict[str, Any]:
    if not blob:
        raise InvalidConfig(f"{CONFIG_ENV_VAR} is empty or not set")
    try:
        text = base64.b64decode(blob.strip(), validate=True).decode("utf-8")
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        raise InvalidConfig(f"Failed to decode configuration from base64: {e}") from e
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidConfig(f"Failed to parse configuration YAML: {e}") from e
    if not isinstance(raw, dict):
        raise InvalidConfig("Configuration YAML must be a mapping")
    return raw


def encode_configuration(raw: Mapping[str, Any]) -> str:
    text = yaml.safe_dump(dict(raw), sort_keys=True)
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class ConfigResolver:
    """
    Resolve a TrustPolicy snapshot from the environment. Never caches: every call re-reads.

    env: mapping or zero-arg callable returning a mapping (defaults to os.environ)
    """

    def __init__(self, env: Optional[Any] = None, var_name: str = CONFIG_ENV_VAR):
        self._env = env
        self.var_name = var_name

    def _environ(self) -> Mapping[str, str]:
        if self._env is None:
            return os.environ
        if callable(self._env):
            return self._env()
        return self._env

    def resolve(self) -> TrustPolicy:
        env = self._environ()
        raw = decode_configuration(env.get(self.var_name, ""))
        own = env.get("AWS_LAMBDA_FUNCTION_NAME")
        policy = parse_configuration(raw, excluded_identities=(own,) if own else ())
        logger.debug("Resolved trust policy mode=%s action=%s", policy.mode.value, policy.enforcement_action.value)
        return policy


def rewrite_function_configuration(function_client, function_identity: str, mutate: Callable[[Dict[str, Any]], None], var_name: str = CONFIG_ENV_VAR) -> Dict[str, Any]:
    """
    Operator reconfiguration: decode the deployed engine's blob, apply `mutate`, validate,
    re-encode and write it back. Returns the new raw configuration.
    """
    env = dict(function_client.get_environment(function_identity))
    raw = decode_configuration(env.get(var_name, ""))
    mutate(raw)
    if _as_bool(raw.get("isKeyless"), "isKeyless"):
        raw["publicKey"] = ""
    parse_configuration(raw)
    env[var_name] = encode_configuration(raw)
    function_client.update_environment(function_identity, env)
    logger.info("Rewrote configuration of %s (isKeyless=%s action=%s)", function_identity, raw.get("isKeyless"), raw.get("action"))
    return raw
