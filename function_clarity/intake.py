#!/usr/bin/env python3
"""
Event intake: normalize a deployment event into a VerificationRequest.

Accepted shapes (any nesting of these):
- EventBridge "AWS API Call via CloudTrail" envelope (record under "detail")
- a raw CloudTrail record
- a {"Records": [...]} batch of CloudTrail records or SQS messages
- SQS message bodies holding any of the above as JSON

Only successful CreateFunction* / UpdateFunctionCode* calls are deployments. Anything else,
and functions outside the policy scope, yield None (dropped without error).
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple

from .config import TrustPolicy
from .error_handling import MalformedEvent
from .models import ArtifactKind, CodeLocator, ImageLocator, VerificationRequest

logger = logging.getLogger(__name__)

DEPLOYMENT_EVENT_PREFIXES = ("CreateFunction", "UpdateFunctionCode")
LAMBDA_EVENT_SOURCE = "lambda.amazonaws.com"

TagLookup = Callable[[str], Mapping[str, str]]


def iter_events(event: Any, message_id: Optional[str] = None) -> Iterator[Tuple[Optional[str], Any]]:
    """
    Split a delivered payload into single events, each paired with the id of the SQS message
    that carried it (None when not delivered through SQS). Undecodable bodies are yielded as-is
    so the cycle can report them as malformed.
    """
    if isinstance(event, Mapping) and isinstance(event.get("Records"), list):
        for record in event["Records"]:
            if isinstance(record, Mapping) and record.get("eventSource") == "aws:sqs":
                mid = record.get("messageId")
                body = record.get("body")
                try:
                    parsed = json.loads(body) if isinstance(body, str) else body
                except ValueError:
                    yield mid, body
                    continue
                yield from iter_events(parsed, mid)
            else:
                yield from iter_events(record, message_id)
        return
    yield message_id, event


def cloudtrail_record(event: Any) -> Dict[str, Any]:
    """Unwrap a single event to its CloudTrail record."""
    if isinstance(event, (str, bytes)):
        try:
            event = json.loads(event)
        except ValueError as e:
            raise MalformedEvent(f"Event is not valid JSON: {e}") from e
    if not isinstance(event, Mapping):
        raise MalformedEvent(f"Event must be a JSON object, got {type(event).__name__}")
    if isinstance(event.get("detail"), Mapping):
        record = dict(event["detail"])
        record.setdefault("awsRegion", event.get("region"))
        record.setdefault("eventTime", event.get("time"))
        return record
    if "eventName" in event:
        return dict(event)
    raise MalformedEvent("Event is neither an EventBridge envelope nor a CloudTrail record")


def is_deployment_event(record: Mapping[str, Any]) -> bool:
    name = str(record.get("eventName") or "")
    if not name.startswith(DEPLOYMENT_EVENT_PREFIXES):
        return False
    source = record.get("eventSource")
    if source and source != LAMBDA_EVENT_SOURCE:
        return False
    # failed API calls deploy nothing
    return not record.get("errorCode")


def _observed_at(value: Any) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise MalformedEvent(f"Unparsable eventTime {value!r}") from e


def _function_identity(record: Mapping[str, Any]) -> str:
    response = record.get("responseElements") or {}
    request = record.get("requestParameters") or {}
    identity = response.get("functionArn") or request.get("functionName") or response.get("functionName")
    if not identity:
        raise MalformedEvent("Deployment event has no function identity", {"eventName": record.get("eventName")})
    return str(identity)


def _locator(record: Mapping[str, Any], identity: str) -> Tuple[ArtifactKind, Any]:
    response = record.get("responseElements") or {}
    request = record.get("requestParameters") or {}
    code = request.get("code") if isinstance(request.get("code"), Mapping) else {}
    image_uri = request.get("imageUri") or code.get("imageUri")
    package_type = response.get("packageType") or request.get("packageType")
    if image_uri or package_type == "Image":
        if not image_uri:
            raise MalformedEvent("Image deployment event has no image URI", {"function_identity": identity})
        return ArtifactKind.CONTAINER_IMAGE, ImageLocator(image_uri=str(image_uri))
    return ArtifactKind.CODE_PACKAGE, CodeLocator(function_identity=identity, code_sha256=response.get("codeSha256"))


def build_request(event: Any, policy: TrustPolicy, tag_lookup: Optional[TagLookup] = None) -> Optional[VerificationRequest]:
    record = cloudtrail_record(event)
    if not is_deployment_event(record):
        logger.debug("Ignoring non-deployment event %s", record.get("eventName"))
        return None

    identity = _function_identity(record)
    region = record.get("awsRegion")
    kind, locator = _locator(record, identity)

    scope = policy.scope_filter
    tags: Mapping[str, str] = (record.get("requestParameters") or {}).get("tags") or {}
    if scope.included_tag_keys and not any(k in tags for k in scope.included_tag_keys) and tag_lookup is not None:
        tags = tag_lookup(identity)
    if not scope.matches(identity, tags, region):
        logger.info("Function %s is outside the monitored scope; skipping", identity)
        return None

    return VerificationRequest(
        function_identity=identity,
        artifact_kind=kind,
        artifact_locator=locator,
        observed_at=_observed_at(record.get("eventTime")),
        region=region,
        event_name=record.get("eventName"),
    )
