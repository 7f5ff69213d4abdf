#!/usr/bin/env python3
"""
Acceptance helpers for checking a deployed engine end to end.

- wait_for_result_tag(functions, identity, expected_status, ...) : poll the function's tags until
  the result tag carries the expected value
- wait_for_notification(queue, function_name, ...)               : poll a queue subscribed to the
  notification topic until a message mentioning the function arrives

Tags and notifications are eventually consistent, so both are bounded waits with an explicit
timeout, injectable clock/sleep and optional cancellation. An empty queue is treated as
"not yet" until the timeout expires.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .models import RESULT_TAG_KEY, VerificationStatus, result_tag_value
from .providers.abstract import FunctionClient, QueueReader
from .waiter import wait_for

logger = logging.getLogger(__name__)


def wait_for_result_tag(
    functions: FunctionClient,
    function_identity: str,
    expected_status: VerificationStatus,
    timeout: float = 300.0,
    interval: float = 10.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Optional[Callable[[float], None]] = None,
    cancel: Optional[threading.Event] = None,
    tag_key: str = RESULT_TAG_KEY,
) -> Dict[str, str]:
    """Returns the function's tags once the result tag matches. Raises WaitTimeout otherwise."""
    expected = result_tag_value(expected_status)

    def tagged():
        tags = functions.list_tags(function_identity)
        if tags.get(tag_key) == expected:
            return tags
        logger.debug("Waiting for %s=%r on %s (now %r)", tag_key, expected, function_identity, tags.get(tag_key))
        return None

    return wait_for(tagged, timeout=timeout, interval=interval, clock=clock, sleep=sleep, cancel=cancel)


def wait_for_notification(
    queue: QueueReader,
    function_name: str,
    timeout: float = 300.0,
    interval: float = 10.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Optional[Callable[[float], None]] = None,
    cancel: Optional[threading.Event] = None,
) -> Any:
    """
    Returns the first message body mentioning `function_name`, decoded from JSON when possible
    (SNS-to-SQS envelopes are unwrapped to their "Message").
    """

    def received():
        for body in queue.receive(10):
            if function_name not in body:
                continue
            try:
                doc = json.loads(body)
            except ValueError:
                return body
            if isinstance(doc, dict) and isinstance(doc.get("Message"), str):
                try:
                    return json.loads(doc["Message"])
                except ValueError:
                    return doc["Message"]
            return doc
        return None

    return wait_for(received, timeout=timeout, interval=interval, clock=clock, sleep=sleep, cancel=cancel)
