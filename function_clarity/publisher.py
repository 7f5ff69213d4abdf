#!/usr/bin/env python3
"""
Result publisher: one JSON notification per verification cycle.

Delivery is at-least-once; consumers deduplicate on (functionIdentity, observedAt).
A failed publish is logged and counted but never raised: enforcement has already been applied
and is not rolled back.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from .config import EnforcementAction
from .error_handling import FunctionClarityError, PublishFailed, wrap_provider_errors
from .metrics import PUBLISH_FAILURE_COUNTER
from .models import EnforcementRecord, VerificationOutcome, VerificationRequest
from .providers.abstract import Notifier

logger = logging.getLogger(__name__)


def build_message(
    request: VerificationRequest,
    outcome: VerificationOutcome,
    record: EnforcementRecord,
    action: EnforcementAction,
    cycle_id: str,
) -> Dict[str, Any]:
    return {
        "functionIdentity": outcome.function_identity,
        "functionName": request.function_name,
        "status": outcome.status.value,
        "resultTag": {record.result_tag[0]: record.result_tag[1]},
        "action": action.value,
        "enforced": record.concurrency_limit == 0,
        "digest": outcome.evidence.digest,
        "reason": outcome.evidence.reason,
        "observedAt": outcome.observed_at.isoformat(),
        "cycleId": cycle_id,
    }


class ResultPublisher:
    def __init__(self, notifier: Optional[Notifier]):
        self.notifier = notifier

    def publish(
        self,
        request: VerificationRequest,
        outcome: VerificationOutcome,
        record: EnforcementRecord,
        action: EnforcementAction,
        cycle_id: str,
    ) -> Optional[str]:
        if self.notifier is None:
            logger.info("No notification channel configured; result for %s not published", outcome.function_identity)
            return None
        message = build_message(request, outcome, record, action, cycle_id)
        subject = f"Function Clarity: {request.function_name} {outcome.status.value}"
        try:
            send = wrap_provider_errors(PublishFailed, function_identity=outcome.function_identity, cycle_id=cycle_id)(self.notifier.publish)
            message_id = send(
                subject,
                json.dumps(message, sort_keys=True),
                {"functionIdentity": outcome.function_identity, "status": outcome.status.value},
            )
        except FunctionClarityError as e:
            PUBLISH_FAILURE_COUNTER.inc()
            logger.error(
                "Publishing result for %s failed: %s",
                outcome.function_identity,
                e,
                extra={"cycle_id": cycle_id, "function_identity": outcome.function_identity},
            )
            return None
        logger.info("Published result for %s (message %s)", outcome.function_identity, message_id, extra={"cycle_id": cycle_id})
        return message_id
