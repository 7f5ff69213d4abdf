#!/usr/bin/env python3
"""
Policy enforcement: turn a VerificationOutcome into exactly one EnforcementRecord.

| status                      | Block             | Alert   | Allow   |
|-----------------------------|-------------------|---------|---------|
| Signed                      | tag               | tag     | tag     |
| NotSigned/SignatureInvalid  | concurrency 0+tag | tag     | tag     |

Both writes are complete overwrites (reserved concurrency, one tag key), so applying the
same record again converges to the same state. Under Block the concurrency is set before
the tag: an interrupted cycle never leaves a failure tag on an invocable function.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .config import EnforcementAction
from .error_handling import FunctionClarityError, with_context
from .metrics import ENFORCEMENT_COUNTER
from .models import RESULT_TAG_KEY, EnforcementRecord, VerificationOutcome, VerificationStatus
from .providers.abstract import FunctionClient
from .waiter import call_with_retries

logger = logging.getLogger(__name__)


def plan_enforcement(outcome: VerificationOutcome, action: EnforcementAction) -> EnforcementRecord:
    blocked = action == EnforcementAction.BLOCK and outcome.status != VerificationStatus.SIGNED
    return EnforcementRecord(
        concurrency_limit=0 if blocked else None,
        result_tag=(RESULT_TAG_KEY, outcome.tag_value),
    )


class PolicyEnforcer:
    def __init__(self, functions: FunctionClient, max_attempts: int = 3, sleep: Callable[[float], None] = time.sleep):
        self.functions = functions
        self.max_attempts = max_attempts
        self.sleep = sleep

    def _retry(self, fn):
        return call_with_retries(fn, max_attempts=self.max_attempts, sleep=self.sleep)

    def apply(self, outcome: VerificationOutcome, action: EnforcementAction, cycle_id: Optional[str] = None) -> EnforcementRecord:
        record = plan_enforcement(outcome, action)
        identity = outcome.function_identity
        try:
            if record.concurrency_limit is not None:
                self._retry(lambda: self.functions.put_concurrency(identity, record.concurrency_limit))
            key, value = record.result_tag
            self._retry(lambda: self.functions.tag(identity, {key: value}))
        except FunctionClarityError as e:
            raise with_context(e, function_identity=identity, cycle_id=cycle_id)

        ENFORCEMENT_COUNTER.labels(action=action.value, blocked=str(record.concurrency_limit == 0).lower()).inc()
        logger.info(
            "Applied enforcement to %s: tag=%r concurrency=%s",
            identity,
            record.result_tag[1],
            "0" if record.concurrency_limit == 0 else "unchanged",
            extra={"cycle_id": cycle_id, "function_identity": identity, "status": outcome.status.value},
        )
        return record
