#!/usr/bin/env python3
"""
Serverless entrypoint.

lambda_handler(event, context) splits the delivered payload into single deployment events and
runs one independent verification cycle per event on a thread pool. For SQS-delivered batches,
messages whose cycle failed in a retryable way are returned as batchItemFailures so only they
are redelivered.
"""
from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from .engine import VerificationEngine
from .intake import iter_events
from .utils.json_logging import configure_logging

logger = logging.getLogger(__name__)

MAX_WORKERS = int(os.getenv("FUNCTION_CLARITY_MAX_WORKERS", "8"))


def process_batch(event: Any, engine: VerificationEngine, max_workers: int = MAX_WORKERS) -> Dict[str, Any]:
    units = list(iter_events(event))
    if not units:
        return {"batchItemFailures": [], "results": []}

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(units)))) as pool:
        futures = [(mid, pool.submit(engine.run_cycle, unit)) for mid, unit in units]
        outcomes = [(mid, f.result()) for mid, f in futures]

    failed: List[str] = []
    summary = []
    for mid, result in outcomes:
        if result.retryable_failure and mid and mid not in failed:
            failed.append(mid)
        summary.append({
            "cycleId": result.cycle_id,
            "functionIdentity": result.request.function_identity if result.request else None,
            "status": result.outcome.status.value if result.outcome else None,
            "skipped": result.skipped_reason,
            "errors": list(result.errors),
        })
    return {"batchItemFailures": [{"itemIdentifier": mid} for mid in failed], "results": summary}


_engine: Optional[VerificationEngine] = None


def lambda_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    global _engine
    configure_logging()
    # the engine holds no policy; configuration is re-resolved by every cycle
    if _engine is None:
        _engine = VerificationEngine()
    response = process_batch(event, _engine)
    logger.info("Processed %d event(s), %d retryable failure(s)", len(response["results"]), len(response["batchItemFailures"]))
    return response
