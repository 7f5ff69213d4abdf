#!/usr/bin/env python3
"""
Verification engine: runs one verification cycle per deployment event.

Cycle:
  resolve a fresh TrustPolicy -> build providers -> intake (scope filter) -> fetch + digest
  -> discover signatures -> verify (Keyed or Keyless, never both) -> enforce -> publish

Failure handling:
- MalformedEvent / InvalidConfig      : logged, the cycle aborts with no enforcement
- ArtifactNotFound                    : enforced as SignatureInvalid
- retryable errors, after bounded retries or once the cycle deadline passes:
    Block        -> fail closed (SignatureInvalid, concurrency 0)
    Alert/Allow  -> logged skip
- enforcement write still failing     : reported as a retryable cycle failure (the cycle is
                                        idempotent and safe to re-run)

Cycles share nothing but the read-only policy snapshot, so many can run concurrently.
"""
from __future__ import annotations

import dataclasses
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .config import ConfigResolver, EnforcementAction, TrustPolicy
from .digest import compute_digest
from .enforcement import PolicyEnforcer
from .error_handling import ArtifactNotFound, FunctionClarityError, is_retryable, with_context
from .fetcher import ArtifactFetcher
from .intake import build_request
from .metrics import CYCLE_COUNTER, CYCLE_LATENCY_HISTOGRAM
from .models import CycleResult, Evidence, VerificationOutcome, VerificationRequest, VerificationStatus
from .providers.factory import Providers, create_providers
from .publisher import ResultPublisher
from .verification import build_verifier
from .waiter import Deadline, call_with_retries

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("function_clarity.audit")


def _audit(event: str, **fields: Any) -> None:
    payload = {"event": event, "ts": datetime.now(timezone.utc).isoformat()}
    payload.update({k: v for k, v in fields.items() if v is not None})
    audit_logger.info("AUDIT %s", json.dumps(payload, sort_keys=True, default=str))


class VerificationEngine:
    def __init__(
        self,
        resolver: Optional[ConfigResolver] = None,
        provider_factory: Callable[[TrustPolicy], Providers] = create_providers,
        verifier_factory: Callable[..., Any] = build_verifier,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.resolver = resolver or ConfigResolver()
        self.provider_factory = provider_factory
        self.verifier_factory = verifier_factory
        self.clock = clock
        self.sleep = sleep

    def run_cycle(self, event: Any, cycle_id: Optional[str] = None) -> CycleResult:
        result = CycleResult(cycle_id=cycle_id or uuid.uuid4().hex)
        started = self.clock()
        try:
            self._run(event, result)
        finally:
            CYCLE_LATENCY_HISTOGRAM.observe(max(0.0, self.clock() - started))
            if result.outcome is not None:
                CYCLE_COUNTER.labels(result=result.outcome.status.value).inc()
            elif result.skipped_reason:
                CYCLE_COUNTER.labels(result="skipped").inc()
            else:
                CYCLE_COUNTER.labels(result="error").inc()
        return result

    def _run(self, event: Any, result: CycleResult) -> None:
        try:
            policy = self.resolver.resolve()
        except FunctionClarityError as e:
            self._fail(result, e, "Configuration could not be resolved")
            return

        providers = self.provider_factory(policy)
        try:
            self._process(event, result, policy, providers)
        finally:
            providers.close()

    def _process(self, event: Any, result: CycleResult, policy: TrustPolicy, providers: Providers) -> None:
        cid = result.cycle_id
        deadline = Deadline(policy.cycle_timeout_seconds, clock=self.clock)

        try:
            request = build_request(
                event,
                policy,
                tag_lookup=lambda identity: self._retry(lambda: providers.functions.list_tags(identity), policy, deadline),
            )
        except ArtifactNotFound as e:
            result.skipped_reason = f"function no longer exists: {e}"
            logger.info("Skipping cycle %s: %s", cid, result.skipped_reason, extra={"cycle_id": cid})
            return
        except FunctionClarityError as e:
            self._fail(result, e, "Event could not be turned into a verification request")
            return
        if request is None:
            result.skipped_reason = "out of scope"
            return
        result.request = request
        ident = request.function_identity
        logger.info(
            "Verification cycle started for %s (%s, mode=%s)",
            ident,
            request.artifact_kind.value,
            policy.mode.value,
            extra={"cycle_id": cid, "function_identity": ident},
        )

        try:
            outcome = self._verify(request, policy, providers, deadline)
        except ArtifactNotFound as e:
            with_context(e, function_identity=ident, cycle_id=cid)
            logger.warning("Artifact for %s not found; treating as verification failure: %s", ident, e, extra={"cycle_id": cid})
            outcome = self._failed_outcome(request, str(e))
        except FunctionClarityError as e:
            with_context(e, function_identity=ident, cycle_id=cid)
            if not is_retryable(e):
                self._fail(result, e, "Verification aborted")
                return
            if policy.enforcement_action != EnforcementAction.BLOCK:
                result.skipped_reason = f"verification incomplete under {policy.enforcement_action.value}: {e}"
                result.errors.append(str(e))
                logger.error("Verification of %s could not complete; skipping: %s", ident, e, extra={"cycle_id": cid})
                _audit("verification_skipped", cycle_id=cid, function_identity=ident, reason=str(e))
                return
            logger.error("Verification of %s could not complete; failing closed: %s", ident, e, extra={"cycle_id": cid})
            outcome = self._failed_outcome(request, f"verification could not complete: {e}")
        result.outcome = outcome
        logger.info(
            "Verification result for %s: %s",
            ident,
            outcome.status.value,
            extra={"cycle_id": cid, "function_identity": ident, "status": outcome.status.value},
        )

        try:
            result.record = PolicyEnforcer(providers.functions, policy.max_attempts, sleep=self.sleep).apply(
                outcome, policy.enforcement_action, cycle_id=cid
            )
        except FunctionClarityError as e:
            result.retryable_failure = is_retryable(e)
            result.errors.append(str(e))
            logger.error("Enforcement on %s failed: %s", ident, e, extra={"cycle_id": cid, "function_identity": ident})
            _audit("enforcement_failed", cycle_id=cid, function_identity=ident, status=outcome.status.value, error=str(e))
            return

        result.message_id = ResultPublisher(providers.notifier).publish(
            request, outcome, result.record, policy.enforcement_action, cid
        )
        _audit(
            "verification_completed",
            cycle_id=cid,
            function_identity=ident,
            status=outcome.status.value,
            action=policy.enforcement_action.value,
            digest=outcome.evidence.digest,
            blocked=result.record.concurrency_limit == 0,
            message_id=result.message_id,
        )

    def _retry(self, fn, policy: TrustPolicy, deadline: Deadline):
        return call_with_retries(fn, max_attempts=policy.max_attempts, deadline=deadline, sleep=self.sleep)

    def _verify(self, request: VerificationRequest, policy: TrustPolicy, providers: Providers, deadline: Deadline) -> VerificationOutcome:
        fetcher = ArtifactFetcher(providers.functions, providers.downloader, providers.registry, providers.signatures)

        def fetch_and_digest():
            artifact = fetcher.fetch(request)
            return artifact, compute_digest(artifact)

        # a CodeSha256 mismatch re-describes and re-downloads
        artifact, digest = self._retry(fetch_and_digest, policy, deadline)
        deadline.check("fetch", function_identity=request.function_identity)
        if artifact.kind != request.artifact_kind:
            request = dataclasses.replace(request, artifact_kind=artifact.kind)

        signatures = self._retry(lambda: fetcher.signatures(artifact, digest), policy, deadline)
        deadline.check("signature discovery", function_identity=request.function_identity)

        verifier = self._retry(lambda: self.verifier_factory(policy, http=providers.http), policy, deadline)
        return self._retry(lambda: verifier.verify(request, digest, signatures), policy, deadline)

    @staticmethod
    def _failed_outcome(request: VerificationRequest, reason: str) -> VerificationOutcome:
        digest = getattr(request.artifact_locator, "digest", None) or ""
        return VerificationOutcome(
            status=VerificationStatus.SIGNATURE_INVALID,
            evidence=Evidence(digest=digest, reason=reason),
            function_identity=request.function_identity,
            observed_at=request.observed_at,
        )

    @staticmethod
    def _fail(result: CycleResult, error: FunctionClarityError, what: str) -> None:
        with_context(error, cycle_id=result.cycle_id)
        result.errors.append(str(error))
        logger.error("%s: %s", what, error, extra={"cycle_id": result.cycle_id})
        _audit("cycle_aborted", cycle_id=result.cycle_id, error=str(error))
