"""
Error taxonomy for the verification engine.

- MalformedEvent / InvalidConfig     : operator-visible, the cycle aborts without enforcement
- ArtifactNotFound                   : non-retryable, enforced as a verification failure
- ArtifactUnavailable, ProviderError,
  TransparencyLogUnavailable,
  VerificationTimedOut               : retryable with bounded backoff
- PublishFailed                      : reported only, never rolls back enforcement

A signature that does not verify is NOT an error; it is a normal outcome.
"""
from __future__ import annotations

from functools import wraps
from typing import Any, Dict, Optional


class FunctionClarityError(Exception):
    retryable = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        if not self.context:
            return self.message
        ctx = " ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.message} [{ctx}]"


class MalformedEvent(FunctionClarityError):
    pass


class InvalidConfig(FunctionClarityError):
    pass


class ArtifactNotFound(FunctionClarityError):
    pass


class ArtifactUnavailable(FunctionClarityError):
    retryable = True


class TransparencyLogUnavailable(FunctionClarityError):
    retryable = True


class ProviderError(FunctionClarityError):
    retryable = True


class VerificationTimedOut(FunctionClarityError):
    retryable = True


class PublishFailed(FunctionClarityError):
    pass


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, FunctionClarityError) and exc.retryable


def with_context(exc: FunctionClarityError, **context: Any) -> FunctionClarityError:
    """Attach request context to an engine error without overwriting existing keys."""
    for k, v in context.items():
        if v is not None:
            exc.context.setdefault(k, v)
    return exc


def wrap_provider_errors(error_cls=ProviderError, **context: Any):
    """
    Decorator translating unexpected exceptions from provider calls into `error_cls`.
    Engine errors pass through untouched (context is still attached).
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except FunctionClarityError as e:
                raise with_context(e, **context)
            except Exception as e:
                raise error_cls(f"{func.__name__} failed: {e}", context) from e
        return wrapper
    return decorator
