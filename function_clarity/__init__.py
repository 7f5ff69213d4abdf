"""
function_clarity: verify that deployed serverless functions carry a valid signature and
enforce a block / alert / allow policy on the result.
"""
from .config import ConfigResolver, EnforcementAction, Mode, TrustPolicy
from .engine import VerificationEngine
from .models import RESULT_TAG_KEY, VerificationOutcome, VerificationRequest, VerificationStatus, result_tag_value

__version__ = "0.1.0"

__all__ = [
    "ConfigResolver",
    "EnforcementAction",
    "Mode",
    "TrustPolicy",
    "VerificationEngine",
    "VerificationOutcome",
    "VerificationRequest",
    "VerificationStatus",
    "RESULT_TAG_KEY",
    "result_tag_value",
]
