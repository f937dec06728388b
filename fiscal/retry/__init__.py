"""
Fiscal Retry - Public API
=========================
"""

from fiscal.retry.policy import RetryPolicy
from fiscal.retry.scheduler import (
    CancellationToken,
    RetryDecision,
    RetryTicket,
    SubmissionRetryScheduler,
)

__all__ = [
    "CancellationToken",
    "RetryDecision",
    "RetryPolicy",
    "RetryTicket",
    "SubmissionRetryScheduler",
]
