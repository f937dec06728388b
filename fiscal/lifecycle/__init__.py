"""
Fiscal Lifecycle - Public API
=============================
"""

from fiscal.lifecycle.locks import KeyedLocks
from fiscal.lifecycle.machine import DocumentStateMachine, StatusReport
from fiscal.lifecycle.transitions import ALLOWED_TRANSITIONS, can_transition, check_transition

__all__ = [
    "ALLOWED_TRANSITIONS",
    "DocumentStateMachine",
    "KeyedLocks",
    "StatusReport",
    "can_transition",
    "check_transition",
]
