"""
Fiscal Commands - Public API
============================
"""

from fiscal.commands.result import CommandResult, ErrorCode
from fiscal.commands.service import IssuanceService

__all__ = [
    "CommandResult",
    "ErrorCode",
    "IssuanceService",
]
