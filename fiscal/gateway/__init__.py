"""
Fiscal Gateway - Public API
===========================
"""

from fiscal.gateway.client import GatewayClient
from fiscal.gateway.envelope import GatewayCredentials
from fiscal.gateway.packaging import SubmissionMeta, build_archive, read_archive
from fiscal.gateway.responses import (
    GatewayOutcome,
    GatewayResult,
    ResponseParseError,
    parse_cdr,
)
from fiscal.gateway.sandbox import SandboxAuthority

__all__ = [
    "GatewayClient",
    "GatewayCredentials",
    "GatewayOutcome",
    "GatewayResult",
    "ResponseParseError",
    "SandboxAuthority",
    "SubmissionMeta",
    "build_archive",
    "parse_cdr",
    "read_archive",
]
