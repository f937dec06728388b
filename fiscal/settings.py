"""
Fiscal Settings - Pipeline Configuration
========================================
Frozen settings loaded from FISCAL_* environment variables.

Doctrine:
- Everything is validated at load time. A bad value raises
  ConfigurationError naming the variable; there is no silent fallback.
- Defaults are safe for development: sandbox gateway, no demo signing.
- Django database and logging settings live in config/settings.py.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

from fiscal.documents.models import TransportMode
from fiscal.documents.validation import validate_series
from fiscal.errors import ConfigurationError, ValidationError
from fiscal.gateway.client import (
    DEFAULT_INVOICE_PATH,
    DEFAULT_STATUS_PATH,
    DEFAULT_WAYBILL_PATH,
)

ENVIRONMENTS = ("development", "staging", "production")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


# ══════════════════════════════════════════════════════════════
# SETTINGS GROUPS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GatewaySettings:
    base_url: str = "https://sandbox.fiscal.invalid"
    username: str = ""
    password: str = field(default="", repr=False)
    invoice_path: str = DEFAULT_INVOICE_PATH
    waybill_path: str = DEFAULT_WAYBILL_PATH
    status_path: str = DEFAULT_STATUS_PATH
    timeout: float = 30.0
    sandbox: bool = True


@dataclass(frozen=True)
class SigningSettings:
    certificate_path: Optional[str] = None
    certificate_password: Optional[str] = field(default=None, repr=False)
    allow_demo: bool = False


@dataclass(frozen=True)
class RetrySettings:
    base_delay: float = 2.0
    max_delay: float = 300.0
    max_attempts: int = 5


@dataclass(frozen=True)
class DerivationSettings:
    threshold: Decimal = Decimal("500.00")
    default_requires_waybill: bool = False
    waybill_series: str = "T001"
    transfer_delay_days: int = 1
    transport_mode: TransportMode = TransportMode.PUBLIC
    recipient_overrides: Mapping[str, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkerSettings:
    retry_workers: int = 2
    bus_workers: int = 4
    bus_max_deliveries: int = 3


@dataclass(frozen=True)
class PipelineSettings:
    environment: str = "development"
    gateway: GatewaySettings = field(default_factory=GatewaySettings)
    signing: SigningSettings = field(default_factory=SigningSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    derivation: DerivationSettings = field(default_factory=DerivationSettings)
    workers: WorkerSettings = field(default_factory=WorkerSettings)
    recover_on_start: bool = True

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


# ══════════════════════════════════════════════════════════════
# PARSERS
# ══════════════════════════════════════════════════════════════

def _bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(name, f"expected a boolean, got '{raw}'")


def _int(environ: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(name, f"expected an integer, got '{raw}'")
    if value < minimum:
        raise ConfigurationError(name, f"must be >= {minimum}, got {value}")
    return value


def _float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(name, f"expected a number, got '{raw}'")
    if value <= 0:
        raise ConfigurationError(name, f"must be > 0, got {value}")
    return value


def _decimal(environ: Mapping[str, str], name: str, default: Decimal) -> Decimal:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        raise ConfigurationError(name, f"expected a decimal amount, got '{raw}'")
    if not value.is_finite() or value < 0:
        raise ConfigurationError(name, f"must be a non-negative amount, got '{raw}'")
    return value


def _str(environ: Mapping[str, str], name: str, default: str = "") -> str:
    raw = environ.get(name)
    return raw.strip() if raw is not None else default


def _overrides(environ: Mapping[str, str], name: str) -> dict[str, bool]:
    """`20100070970:true,20601234567:false` -> {tax_id: bool}"""
    raw = _str(environ, name)
    overrides: dict[str, bool] = {}
    if not raw:
        return overrides
    for entry in raw.split(","):
        tax_id, sep, flag = entry.strip().partition(":")
        if not sep or not tax_id.strip():
            raise ConfigurationError(name, f"entry '{entry}' is not TAX_ID:BOOL")
        overrides[tax_id.strip()] = _bool({name: flag}, name, False)
    return overrides


# ══════════════════════════════════════════════════════════════
# LOADER
# ══════════════════════════════════════════════════════════════

def load_settings(environ: Optional[Mapping[str, str]] = None) -> PipelineSettings:
    """
    Build PipelineSettings from environment variables.

    Raises:
        ConfigurationError: any variable is malformed or inconsistent.
    """
    env = os.environ if environ is None else environ

    environment = _str(env, "FISCAL_ENVIRONMENT", "development").lower()
    if environment not in ENVIRONMENTS:
        raise ConfigurationError(
            "FISCAL_ENVIRONMENT", f"must be one of {', '.join(ENVIRONMENTS)}"
        )

    gateway = GatewaySettings(
        base_url=_str(env, "FISCAL_GATEWAY_URL", GatewaySettings.base_url),
        username=_str(env, "FISCAL_GATEWAY_USERNAME"),
        password=_str(env, "FISCAL_GATEWAY_PASSWORD"),
        invoice_path=_str(env, "FISCAL_GATEWAY_INVOICE_PATH", DEFAULT_INVOICE_PATH),
        waybill_path=_str(env, "FISCAL_GATEWAY_WAYBILL_PATH", DEFAULT_WAYBILL_PATH),
        status_path=_str(env, "FISCAL_GATEWAY_STATUS_PATH", DEFAULT_STATUS_PATH),
        timeout=_float(env, "FISCAL_GATEWAY_TIMEOUT", 30.0),
        sandbox=_bool(env, "FISCAL_GATEWAY_SANDBOX", environment != "production"),
    )
    if not gateway.base_url.startswith(("http://", "https://")):
        raise ConfigurationError("FISCAL_GATEWAY_URL", "must be an http(s) URL")
    if not gateway.sandbox and not (gateway.username and gateway.password):
        raise ConfigurationError(
            "FISCAL_GATEWAY_USERNAME",
            "gateway credentials are required outside sandbox mode",
        )

    signing = SigningSettings(
        certificate_path=_str(env, "FISCAL_SIGNING_CERT_PATH") or None,
        certificate_password=_str(env, "FISCAL_SIGNING_CERT_PASSWORD") or None,
        allow_demo=_bool(env, "FISCAL_SIGNING_ALLOW_DEMO", False),
    )

    retry = RetrySettings(
        base_delay=_float(env, "FISCAL_RETRY_BASE_DELAY", 2.0),
        max_delay=_float(env, "FISCAL_RETRY_MAX_DELAY", 300.0),
        max_attempts=_int(env, "FISCAL_RETRY_MAX_ATTEMPTS", 5, minimum=1),
    )
    if retry.max_delay < retry.base_delay:
        raise ConfigurationError("FISCAL_RETRY_MAX_DELAY", "must be >= FISCAL_RETRY_BASE_DELAY")

    waybill_series = _str(env, "FISCAL_DERIVATION_WAYBILL_SERIES", "T001")
    try:
        validate_series(waybill_series)
    except ValidationError as exc:
        raise ConfigurationError("FISCAL_DERIVATION_WAYBILL_SERIES", exc.message)
    raw_mode = _str(env, "FISCAL_DERIVATION_TRANSPORT_MODE", TransportMode.PUBLIC.value).upper()
    try:
        transport_mode = TransportMode(raw_mode)
    except ValueError:
        raise ConfigurationError("FISCAL_DERIVATION_TRANSPORT_MODE", "must be PUBLIC or PRIVATE")

    derivation = DerivationSettings(
        threshold=_decimal(env, "FISCAL_DERIVATION_THRESHOLD", Decimal("500.00")),
        default_requires_waybill=_bool(env, "FISCAL_DERIVATION_DEFAULT_REQUIRES_WAYBILL", False),
        waybill_series=waybill_series,
        transfer_delay_days=_int(env, "FISCAL_DERIVATION_TRANSFER_DELAY_DAYS", 1, minimum=0),
        transport_mode=transport_mode,
        recipient_overrides=_overrides(env, "FISCAL_DERIVATION_RECIPIENT_OVERRIDES"),
    )

    workers = WorkerSettings(
        retry_workers=_int(env, "FISCAL_RETRY_WORKERS", 2, minimum=1),
        bus_workers=_int(env, "FISCAL_BUS_WORKERS", 4, minimum=1),
        bus_max_deliveries=_int(env, "FISCAL_BUS_MAX_DELIVERIES", 3, minimum=1),
    )

    return PipelineSettings(
        environment=environment,
        gateway=gateway,
        signing=signing,
        retry=retry,
        derivation=derivation,
        workers=workers,
        recover_on_start=_bool(env, "FISCAL_RECOVER_ON_START", True),
    )
