"""
Fiscal Bootstrap - Pipeline Wiring
==================================
Builds every component explicitly and in dependency order:

    registry -> bus -> scheduler -> signer/keys -> gateway
             -> state machine -> derivation engine -> service

If the configuration is unsafe (demo signing in production, sandbox
gateway in production) the pipeline refuses to start. No fallback, no
warning-only mode.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from fiscal.commands.service import IssuanceService
from fiscal.derivation.engine import DerivationRuleEngine
from fiscal.derivation.rules import default_rules
from fiscal.documents.numbering import NumberingProvider
from fiscal.errors import ConfigurationError
from fiscal.events.bus import EventBus
from fiscal.events.registry import SubscriberRegistry
from fiscal.gateway.client import GatewayClient
from fiscal.gateway.envelope import GatewayCredentials
from fiscal.gateway.sandbox import SandboxAuthority
from fiscal.lifecycle.machine import DocumentStateMachine
from fiscal.retry.policy import RetryPolicy
from fiscal.retry.scheduler import SubmissionRetryScheduler
from fiscal.settings import PipelineSettings
from fiscal.signing.keys import (
    DemoKeyProvider,
    KeyMaterialProvider,
    Pkcs12KeyProvider,
    StaticKeyProvider,
)
from fiscal.signing.signer import DocumentSigner
from fiscal.storage.protocol import RecordStore
from fiscal.time import Clock, SystemClock

logger = logging.getLogger("fiscal.bootstrap")


def check_startup_settings(settings: PipelineSettings) -> None:
    """Raise ConfigurationError if the settings must not reach production."""
    if not settings.is_production:
        return
    if settings.signing.allow_demo:
        raise ConfigurationError(
            "FISCAL_SIGNING_ALLOW_DEMO",
            "demo signing cannot be enabled in production",
        )
    if settings.gateway.sandbox:
        raise ConfigurationError(
            "FISCAL_GATEWAY_SANDBOX",
            "the sandbox gateway cannot be used in production",
        )
    if not settings.signing.certificate_path:
        raise ConfigurationError(
            "FISCAL_SIGNING_CERT_PATH",
            "a signing certificate is required in production",
        )


def build_key_provider(settings: PipelineSettings) -> KeyMaterialProvider:
    signing = settings.signing
    if signing.certificate_path:
        return Pkcs12KeyProvider(signing.certificate_path, signing.certificate_password)
    if signing.allow_demo:
        return DemoKeyProvider()
    logger.warning("No signing certificate configured: documents cannot be signed")
    return StaticKeyProvider(None)


@dataclass
class Pipeline:
    settings: PipelineSettings
    store: RecordStore
    registry: SubscriberRegistry
    bus: EventBus
    scheduler: SubmissionRetryScheduler
    signer: DocumentSigner
    key_provider: KeyMaterialProvider
    gateway: GatewayClient
    machine: DocumentStateMachine
    derivation: DerivationRuleEngine
    service: IssuanceService
    sandbox: Optional[SandboxAuthority] = None

    def start(self) -> None:
        self.scheduler.start()
        if self.settings.recover_on_start:
            self.machine.recover_in_flight()
        logger.info(f"Fiscal pipeline started ({self.settings.environment})")

    def shutdown(self, flush_timeout: Optional[float] = 10.0) -> None:
        self.scheduler.shutdown()
        if not self.bus.flush(flush_timeout):
            logger.warning("Event bus still had deliveries outstanding at shutdown")
        self.bus.shutdown()
        self.gateway.close()
        logger.info("Fiscal pipeline stopped")


def build_pipeline(
    settings: PipelineSettings,
    store: RecordStore,
    numbering: NumberingProvider,
    transport: Optional[httpx.BaseTransport] = None,
    *,
    clock: Optional[Clock] = None,
    key_provider: Optional[KeyMaterialProvider] = None,
) -> Pipeline:
    """
    Wire a pipeline. Nothing runs until Pipeline.start().

    Args:
        transport:    httpx transport for the gateway. When omitted, the
                      sandbox authority is used if configured, else the network.
        key_provider: overrides the provider derived from settings.
    """
    check_startup_settings(settings)
    clock = clock or SystemClock()

    registry = SubscriberRegistry()
    bus = EventBus(
        registry,
        workers=settings.workers.bus_workers,
        max_deliveries=settings.workers.bus_max_deliveries,
    )
    scheduler = SubmissionRetryScheduler(
        RetryPolicy(
            base_delay=settings.retry.base_delay,
            max_delay=settings.retry.max_delay,
            max_attempts=settings.retry.max_attempts,
        ),
        clock,
        workers=settings.workers.retry_workers,
    )

    sandbox = None
    if transport is None and settings.gateway.sandbox:
        sandbox = SandboxAuthority()
        transport = sandbox.transport()
        logger.warning("Gateway sandbox in use: nothing reaches the tax authority")

    gateway = GatewayClient(
        settings.gateway.base_url,
        GatewayCredentials(settings.gateway.username, settings.gateway.password),
        invoice_path=settings.gateway.invoice_path,
        waybill_path=settings.gateway.waybill_path,
        status_path=settings.gateway.status_path,
        timeout=settings.gateway.timeout,
        transport=transport,
    )

    signer = DocumentSigner()
    keys = key_provider or build_key_provider(settings)
    machine = DocumentStateMachine(
        store, numbering, signer, keys, gateway, scheduler, bus, clock
    )

    derivation = DerivationRuleEngine(
        machine,
        bus,
        default_rules(
            settings.derivation.threshold,
            settings.derivation.default_requires_waybill,
            settings.derivation.recipient_overrides,
        ),
        waybill_series=settings.derivation.waybill_series,
        transfer_delay_days=settings.derivation.transfer_delay_days,
        transport_mode=settings.derivation.transport_mode,
        clock=clock,
    )
    derivation.register()

    return Pipeline(
        settings=settings,
        store=store,
        registry=registry,
        bus=bus,
        scheduler=scheduler,
        signer=signer,
        key_provider=keys,
        gateway=gateway,
        machine=machine,
        derivation=derivation,
        service=IssuanceService(machine),
        sandbox=sandbox,
    )
