"""
Tests for fiscal.settings and fiscal.bootstrap.
"""

from __future__ import annotations

import time
from decimal import Decimal

import pytest

from conftest import invoice_draft
from fiscal.bootstrap import build_key_provider, build_pipeline, check_startup_settings
from fiscal.documents.models import DocumentState, TransportMode
from fiscal.documents.numbering import InMemoryNumberingProvider
from fiscal.errors import ConfigurationError
from fiscal.settings import PipelineSettings, SigningSettings, load_settings
from fiscal.signing.keys import DemoKeyProvider, Pkcs12KeyProvider, StaticKeyProvider
from fiscal.storage.memory import InMemoryRecordStore

PRODUCTION = {
    "FISCAL_ENVIRONMENT": "production",
    "FISCAL_GATEWAY_URL": "https://e-factura.example.gob.pe",
    "FISCAL_GATEWAY_USERNAME": "20123456789MODDATOS",
    "FISCAL_GATEWAY_PASSWORD": "secret",
    "FISCAL_SIGNING_CERT_PATH": "/etc/fiscal/issuer.p12",
}


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings({})
        assert settings.environment == "development"
        assert settings.gateway.sandbox is True
        assert settings.signing.allow_demo is False
        assert settings.retry.max_attempts == 5
        assert settings.derivation.threshold == Decimal("500.00")
        assert settings.derivation.waybill_series == "T001"
        assert settings.recover_on_start is True

    def test_values_are_parsed(self):
        settings = load_settings(
            {
                "FISCAL_GATEWAY_TIMEOUT": "12.5",
                "FISCAL_RETRY_BASE_DELAY": "1",
                "FISCAL_RETRY_MAX_DELAY": "60",
                "FISCAL_RETRY_MAX_ATTEMPTS": "8",
                "FISCAL_DERIVATION_THRESHOLD": "1000.50",
                "FISCAL_DERIVATION_DEFAULT_REQUIRES_WAYBILL": "yes",
                "FISCAL_DERIVATION_TRANSPORT_MODE": "private",
                "FISCAL_DERIVATION_RECIPIENT_OVERRIDES": "20100070970:true, 20601234567:false",
                "FISCAL_BUS_WORKERS": "2",
            }
        )
        assert settings.gateway.timeout == 12.5
        assert settings.retry.max_delay == 60.0
        assert settings.retry.max_attempts == 8
        assert settings.derivation.threshold == Decimal("1000.50")
        assert settings.derivation.default_requires_waybill is True
        assert settings.derivation.transport_mode is TransportMode.PRIVATE
        assert settings.derivation.recipient_overrides == {
            "20100070970": True,
            "20601234567": False,
        }
        assert settings.workers.bus_workers == 2

    def test_production_turns_sandbox_off(self):
        settings = load_settings(PRODUCTION)
        assert settings.is_production
        assert settings.gateway.sandbox is False

    @pytest.mark.parametrize(
        "environ, setting",
        [
            ({"FISCAL_ENVIRONMENT": "qa"}, "FISCAL_ENVIRONMENT"),
            ({"FISCAL_GATEWAY_SANDBOX": "maybe"}, "FISCAL_GATEWAY_SANDBOX"),
            ({"FISCAL_GATEWAY_URL": "ftp://gateway"}, "FISCAL_GATEWAY_URL"),
            ({"FISCAL_GATEWAY_SANDBOX": "false"}, "FISCAL_GATEWAY_USERNAME"),
            ({"FISCAL_GATEWAY_TIMEOUT": "0"}, "FISCAL_GATEWAY_TIMEOUT"),
            ({"FISCAL_RETRY_MAX_ATTEMPTS": "three"}, "FISCAL_RETRY_MAX_ATTEMPTS"),
            ({"FISCAL_RETRY_BASE_DELAY": "10", "FISCAL_RETRY_MAX_DELAY": "5"}, "FISCAL_RETRY_MAX_DELAY"),
            ({"FISCAL_DERIVATION_THRESHOLD": "-1"}, "FISCAL_DERIVATION_THRESHOLD"),
            ({"FISCAL_DERIVATION_WAYBILL_SERIES": "T-001"}, "FISCAL_DERIVATION_WAYBILL_SERIES"),
            ({"FISCAL_DERIVATION_TRANSPORT_MODE": "AIR"}, "FISCAL_DERIVATION_TRANSPORT_MODE"),
            ({"FISCAL_DERIVATION_RECIPIENT_OVERRIDES": "20100070970"}, "FISCAL_DERIVATION_RECIPIENT_OVERRIDES"),
        ],
    )
    def test_malformed_values(self, environ, setting):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(environ)
        assert exc_info.value.setting == setting


class TestStartupChecks:
    def test_production_refuses_demo_signing(self):
        settings = load_settings({**PRODUCTION, "FISCAL_SIGNING_ALLOW_DEMO": "true"})
        with pytest.raises(ConfigurationError, match="demo signing"):
            check_startup_settings(settings)

    def test_production_refuses_sandbox(self):
        settings = load_settings({**PRODUCTION, "FISCAL_GATEWAY_SANDBOX": "true"})
        with pytest.raises(ConfigurationError, match="sandbox"):
            check_startup_settings(settings)

    def test_production_needs_certificate(self):
        environ = dict(PRODUCTION)
        del environ["FISCAL_SIGNING_CERT_PATH"]
        with pytest.raises(ConfigurationError, match="certificate"):
            check_startup_settings(load_settings(environ))

    def test_safe_production_settings_pass(self):
        check_startup_settings(load_settings(PRODUCTION))

    def test_development_allows_demo(self):
        check_startup_settings(load_settings({"FISCAL_SIGNING_ALLOW_DEMO": "1"}))

    def test_key_provider_selection(self):
        assert isinstance(
            build_key_provider(load_settings(PRODUCTION)), Pkcs12KeyProvider
        )
        assert isinstance(
            build_key_provider(PipelineSettings(signing=SigningSettings(allow_demo=True))),
            DemoKeyProvider,
        )
        assert isinstance(build_key_provider(PipelineSettings()), StaticKeyProvider)


def test_pipeline_issues_invoice_and_derives_waybill(key_material):
    settings = load_settings(
        {"FISCAL_RETRY_BASE_DELAY": "0.01", "FISCAL_RETRY_MAX_DELAY": "0.05"}
    )
    pipeline = build_pipeline(
        settings,
        InMemoryRecordStore(),
        InMemoryNumberingProvider(),
        key_provider=StaticKeyProvider(key_material),
    )
    assert pipeline.sandbox is not None
    pipeline.start()
    try:
        pipeline.sandbox.fail_next(1)
        result = pipeline.service.issue(invoice_draft("800.00"))
        assert result.error_code == "TRANSPORT_FAILURE"
        invoice_id = result.data["id"]

        assert _wait_for(
            lambda: pipeline.machine.get(invoice_id).state is DocumentState.ACCEPTED
        )
        assert _wait_for(lambda: _waybill_state(pipeline, invoice_id) is DocumentState.ACCEPTED)
        assert pipeline.machine.list_attempts(invoice_id)[-1].outcome.value == "SUCCESS"
    finally:
        pipeline.shutdown()


def _waybill_state(pipeline, invoice_id):
    waybill = pipeline.machine.find_by_related(invoice_id)
    return waybill.state if waybill is not None else None


def _wait_for(condition, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return condition()
