"""
Manual smoke runner for the fiscal issuance pipeline.

Issues one sample invoice through a fully wired pipeline (in-memory store,
sandbox gateway, demo signing key unless a certificate is given) and
prints every command result.

Usage:
    python scripts/smoke_issuance.py
    python scripts/smoke_issuance.py --amount 120.00
    python scripts/smoke_issuance.py --fail-first 2
    python scripts/smoke_issuance.py --gateway-url https://e-beta.example --no-sandbox
"""

from __future__ import annotations

import argparse
import json
import logging
import time
from dataclasses import replace
from decimal import Decimal

from fiscal.bootstrap import build_pipeline
from fiscal.commands.result import CommandResult
from fiscal.documents.numbering import InMemoryNumberingProvider
from fiscal.settings import load_settings
from fiscal.storage.memory import InMemoryRecordStore


DEV_TENANT_ID = "tenant-smoke"
DEV_ISSUER_TAX_ID = "20123456789"
DEV_RECIPIENT_TAX_ID = "20100070970"


def _sample_invoice(amount: Decimal) -> dict:
    tax = (amount * Decimal("0.18") / Decimal("1.18")).quantize(Decimal("0.01"))
    base = amount - tax
    return {
        "tenant_id": DEV_TENANT_ID,
        "document_type": "INVOICE",
        "series": "F001",
        "issuer_tax_id": DEV_ISSUER_TAX_ID,
        "recipient_tax_id": DEV_RECIPIENT_TAX_ID,
        "recipient_name": "Smoke Test Customer S.A.C.",
        "currency": "PEN",
        "line_items": [
            {
                "code": "P-001",
                "description": "Sample product",
                "quantity": "4",
                "unit_price": str((base / 4).quantize(Decimal("0.01"))),
                "line_total": str(base),
            }
        ],
        "totals": {
            "taxable_base": str(base),
            "tax": str(tax),
            "grand_total": str(amount),
        },
    }


def _print_case(label: str, result: CommandResult) -> None:
    print(f"\n[{label}] success={result.success}")
    print(json.dumps(result.to_dict(), indent=2, sort_keys=True, default=str))


def run(args: argparse.Namespace) -> None:
    settings = load_settings()
    gateway = settings.gateway
    if args.gateway_url:
        gateway = replace(gateway, base_url=args.gateway_url)
    if args.no_sandbox:
        gateway = replace(gateway, sandbox=False)
    signing = settings.signing
    if args.certificate:
        signing = replace(signing, certificate_path=args.certificate, certificate_password=args.password)
    else:
        signing = replace(signing, allow_demo=True)
    settings = replace(
        settings,
        gateway=gateway,
        signing=signing,
        retry=replace(settings.retry, base_delay=args.retry_delay, max_delay=max(args.retry_delay, 5.0)),
    )

    pipeline = build_pipeline(settings, InMemoryRecordStore(), InMemoryNumberingProvider())
    if pipeline.sandbox is not None and args.fail_first:
        pipeline.sandbox.fail_next(args.fail_first)
    pipeline.start()
    try:
        issued = pipeline.service.issue(_sample_invoice(Decimal(args.amount)))
        _print_case("issue", issued)
        if not issued.data:
            return
        document_id = issued.data["id"]

        deadline = time.monotonic() + args.wait
        while pipeline.scheduler.pending(document_id) and time.monotonic() < deadline:
            time.sleep(0.1)
        pipeline.bus.flush(timeout=args.wait)

        _print_case("get-document", pipeline.service.get_document(document_id))
        _print_case("query-status", pipeline.service.query_status(document_id))
        waybill = pipeline.machine.find_by_related(document_id)
        if waybill is not None:
            _print_case("derived-waybill", pipeline.service.get_document(waybill.id))
        else:
            print("\n[derived-waybill] none")
    finally:
        pipeline.shutdown()


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--amount", default="800.00", help="Invoice grand total.")
    parser.add_argument("--gateway-url", default=None, help="Gateway base URL.")
    parser.add_argument("--no-sandbox", action="store_true", help="Talk to the real gateway.")
    parser.add_argument("--certificate", default=None, help="PKCS#12 signing bundle.")
    parser.add_argument("--password", default=None, help="Signing bundle password.")
    parser.add_argument(
        "--fail-first",
        type=int,
        default=0,
        help="Sandbox answers the first N submissions with a retryable fault.",
    )
    parser.add_argument("--retry-delay", type=float, default=0.2, help="Retry base delay (s).")
    parser.add_argument("--wait", type=float, default=15.0, help="Max seconds to wait for retries.")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
    run(args)


if __name__ == "__main__":
    main()
