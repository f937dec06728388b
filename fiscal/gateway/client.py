"""
Fiscal Gateway - Client
=======================
Transmits signed payloads to the authority gateway and reports the outcome.

Doctrine:
- Nothing raises to the caller. Connect errors, timeouts, HTTP errors
  without a SOAP fault and unreadable replies all become FAULT results.
- query_status never changes anything on the gateway side.
- Invoice-family and waybill-family documents go to distinct service
  paths on the same host.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx

from fiscal.documents.models import DocumentType
from fiscal.gateway.envelope import GatewayCredentials, build_get_status, build_send_bill
from fiscal.gateway.packaging import SubmissionMeta, package_payload
from fiscal.gateway.responses import (
    GatewayResult,
    ResponseParseError,
    find_fault,
    parse_get_status_response,
    parse_send_bill_response,
)

logger = logging.getLogger("fiscal.gateway")


DEFAULT_INVOICE_PATH = "/ol-ti-itcpfegem/billService"
DEFAULT_WAYBILL_PATH = "/ol-ti-itemision-guia-gem/billService"
DEFAULT_STATUS_PATH = "/ol-it-wsconscpegem/billConsultService"


class GatewayClient:
    """
    SOAP client for the authority gateway.

    Usage:
        client = GatewayClient(
            "https://e-beta.example.gob.pe",
            GatewayCredentials("20123456789MODDATOS", "secret"),
        )
        result = client.submit(document.signed_payload, SubmissionMeta.from_document(document))
    """

    def __init__(
        self,
        base_url: str,
        credentials: GatewayCredentials,
        *,
        invoice_path: str = DEFAULT_INVOICE_PATH,
        waybill_path: str = DEFAULT_WAYBILL_PATH,
        status_path: str = DEFAULT_STATUS_PATH,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not base_url:
            raise ValueError("base_url must be a non-empty string.")
        if timeout <= 0:
            raise ValueError("timeout must be > 0.")
        self._credentials = credentials
        self._invoice_path = invoice_path
        self._waybill_path = waybill_path
        self._status_path = status_path
        self._http = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"Content-Type": "text/xml; charset=utf-8"},
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GatewayClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def path_for(self, document_type: DocumentType) -> str:
        if document_type.is_waybill_family:
            return self._waybill_path
        return self._invoice_path

    # ══════════════════════════════════════════════════════════
    # OPERATIONS
    # ══════════════════════════════════════════════════════════

    def submit(self, signed_payload: bytes, meta: SubmissionMeta) -> GatewayResult:
        if not signed_payload:
            return GatewayResult.fault("Signed payload is empty.")
        file_name, content = package_payload(signed_payload, meta)
        body = build_send_bill(self._credentials, file_name, content)
        logger.info(f"sendBill {file_name} -> {self.path_for(meta.document_type)}")
        result = self._call(
            self.path_for(meta.document_type),
            "urn:sendBill",
            body,
            parse_send_bill_response,
        )
        logger.info(f"sendBill {file_name}: {result.outcome.value} ({result.describe()})")
        return result

    def query_status(
        self,
        issuer_tax_id: str,
        document_type: DocumentType,
        series: str,
        number: int,
    ) -> GatewayResult:
        body = build_get_status(
            self._credentials,
            issuer_tax_id,
            document_type.authority_code,
            series,
            number,
        )
        label = f"{issuer_tax_id}-{document_type.authority_code}-{series}-{number}"
        result = self._call(self._status_path, "urn:getStatus", body, parse_get_status_response)
        logger.info(f"getStatus {label}: {result.outcome.value} ({result.describe()})")
        return result

    # ══════════════════════════════════════════════════════════
    # TRANSPORT
    # ══════════════════════════════════════════════════════════

    def _call(
        self,
        path: str,
        action: str,
        body: bytes,
        parse: Callable[[bytes], GatewayResult],
    ) -> GatewayResult:
        try:
            response = self._http.post(path, content=body, headers={"SOAPAction": action})
        except httpx.TimeoutException as exc:
            logger.warning(f"{action} timed out: {exc}")
            return GatewayResult.fault(f"Gateway timed out: {exc}", timed_out=True)
        except httpx.TransportError as exc:
            logger.warning(f"{action} transport error: {exc}")
            return GatewayResult.fault(f"Gateway unreachable: {exc}")

        if response.status_code >= 400:
            try:
                fault = find_fault(response.content)
            except ResponseParseError:
                fault = None
            if fault is not None:
                return fault
            logger.warning(f"{action} failed with HTTP {response.status_code}")
            return GatewayResult.fault(
                f"Gateway answered HTTP {response.status_code}",
                code=f"HTTP{response.status_code}",
            )

        try:
            return parse(response.content)
        except ResponseParseError as exc:
            logger.warning(f"{action} reply could not be parsed: {exc}")
            return GatewayResult.fault(f"Unreadable gateway reply: {exc}")
