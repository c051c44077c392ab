# Overview: Outbound e-invoice provider client (remote invoice numbers for FATURA documents).

from __future__ import annotations

from dataclasses import dataclass

import httpx
from flask import current_app

from ..time_utils import utcnow

PROVIDER_STATUS_SENT = "SENT"
PROVIDER_STATUS_SIMULATED = "SIMULATED"
PROVIDER_STATUS_FAILED = "FAILED"
PROVIDER_STATUS_SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class ProviderResult:
    status: str
    invoice_number: str | None = None


def simulated_invoice_number(now=None) -> str:
    """Placeholder number used when no provider credentials are configured."""
    now = now or utcnow()
    return f"SIM-{now:%Y%m%d-%H%M%S}"


class InvoiceProviderClient:
    """
    Thin synchronous client for the remote invoice API.

    POST {base_url}/invoices with a bearer token; the response body carries
    `invoiceNumber` (or `invoice_number`). Without an API key nothing is sent
    and a simulated number is returned instead.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        firm_id: str | None = None,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.firm_id = firm_id or ""
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_app_config(cls, transport: httpx.BaseTransport | None = None) -> "InvoiceProviderClient":
        cfg = current_app.config
        return cls(
            cfg.get("INVOICE_PROVIDER_URL", ""),
            cfg.get("INVOICE_PROVIDER_API_KEY", ""),
            firm_id=cfg.get("INVOICE_PROVIDER_FIRM_ID", ""),
            timeout=float(cfg.get("INVOICE_PROVIDER_TIMEOUT", 15)),
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.base_url)

    def _headers(self) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.firm_id:
            headers["X-Firm-Id"] = self.firm_id
        return headers

    def send_invoice(self, payload: dict) -> ProviderResult:
        """
        Submit one invoice payload.

        Never raises for transport or HTTP failures: those come back as a
        FAILED result so stock consumption is not blocked on the provider.
        """
        if not self.is_configured:
            current_app.logger.warning("Invoice provider credentials missing; using simulated invoice number")
            return ProviderResult(PROVIDER_STATUS_SIMULATED, simulated_invoice_number())

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(f"{self.base_url}/invoices", json=payload, headers=self._headers())
                resp.raise_for_status()
                data = resp.json() if resp.content else {}
        except (httpx.HTTPError, ValueError) as e:
            current_app.logger.warning("Invoice provider call failed: %s", e)
            return ProviderResult(PROVIDER_STATUS_FAILED)

        number = None
        if isinstance(data, dict):
            number = data.get("invoiceNumber") or data.get("invoice_number")
        return ProviderResult(PROVIDER_STATUS_SENT, str(number) if number else None)
