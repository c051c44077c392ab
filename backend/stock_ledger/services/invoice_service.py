# backend/stock_ledger/services/invoice_service.py
"""
Billing documents and the stock they consume.

DOCUMENT TYPES:
- PROFORMA: never touches the ledger.
- IRSALIYE / FATURA: consume stock on creation through exactly one of
    * explicit stock adjustments: [(warehouse_id, lot_id, quantity), ...]
    * transfer settlement: ids of PENDING transfers into the customer's warehouse

Both stock paths are all-or-nothing. Explicit adjustments are pre-checked line
by line (the first short line is reported with its index) and then applied in
one SAVEPOINT. Transfer settlement validates every transfer before the first
movement.

Money is integer cents; VAT rates are basis points. Line VAT is rounded half-up
to the cent.
"""
from __future__ import annotations

from flask import current_app

from ..errors import (
    AlreadyCancelled,
    ImmutableDocument,
    InsufficientStock,
    InvalidOperation,
    InvalidTransferOwnership,
    InvoiceNotFound,
    LotNotFound,
    ProductNotFound,
    TransferNotFound,
    TransferNotPending,
)
from ..extensions import db
from ..models import Invoice, Lot, Product, Transfer
from ..models.audit import ACTION_INVOICE_CANCELLED, ACTION_INVOICE_CREATED, ACTION_INVOICE_UPDATED
from ..time_utils import utcnow
from .audit_service import record_log
from .concurrency import lock_for_update, run_with_retry
from .invoice_provider import PROVIDER_STATUS_SKIPPED, InvoiceProviderClient
from .ledger_service import Movement, apply_movements, check_movements, get_location_quantity
from .transfer_service import TRANSFER_STATUS_COMPLETED, TRANSFER_STATUS_PENDING
from .warehouse_service import get_customer, get_warehouse


DOCUMENT_TYPE_PROFORMA = "PROFORMA"
DOCUMENT_TYPE_IRSALIYE = "IRSALIYE"
DOCUMENT_TYPE_FATURA = "FATURA"
DOCUMENT_TYPES = (DOCUMENT_TYPE_PROFORMA, DOCUMENT_TYPE_IRSALIYE, DOCUMENT_TYPE_FATURA)
STOCK_DOCUMENT_TYPES = (DOCUMENT_TYPE_IRSALIYE, DOCUMENT_TYPE_FATURA)


# =============================================================================
# Totals
# =============================================================================

def compute_line_totals(quantity: int, unit_price_cents: int, vat_rate_bps: int) -> tuple[int, int, int]:
    """
    Returns (net_cents, vat_cents, total_cents) for one line.

    VAT = net * rate / 10000, rounded half-up.
    """
    net = int(quantity) * int(unit_price_cents)
    vat = (net * int(vat_rate_bps) + 5000) // 10000
    return net, vat, net + vat


def compute_invoice_totals(lines: list[dict]) -> tuple[int, int, int]:
    """Returns (subtotal_cents, vat_total_cents, total_cents) summed over line snapshots."""
    subtotal = sum(line["net_cents"] for line in lines)
    vat_total = sum(line["vat_cents"] for line in lines)
    return subtotal, vat_total, subtotal + vat_total


def _positive_int(value, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidOperation(f"{field} must be an integer")
    if number <= 0:
        raise InvalidOperation(f"{field} must be positive")
    return number


def _non_negative_int(value, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidOperation(f"{field} must be an integer")
    if number < 0:
        raise InvalidOperation(f"{field} cannot be negative")
    return number


def build_line_snapshots(items: list[dict]) -> list[dict]:
    """
    Resolve raw item input into value snapshots.

    Each item: product_id, quantity, optional lot_id, unit_price_cents
    (defaults to the product's sale price) and vat_rate_bps (defaults to the
    product's VAT rate). The snapshot copies names and numbers so later product
    edits never rewrite the document.
    """
    if not items:
        raise InvalidOperation("At least one invoice item is required")

    lines = []
    for index, item in enumerate(items):
        product_id = item.get("product_id")
        product = db.session.get(Product, product_id) if product_id is not None else None
        if product is None:
            raise ProductNotFound(product_id)

        lot = None
        lot_id = item.get("lot_id")
        if lot_id is not None:
            lot = db.session.get(Lot, lot_id)
            if lot is None:
                raise LotNotFound(lot_id)
            if lot.product_id != product.id:
                raise InvalidOperation(f"Item {index}: lot {lot.id} does not belong to product {product.id}")

        quantity = _positive_int(item.get("quantity"), f"Item {index} quantity")
        unit_price = item.get("unit_price_cents")
        if unit_price is None:
            unit_price = product.sale_price_cents or 0
        unit_price = _non_negative_int(unit_price, f"Item {index} unit_price_cents")
        vat_rate = item.get("vat_rate_bps")
        if vat_rate is None:
            vat_rate = product.vat_rate_bps or 0
        vat_rate = _non_negative_int(vat_rate, f"Item {index} vat_rate_bps")

        net, vat, total = compute_line_totals(quantity, unit_price, vat_rate)
        lines.append({
            "product_id": product.id,
            "reference_code": product.reference_code,
            "product_name": product.name,
            "lot_id": lot.id if lot else None,
            "lot_number": lot.lot_number if lot else None,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "vat_rate_bps": vat_rate,
            "net_cents": net,
            "vat_cents": vat,
            "total_cents": total,
        })
    return lines


# =============================================================================
# Stock consumption
# =============================================================================

def _apply_stock_adjustments(adjustments: list[dict]) -> None:
    movements = []
    for index, adj in enumerate(adjustments):
        warehouse = get_warehouse(adj.get("warehouse_id"))
        lot = db.session.get(Lot, adj.get("lot_id"))
        if lot is None:
            raise LotNotFound(adj.get("lot_id"))
        quantity = _positive_int(adj.get("quantity"), f"Adjustment {index} quantity")
        movements.append(Movement(warehouse.id, lot.id, -quantity))

    failing = check_movements(movements)
    if failing is not None:
        step = movements[failing]
        already_taken = sum(
            -m.delta for m in movements[:failing]
            if (m.warehouse_id, m.lot_id) == (step.warehouse_id, step.lot_id)
        )
        raise InsufficientStock(
            warehouse_id=step.warehouse_id,
            lot_id=step.lot_id,
            available=get_location_quantity(step.warehouse_id, step.lot_id) - already_taken,
            requested=-step.delta,
            line_index=failing,
        )

    apply_movements(movements)


def _load_settlement_transfers(transfer_ids: list[int], customer) -> list[Transfer]:
    """Fetch and validate every transfer before any ledger mutation."""
    transfers = []
    for transfer_id in transfer_ids:
        transfer = lock_for_update(db.session.query(Transfer).filter_by(id=transfer_id)).first()
        if transfer is None:
            raise TransferNotFound(transfer_id)
        if customer.warehouse_id is None or transfer.to_warehouse_id != customer.warehouse_id:
            raise InvalidTransferOwnership(
                f"Transfer {transfer.id} was not sent to customer {customer.id}'s warehouse"
            )
        if transfer.status != TRANSFER_STATUS_PENDING:
            raise TransferNotPending(f"Transfer {transfer.id} is {transfer.status}, not PENDING")
        transfers.append(transfer)
    return transfers


def _settle_transfers(transfers: list[Transfer]) -> None:
    movements = []
    for transfer in transfers:
        # Consignment sold: leaves the customer location, counter-entry on the source
        movements.append(Movement(transfer.to_warehouse_id, transfer.lot_id, -transfer.quantity))
        movements.append(Movement(transfer.from_warehouse_id, transfer.lot_id, transfer.quantity))
    apply_movements(movements)


def _unique_ids(ids) -> list[int]:
    seen = []
    for raw in ids or []:
        value = int(raw)
        if value not in seen:
            seen.append(value)
    return seen


def _provider_payload(invoice: Invoice, customer, lines: list[dict]) -> dict:
    return {
        "documentType": invoice.document_type,
        "customer": {
            "name": customer.name,
            "taxNumber": customer.tax_number,
            "taxOffice": customer.tax_office,
            "email": customer.email,
            "phone": customer.phone,
            "address": customer.address,
        },
        "items": [
            {
                "productId": line["product_id"],
                "referenceCode": line["reference_code"],
                "name": line["product_name"],
                "lotNumber": line["lot_number"],
                "quantity": line["quantity"],
                "unitPriceCents": line["unit_price_cents"],
                "vatRateBps": line["vat_rate_bps"],
                "netCents": line["net_cents"],
                "vatCents": line["vat_cents"],
                "totalCents": line["total_cents"],
            }
            for line in lines
        ],
        "subtotalCents": invoice.subtotal_cents,
        "vatTotalCents": invoice.vat_total_cents,
        "totalCents": invoice.total_cents,
        "notes": invoice.notes,
    }


# =============================================================================
# Document lifecycle
# =============================================================================

def create_invoice(
    customer_id: int,
    document_type: str,
    items: list[dict],
    *,
    user_id: int | None = None,
    stock_adjustments: list[dict] | None = None,
    transfer_ids: list[int] | None = None,
    notes: str | None = None,
    provider=None,
) -> Invoice:
    """
    Issue a billing document and apply its stock consumption.

    Order of work:
    1. Resolve customer and line snapshots
    2. Stock consumption (IRSALIYE/FATURA only), all-or-nothing
    3. Persist the invoice; settled transfers become COMPLETED and point at it
    4. FATURA with lines: submit to the invoice provider. A provider failure is
       recorded as provider_status=FAILED and does not undo the stock effects.

    Raises:
        CustomerNotFound, ProductNotFound, LotNotFound, WarehouseNotFound,
        TransferNotFound, InvalidTransferOwnership, TransferNotPending,
        InsufficientStock (with line_index for explicit adjustments),
        InvalidOperation
    """
    if document_type not in DOCUMENT_TYPES:
        raise InvalidOperation(f"Unknown document type: {document_type}")
    if stock_adjustments and transfer_ids:
        raise InvalidOperation("Provide either stock adjustments or transfer ids, not both")

    settle_ids = _unique_ids(transfer_ids)

    def _op():
        customer = get_customer(customer_id)
        lines = build_line_snapshots(items)

        settled: list[Transfer] = []
        if document_type in STOCK_DOCUMENT_TYPES:
            if stock_adjustments:
                _apply_stock_adjustments(stock_adjustments)
            elif settle_ids:
                settled = _load_settlement_transfers(settle_ids, customer)
                _settle_transfers(settled)

        subtotal, vat_total, total = compute_invoice_totals(lines)
        invoice = Invoice(
            customer_id=customer.id,
            document_type=document_type,
            items=lines,
            transfer_ids=settle_ids,
            subtotal_cents=subtotal,
            vat_total_cents=vat_total,
            total_cents=total,
            notes=notes,
            provider_status=PROVIDER_STATUS_SKIPPED,
            created_by_id=user_id,
        )
        db.session.add(invoice)
        db.session.flush()

        for transfer in settled:
            transfer.status = TRANSFER_STATUS_COMPLETED
            transfer.invoice_id = invoice.id
        db.session.flush()

        return invoice, customer, lines

    invoice, customer, lines = run_with_retry(_op)

    # Outside the retry loop: the provider must not receive the same document twice
    if document_type == DOCUMENT_TYPE_FATURA and lines:
        client = provider or InvoiceProviderClient.from_app_config()
        result = client.send_invoice(_provider_payload(invoice, customer, lines))
        invoice.provider_status = result.status
        invoice.invoice_number = result.invoice_number
        db.session.flush()
        current_app.logger.info(
            "Invoice %s submitted to provider: %s %s", invoice.id, result.status, result.invoice_number or "-"
        )

    record_log(
        ACTION_INVOICE_CREATED,
        f"{document_type} {invoice.invoice_number or invoice.id} created for customer {customer.name}",
        user_id=user_id,
        customer_id=customer.id,
        invoice_id=invoice.id,
    )
    return invoice


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(invoice_id)
    return invoice


def update_invoice(
    invoice_id: int,
    *,
    user_id: int | None = None,
    items: list[dict] | None = None,
    notes: str | None = None,
) -> Invoice:
    """
    Edit the lines or notes of a PROFORMA/IRSALIYE document.

    Editing never touches the ledger: stock was consumed when the document was
    issued.

    Raises:
        InvoiceNotFound
        ImmutableDocument: FATURA, or any cancelled document
    """
    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        if invoice.is_cancelled:
            raise ImmutableDocument(f"Invoice {invoice.id} is cancelled")
        if invoice.document_type == DOCUMENT_TYPE_FATURA:
            raise ImmutableDocument(f"Invoice {invoice.id} is a FATURA and cannot be edited")
        if items is None and notes is None:
            raise InvalidOperation("At least one field must be updated")

        if items is not None:
            lines = build_line_snapshots(items)
            subtotal, vat_total, total = compute_invoice_totals(lines)
            invoice.items = lines
            invoice.subtotal_cents = subtotal
            invoice.vat_total_cents = vat_total
            invoice.total_cents = total
        if notes is not None:
            invoice.notes = notes
        db.session.flush()

        record_log(
            ACTION_INVOICE_UPDATED,
            f"{invoice.document_type} {invoice.invoice_number or invoice.id} updated",
            user_id=user_id,
            customer_id=invoice.customer_id,
            invoice_id=invoice.id,
        )
        return invoice

    return run_with_retry(_op)


def cancel_invoice(invoice_id: int, *, user_id: int | None = None, reason: str | None = None) -> Invoice:
    """
    Flag a document as cancelled. Stock is not restored.

    Raises:
        InvoiceNotFound, AlreadyCancelled
    """
    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        if invoice.is_cancelled:
            raise AlreadyCancelled(f"Invoice {invoice.id} has already been cancelled")

        invoice.is_cancelled = True
        invoice.cancelled_at = utcnow()
        invoice.cancelled_by_id = user_id
        invoice.cancellation_reason = reason
        db.session.flush()

        record_log(
            ACTION_INVOICE_CANCELLED,
            f"{invoice.document_type} {invoice.invoice_number or invoice.id} cancelled",
            user_id=user_id,
            customer_id=invoice.customer_id,
            invoice_id=invoice.id,
        )
        return invoice

    return run_with_retry(_op)
