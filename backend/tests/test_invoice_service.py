"""
Invoice stock consumption and document lifecycle tests.
"""

import pytest

from stock_ledger.errors import (
    AlreadyCancelled,
    CustomerNotFound,
    ImmutableDocument,
    InsufficientStock,
    InvalidOperation,
    InvalidTransferOwnership,
    TransferNotFound,
    TransferNotPending,
)
from stock_ledger.models import AuditLog, Invoice, Transfer
from stock_ledger.models.audit import ACTION_INVOICE_CANCELLED, ACTION_INVOICE_CREATED, ACTION_INVOICE_UPDATED
from stock_ledger.services import invoice_service, transfer_service
from stock_ledger.services.invoice_provider import (
    PROVIDER_STATUS_FAILED,
    PROVIDER_STATUS_SENT,
    PROVIDER_STATUS_SIMULATED,
    PROVIDER_STATUS_SKIPPED,
    ProviderResult,
)
from stock_ledger.services.ledger_service import get_location_quantity


class RecordingProvider:
    def __init__(self, result):
        self.result = result
        self.payloads = []

    def send_invoice(self, payload):
        self.payloads.append(payload)
        return self.result


def _items(product, quantity=1, **extra):
    item = {"product_id": product.id, "quantity": quantity}
    item.update(extra)
    return [item]


def test_line_totals_round_half_up():
    assert invoice_service.compute_line_totals(3, 1250, 1800) == (3750, 675, 4425)
    # 4.5 cents of VAT rounds up
    assert invoice_service.compute_line_totals(1, 25, 1800) == (25, 5, 30)
    assert invoice_service.compute_line_totals(2, 999, 0) == (1998, 0, 1998)


def test_invoice_totals_sum_lines():
    lines = [
        {"net_cents": 1000, "vat_cents": 180},
        {"net_cents": 500, "vat_cents": 40},
    ]
    assert invoice_service.compute_invoice_totals(lines) == (1500, 220, 1720)


def test_fatura_settles_consignment_transfer(db_session, main_warehouse, customer_a, product, make_lot):
    """MAIN 100 -> 30 to customer A (PENDING) -> FATURA settles it: A empties, MAIN back to 100."""
    lot = make_lot(product, "L", stock={main_warehouse.id: 100})
    transfer = transfer_service.create_transfer(
        main_warehouse.id, customer_a.warehouse_id, product.id, 30, user_id=7, lot_id=lot.id,
    )
    db_session.commit()
    assert transfer.status == transfer_service.TRANSFER_STATUS_PENDING
    assert get_location_quantity(main_warehouse.id, lot.id) == 70
    assert get_location_quantity(customer_a.warehouse_id, lot.id) == 30

    invoice = invoice_service.create_invoice(
        customer_a.id,
        invoice_service.DOCUMENT_TYPE_FATURA,
        _items(product, 30, lot_id=lot.id),
        user_id=7,
        transfer_ids=[transfer.id],
    )
    db_session.commit()

    assert get_location_quantity(customer_a.warehouse_id, lot.id) == 0
    assert get_location_quantity(main_warehouse.id, lot.id) == 100
    settled = db_session.get(Transfer, transfer.id)
    assert settled.status == transfer_service.TRANSFER_STATUS_COMPLETED
    assert settled.invoice_id == invoice.id
    assert invoice.transfer_ids == [transfer.id]
    assert invoice.provider_status == PROVIDER_STATUS_SIMULATED
    assert invoice.invoice_number.startswith("SIM-")

    log = db_session.query(AuditLog).filter_by(action_type=ACTION_INVOICE_CREATED).one()
    assert log.invoice_id == invoice.id
    assert log.customer_id == customer_a.id


def test_settlement_rejects_foreign_transfer_before_any_mutation(
    db_session, main_warehouse, customer_a, customer_b, product, make_lot
):
    lot = make_lot(product, "L", stock={main_warehouse.id: 100})
    own = transfer_service.create_transfer(
        main_warehouse.id, customer_a.warehouse_id, product.id, 10, user_id=7, lot_id=lot.id,
    )
    foreign = transfer_service.create_transfer(
        main_warehouse.id, customer_b.warehouse_id, product.id, 5, user_id=7, lot_id=lot.id,
    )
    db_session.commit()

    with pytest.raises(InvalidTransferOwnership):
        invoice_service.create_invoice(
            customer_a.id,
            invoice_service.DOCUMENT_TYPE_IRSALIYE,
            _items(product, 15),
            user_id=7,
            transfer_ids=[own.id, foreign.id],
        )
    db_session.rollback()

    assert get_location_quantity(customer_a.warehouse_id, lot.id) == 10
    assert get_location_quantity(customer_b.warehouse_id, lot.id) == 5
    assert get_location_quantity(main_warehouse.id, lot.id) == 85
    assert db_session.get(Transfer, own.id).status == transfer_service.TRANSFER_STATUS_PENDING
    assert db_session.query(Invoice).count() == 0


def test_settlement_requires_pending_transfer(db_session, main_warehouse, customer_a, product, make_lot):
    lot = make_lot(product, "L", stock={main_warehouse.id: 10})
    transfer = transfer_service.create_transfer(
        main_warehouse.id, customer_a.warehouse_id, product.id, 5, user_id=7, lot_id=lot.id,
    )
    transfer_service.reverse_transfer(transfer.id, user_id=7)
    db_session.commit()

    with pytest.raises(TransferNotPending):
        invoice_service.create_invoice(
            customer_a.id, invoice_service.DOCUMENT_TYPE_FATURA, _items(product), user_id=7,
            transfer_ids=[transfer.id],
        )
    db_session.rollback()

    with pytest.raises(TransferNotFound):
        invoice_service.create_invoice(
            customer_a.id, invoice_service.DOCUMENT_TYPE_FATURA, _items(product), user_id=7,
            transfer_ids=[999999],
        )


def test_explicit_adjustments_debit_stock(db_session, main_warehouse, customer_a, product, make_lot):
    lot = make_lot(product, "L", stock={main_warehouse.id: 20})

    invoice = invoice_service.create_invoice(
        customer_a.id,
        invoice_service.DOCUMENT_TYPE_IRSALIYE,
        _items(product, 8, lot_id=lot.id),
        user_id=7,
        stock_adjustments=[{"warehouse_id": main_warehouse.id, "lot_id": lot.id, "quantity": 8}],
    )
    db_session.commit()

    assert get_location_quantity(main_warehouse.id, lot.id) == 12
    # IRSALIYE never reaches the provider
    assert invoice.provider_status == PROVIDER_STATUS_SKIPPED
    assert invoice.invoice_number is None


def test_explicit_adjustments_are_all_or_nothing(db_session, main_warehouse, customer_a, product, make_lot):
    first = make_lot(product, "L1", stock={main_warehouse.id: 10})
    second = make_lot(product, "L2", stock={main_warehouse.id: 2})

    with pytest.raises(InsufficientStock) as exc:
        invoice_service.create_invoice(
            customer_a.id,
            invoice_service.DOCUMENT_TYPE_FATURA,
            _items(product, 5),
            user_id=7,
            stock_adjustments=[
                {"warehouse_id": main_warehouse.id, "lot_id": first.id, "quantity": 5},
                {"warehouse_id": main_warehouse.id, "lot_id": second.id, "quantity": 3},
            ],
        )
    db_session.rollback()

    assert exc.value.line_index == 1
    assert exc.value.available == 2
    assert exc.value.requested == 3
    assert get_location_quantity(main_warehouse.id, first.id) == 10
    assert get_location_quantity(main_warehouse.id, second.id) == 2
    assert db_session.query(Invoice).count() == 0


def test_adjustment_lines_on_same_location_are_aggregated(db_session, main_warehouse, customer_a, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 5})

    with pytest.raises(InsufficientStock) as exc:
        invoice_service.create_invoice(
            customer_a.id,
            invoice_service.DOCUMENT_TYPE_IRSALIYE,
            _items(product, 6),
            user_id=7,
            stock_adjustments=[
                {"warehouse_id": main_warehouse.id, "lot_id": lot.id, "quantity": 3},
                {"warehouse_id": main_warehouse.id, "lot_id": lot.id, "quantity": 3},
            ],
        )
    db_session.rollback()

    assert exc.value.line_index == 1
    assert exc.value.available == 2
    assert get_location_quantity(main_warehouse.id, lot.id) == 5


def test_both_stock_inputs_rejected(db_session, main_warehouse, customer_a, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 5})

    with pytest.raises(InvalidOperation):
        invoice_service.create_invoice(
            customer_a.id,
            invoice_service.DOCUMENT_TYPE_FATURA,
            _items(product),
            user_id=7,
            stock_adjustments=[{"warehouse_id": main_warehouse.id, "lot_id": lot.id, "quantity": 1}],
            transfer_ids=[1],
        )


def test_proforma_never_touches_stock(db_session, main_warehouse, customer_a, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 5})
    provider = RecordingProvider(ProviderResult(PROVIDER_STATUS_SENT, "X-1"))

    invoice = invoice_service.create_invoice(
        customer_a.id,
        invoice_service.DOCUMENT_TYPE_PROFORMA,
        _items(product, 50),
        user_id=7,
        stock_adjustments=[{"warehouse_id": main_warehouse.id, "lot_id": lot.id, "quantity": 50}],
        provider=provider,
    )
    db_session.commit()

    assert get_location_quantity(main_warehouse.id, lot.id) == 5
    assert invoice.provider_status == PROVIDER_STATUS_SKIPPED
    assert provider.payloads == []


def test_fatura_payload_and_snapshot(db_session, main_warehouse, customer_a, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 5})
    provider = RecordingProvider(ProviderResult(PROVIDER_STATUS_SENT, "INV-2026-001"))

    invoice = invoice_service.create_invoice(
        customer_a.id,
        invoice_service.DOCUMENT_TYPE_FATURA,
        _items(product, 3, lot_id=lot.id),
        user_id=7,
        provider=provider,
    )
    db_session.commit()

    assert invoice.invoice_number == "INV-2026-001"
    assert invoice.provider_status == PROVIDER_STATUS_SENT
    assert invoice.subtotal_cents == 3750
    assert invoice.vat_total_cents == 675
    assert invoice.total_cents == 4425

    line = invoice.items[0]
    assert line["reference_code"] == "REF-001"
    assert line["lot_number"] == "L1"
    assert line["unit_price_cents"] == 1250

    payload = provider.payloads[0]
    assert payload["customer"]["taxNumber"] == "1234567890"
    assert payload["items"][0]["totalCents"] == 4425
    assert payload["totalCents"] == 4425

    # Later product edits do not rewrite the document
    product_row = db_session.get(type(product), product.id)
    product_row.name = "Renamed"
    db_session.commit()
    assert db_session.get(Invoice, invoice.id).items[0]["product_name"] == "Saline 500ml"


def test_provider_failure_keeps_stock_effects(db_session, main_warehouse, customer_a, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 5})
    provider = RecordingProvider(ProviderResult(PROVIDER_STATUS_FAILED))

    invoice = invoice_service.create_invoice(
        customer_a.id,
        invoice_service.DOCUMENT_TYPE_FATURA,
        _items(product, 2),
        user_id=7,
        stock_adjustments=[{"warehouse_id": main_warehouse.id, "lot_id": lot.id, "quantity": 2}],
        provider=provider,
    )
    db_session.commit()

    assert invoice.provider_status == PROVIDER_STATUS_FAILED
    assert invoice.invoice_number is None
    assert get_location_quantity(main_warehouse.id, lot.id) == 3


def test_fatura_is_immutable_but_cancellable(db_session, customer_a, product):
    invoice = invoice_service.create_invoice(
        customer_a.id, invoice_service.DOCUMENT_TYPE_FATURA, _items(product), user_id=7,
    )
    db_session.commit()

    with pytest.raises(ImmutableDocument):
        invoice_service.update_invoice(invoice.id, user_id=7, notes="edited")
    db_session.rollback()

    cancelled = invoice_service.cancel_invoice(invoice.id, user_id=9, reason="wrong customer")
    db_session.commit()

    assert cancelled.is_cancelled is True
    assert cancelled.cancelled_at is not None
    assert cancelled.cancelled_by_id == 9
    assert cancelled.cancellation_reason == "wrong customer"
    assert db_session.query(AuditLog).filter_by(action_type=ACTION_INVOICE_CANCELLED).count() == 1

    with pytest.raises(AlreadyCancelled):
        invoice_service.cancel_invoice(invoice.id, user_id=9)


def test_irsaliye_editable_until_cancelled(db_session, customer_a, product):
    invoice = invoice_service.create_invoice(
        customer_a.id, invoice_service.DOCUMENT_TYPE_IRSALIYE, _items(product, 1), user_id=7,
    )
    db_session.commit()

    updated = invoice_service.update_invoice(
        invoice.id, user_id=7, items=_items(product, 4, unit_price_cents=1000, vat_rate_bps=800), notes="4 boxes",
    )
    db_session.commit()

    assert updated.total_cents == 4320
    assert updated.notes == "4 boxes"
    assert db_session.query(AuditLog).filter_by(action_type=ACTION_INVOICE_UPDATED).count() == 1

    invoice_service.cancel_invoice(invoice.id, user_id=7)
    db_session.commit()

    with pytest.raises(ImmutableDocument):
        invoice_service.update_invoice(invoice.id, user_id=7, notes="again")


def test_cancel_does_not_restore_stock(db_session, main_warehouse, customer_a, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 5})
    invoice = invoice_service.create_invoice(
        customer_a.id,
        invoice_service.DOCUMENT_TYPE_IRSALIYE,
        _items(product, 2),
        user_id=7,
        stock_adjustments=[{"warehouse_id": main_warehouse.id, "lot_id": lot.id, "quantity": 2}],
    )
    invoice_service.cancel_invoice(invoice.id, user_id=7)
    db_session.commit()

    assert get_location_quantity(main_warehouse.id, lot.id) == 3


def test_unknown_customer_and_type(db_session, product):
    with pytest.raises(CustomerNotFound):
        invoice_service.create_invoice(999999, invoice_service.DOCUMENT_TYPE_FATURA, _items(product))
    with pytest.raises(InvalidOperation):
        invoice_service.create_invoice(1, "RECEIPT", _items(product))
