# backend/stock_ledger/services/transfer_service.py
"""
Warehouse-to-warehouse lot transfers.

Both ledger sides (debit source, credit destination) are applied when the
transfer is created, as one unit via apply_movements(). The status only tracks
consignment: a transfer into a CUSTOMER warehouse stays PENDING until an
invoice settles it.

LIFECYCLE:
- PENDING -> COMPLETED  (invoice settlement, see invoice_service)
- PENDING -> REVERSED
- COMPLETED -> REVERSED
- REVERSED is terminal
"""
from __future__ import annotations

from ..errors import (
    AlreadyReversed,
    InvalidOperation,
    LotNotFound,
    TransferAlreadySettled,
    TransferNotFound,
)
from ..extensions import db
from ..models import Lot, Transfer
from ..models.audit import ACTION_TRANSFER_IN, ACTION_TRANSFER_OUT, ACTION_TRANSFER_REVERSE
from ..models.inventory import WAREHOUSE_KIND_CUSTOMER
from ..time_utils import utcnow
from .audit_service import record_log
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import Movement, apply_movements
from .lot_selection_service import auto_select_lot
from .warehouse_service import get_warehouse


# Transfer status constants
TRANSFER_STATUS_PENDING = "PENDING"
TRANSFER_STATUS_COMPLETED = "COMPLETED"
TRANSFER_STATUS_REVERSED = "REVERSED"


def _resolve_lot(product_id: int | None, lot_id: int | None, barcode: str | None) -> Lot:
    if lot_id:
        lot = db.session.get(Lot, lot_id)
    else:
        lot = auto_select_lot(product_id, barcode)
    if lot is None:
        raise LotNotFound(lot_id)
    return lot


def create_transfer(
    from_warehouse_id: int,
    to_warehouse_id: int,
    product_id: int | None,
    quantity: int,
    *,
    user_id: int | None = None,
    lot_id: int | None = None,
    barcode: str | None = None,
    notes: str | None = None,
) -> Transfer:
    """
    Move `quantity` units of a lot from one warehouse to another.

    Args:
        from_warehouse_id: Source warehouse (debited)
        to_warehouse_id: Destination warehouse (credited)
        product_id: Product used for automatic lot selection
        quantity: Positive number of units
        user_id: Opaque id of the acting user
        lot_id: Explicit lot; when empty the lot is auto-selected
        barcode: Scanned barcode used for lot selection
        notes: Free text

    Returns:
        Transfer: COMPLETED, or PENDING when the destination is a CUSTOMER warehouse

    Raises:
        LotNotFound, WarehouseNotFound, InsufficientStock, InvalidOperation
    """
    def _op():
        if quantity is None or quantity <= 0:
            raise InvalidOperation("Quantity must be positive")
        if from_warehouse_id == to_warehouse_id:
            raise InvalidOperation("Cannot transfer to the same warehouse")

        lot = _resolve_lot(product_id, lot_id, barcode)
        get_warehouse(from_warehouse_id)
        to_warehouse = get_warehouse(to_warehouse_id)

        # Source first: a shortfall there fails before the destination is touched
        apply_movements([
            Movement(from_warehouse_id, lot.id, -quantity),
            Movement(to_warehouse_id, lot.id, quantity),
        ])

        to_customer = to_warehouse.kind == WAREHOUSE_KIND_CUSTOMER
        transfer = Transfer(
            from_warehouse_id=from_warehouse_id,
            to_warehouse_id=to_warehouse_id,
            lot_id=lot.id,
            quantity=quantity,
            status=TRANSFER_STATUS_PENDING if to_customer else TRANSFER_STATUS_COMPLETED,
            barcode_scanned=bool(barcode),
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.add(transfer)
        db.session.flush()

        record_log(
            ACTION_TRANSFER_OUT if to_customer else ACTION_TRANSFER_IN,
            f"{quantity} units of lot {lot.lot_number} transferred "
            f"from warehouse {from_warehouse_id} to warehouse {to_warehouse_id}",
            user_id=user_id,
            product_id=lot.product_id,
            lot_id=lot.id,
            warehouse_id=from_warehouse_id,
            transfer_id=transfer.id,
            barcode_used=bool(barcode),
        )

        return transfer

    return run_with_retry(_op)


def reverse_transfer(transfer_id: int, *, user_id: int | None = None) -> Transfer:
    """
    Undo a transfer: credit the source and debit the destination by its quantity.

    Raises:
        TransferNotFound: unknown id
        AlreadyReversed: the transfer is already REVERSED
        TransferAlreadySettled: an invoice settled the transfer (invoice_id is set)
        InsufficientStock: the destination no longer holds the quantity
            (e.g. it was invoiced); the transfer keeps its status
    """
    def _op():
        transfer = lock_for_update(db.session.query(Transfer).filter_by(id=transfer_id)).first()
        if transfer is None:
            raise TransferNotFound(transfer_id)
        if transfer.status == TRANSFER_STATUS_REVERSED:
            raise AlreadyReversed(f"Transfer {transfer_id} has already been reversed")
        if transfer.invoice_id is not None:
            raise TransferAlreadySettled(
                f"Transfer {transfer_id} was settled by invoice {transfer.invoice_id} and cannot be reversed"
            )

        apply_movements([
            Movement(transfer.from_warehouse_id, transfer.lot_id, transfer.quantity),
            Movement(transfer.to_warehouse_id, transfer.lot_id, -transfer.quantity),
        ])

        transfer.status = TRANSFER_STATUS_REVERSED
        transfer.reversed_by_user_id = user_id
        transfer.reversed_at = utcnow()
        db.session.flush()

        record_log(
            ACTION_TRANSFER_REVERSE,
            f"Transfer {transfer.id} reversed",
            user_id=user_id,
            lot_id=transfer.lot_id,
            transfer_id=transfer.id,
            warehouse_id=transfer.to_warehouse_id,
        )

        return transfer

    return run_with_retry(_op)


def get_transfer(transfer_id: int) -> Transfer:
    transfer = db.session.get(Transfer, transfer_id)
    if transfer is None:
        raise TransferNotFound(transfer_id)
    return transfer
