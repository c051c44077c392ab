# Overview: Append-only audit log writer for ledger movements.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import AuditLog, Customer, Invoice, Lot, Product, Transfer, Warehouse
from ..models.audit import ACTION_TYPES

# Reference column -> referenced model, in the order they are checked on failure
_REFERENCES = (
    ("invoice_id", Invoice),
    ("transfer_id", Transfer),
    ("customer_id", Customer),
    ("lot_id", Lot),
    ("product_id", Product),
    ("warehouse_id", Warehouse),
)


def _insert(action_type: str, description: str, user_id, barcode_used: bool, refs: dict) -> AuditLog:
    with db.session.begin_nested():
        entry = AuditLog(
            action_type=action_type,
            description=description,
            user_id=user_id,
            barcode_used=barcode_used,
            **refs,
        )
        db.session.add(entry)
        db.session.flush()
    return entry


def _first_dangling_reference(refs: dict) -> str | None:
    for column, model in _REFERENCES:
        ref_id = refs.get(column)
        if ref_id is not None and db.session.get(model, ref_id) is None:
            return column
    return None


def record_log(
    action_type: str,
    description: str,
    *,
    user_id: int | None = None,
    customer_id: int | None = None,
    product_id: int | None = None,
    lot_id: int | None = None,
    transfer_id: int | None = None,
    invoice_id: int | None = None,
    warehouse_id: int | None = None,
    barcode_used: bool = False,
) -> AuditLog:
    """
    Append one audit entry in the caller's transaction.

    If the insert violates a foreign key (e.g. an invoice id not visible yet),
    the entry is retried once with that single offending reference stripped,
    so the action is still recorded. A second failure propagates.
    """
    if action_type not in ACTION_TYPES:
        raise ValueError(f"Unknown audit action type: {action_type}")

    refs = {
        "customer_id": customer_id,
        "product_id": product_id,
        "lot_id": lot_id,
        "transfer_id": transfer_id,
        "invoice_id": invoice_id,
        "warehouse_id": warehouse_id,
    }

    try:
        return _insert(action_type, description, user_id, barcode_used, refs)
    except IntegrityError:
        offending = _first_dangling_reference(refs)
        if offending is None:
            raise
        current_app.logger.warning(
            "Audit log %s: stripping %s=%s after foreign key failure",
            action_type,
            offending,
            refs[offending],
        )
        refs[offending] = None
        return _insert(action_type, description, user_id, barcode_used, refs)
