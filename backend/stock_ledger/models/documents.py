from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Transfer(db.Model):
    """
    Movement of one lot between two warehouses.

    LIFECYCLE:
    - PENDING: destination is a CUSTOMER warehouse; stock sits on consignment
      until an invoice settles it.
    - COMPLETED: any other destination (immediately), or settled by an invoice.
    - REVERSED: terminal. Reached once from PENDING or COMPLETED.

    Both ledger sides are applied when the transfer is created; the status only
    tracks whether the consignment has been sold.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_transfers_quantity_positive"),
        db.Index("ix_transfers_status_created", "status", "created_at"),
        db.Index("ix_transfers_to_warehouse_status", "to_warehouse_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    to_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("lots.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)
    barcode_scanned = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    # Opaque id handed over by the auth layer; there is no local user table.
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    reversed_by_user_id = db.Column(db.Integer, nullable=True)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Set when an invoice settles this transfer
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    from_warehouse = db.relationship("Warehouse", foreign_keys=[from_warehouse_id])
    to_warehouse = db.relationship("Warehouse", foreign_keys=[to_warehouse_id])
    lot = db.relationship("Lot", backref=db.backref("transfers", lazy=True))
    invoice = db.relationship("Invoice", back_populates="transfers")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_warehouse_id": self.from_warehouse_id,
            "to_warehouse_id": self.to_warehouse_id,
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "status": self.status,
            "barcode_scanned": self.barcode_scanned,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "reversed_by_user_id": self.reversed_by_user_id,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "invoice_id": self.invoice_id,
            "version_id": self.version_id,
        }


class Invoice(db.Model):
    """
    Billing document issued to a customer.

    DOCUMENT TYPES:
    - PROFORMA: quotation, never touches stock, editable until cancelled.
    - IRSALIYE: dispatch note, consumes stock on creation, editable until cancelled.
    - FATURA: final invoice, consumes stock on creation, never editable (only cancellable).

    `items` is a value snapshot (product, lot, quantity, price, VAT at issue time),
    deliberately not a relation, so later product edits do not rewrite history.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    document_type = db.Column(db.String(16), nullable=False, index=True)

    # Number returned by the invoice provider (or a simulated placeholder)
    invoice_number = db.Column(db.String(64), nullable=True, index=True)
    provider_status = db.Column(db.String(16), nullable=False, default="SKIPPED")

    items = db.Column(db.JSON, nullable=False, default=list)
    transfer_ids = db.Column(db.JSON, nullable=False, default=list)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_total_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    is_cancelled = db.Column(db.Boolean, nullable=False, default=False)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_id = db.Column(db.Integer, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    transfers = db.relationship("Transfer", back_populates="invoice", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "document_type": self.document_type,
            "invoice_number": self.invoice_number,
            "provider_status": self.provider_status,
            "items": list(self.items or []),
            "transfer_ids": list(self.transfer_ids or []),
            "subtotal_cents": self.subtotal_cents,
            "vat_total_cents": self.vat_total_cents,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "is_cancelled": self.is_cancelled,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_id": self.cancelled_by_id,
            "cancellation_reason": self.cancellation_reason,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
