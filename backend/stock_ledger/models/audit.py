from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

ACTION_TRANSFER_IN = "TRANSFER_IN"
ACTION_TRANSFER_OUT = "TRANSFER_OUT"
ACTION_TRANSFER_REVERSE = "TRANSFER_REVERSE"
ACTION_INVOICE_CREATED = "INVOICE_CREATED"
ACTION_INVOICE_UPDATED = "INVOICE_UPDATED"
ACTION_INVOICE_CANCELLED = "INVOICE_CANCELLED"
ACTION_MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
ACTION_WAREHOUSE_STOCK_EDIT = "WAREHOUSE_STOCK_EDIT"
ACTION_CSV_IMPORT = "CSV_IMPORT"
ACTION_RECONCILIATION = "RECONCILIATION"

ACTION_TYPES = (
    ACTION_TRANSFER_IN,
    ACTION_TRANSFER_OUT,
    ACTION_TRANSFER_REVERSE,
    ACTION_INVOICE_CREATED,
    ACTION_INVOICE_UPDATED,
    ACTION_INVOICE_CANCELLED,
    ACTION_MANUAL_ADJUSTMENT,
    ACTION_WAREHOUSE_STOCK_EDIT,
    ACTION_CSV_IMPORT,
    ACTION_RECONCILIATION,
)


class AuditLog(db.Model):
    """
    Append-only record of every ledger-affecting action.

    - Written in the same DB transaction as the movement it describes.
    - Never updated or deleted by application code.
    - References are nullable and SET NULL on delete so history survives cleanup.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_action_created", "action_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action_type = db.Column(db.String(32), nullable=False)
    description = db.Column(db.Text, nullable=False)
    barcode_used = db.Column(db.Boolean, nullable=False, default=False)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("lots.id", ondelete="SET NULL"), nullable=True, index=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id", ondelete="SET NULL"), nullable=True, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action_type": self.action_type,
            "description": self.description,
            "barcode_used": self.barcode_used,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "lot_id": self.lot_id,
            "transfer_id": self.transfer_id,
            "invoice_id": self.invoice_id,
            "warehouse_id": self.warehouse_id,
            "created_at": to_utc_z(self.created_at),
        }
