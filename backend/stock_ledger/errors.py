# Overview: Ledger error taxonomy shared by services, routes and the CLI.

from __future__ import annotations


class LedgerError(Exception):
    """
    Base class for every rejected ledger operation.

    Each subclass has a stable machine-readable `kind` and the HTTP status the
    routing layer answers with. Services raise these; they never catch them.
    """
    kind = "ledger_error"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return "Ledger operation rejected"

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InsufficientStock(LedgerError):
    """An adjustment would drive a stock location below zero."""
    kind = "insufficient_stock"
    status_code = 409

    def __init__(
        self,
        *,
        warehouse_id: int,
        lot_id: int,
        available: int,
        requested: int,
        line_index: int | None = None,
    ):
        self.warehouse_id = warehouse_id
        self.lot_id = lot_id
        self.available = available
        self.requested = requested
        self.line_index = line_index
        where = f" (line {line_index})" if line_index is not None else ""
        super().__init__(
            f"Insufficient stock for lot {lot_id} in warehouse {warehouse_id}{where}. "
            f"Available: {available}, requested: {requested}"
        )

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload.update({
            "warehouse_id": self.warehouse_id,
            "lot_id": self.lot_id,
            "available": self.available,
            "requested": self.requested,
        })
        if self.line_index is not None:
            payload["line_index"] = self.line_index
        return payload


class _NotFound(LedgerError):
    status_code = 404
    entity = "Record"

    def __init__(self, entity_id=None, message: str | None = None):
        self.entity_id = entity_id
        if message is None:
            message = f"{self.entity} {entity_id} not found" if entity_id is not None else f"{self.entity} not found"
        super().__init__(message)


class LotNotFound(_NotFound):
    kind = "lot_not_found"
    entity = "Lot"


class WarehouseNotFound(_NotFound):
    kind = "warehouse_not_found"
    entity = "Warehouse"


class CustomerNotFound(_NotFound):
    kind = "customer_not_found"
    entity = "Customer"


class TransferNotFound(_NotFound):
    kind = "transfer_not_found"
    entity = "Transfer"


class ProductNotFound(_NotFound):
    kind = "product_not_found"
    entity = "Product"


class InvoiceNotFound(_NotFound):
    kind = "invoice_not_found"
    entity = "Invoice"


class StockLocationNotFound(_NotFound):
    kind = "stock_location_not_found"
    entity = "Stock location"


class InvalidTransferOwnership(LedgerError):
    """A transfer settled on an invoice was not sent to that customer's warehouse."""
    kind = "invalid_transfer_ownership"
    status_code = 400


class TransferNotPending(LedgerError):
    kind = "transfer_not_pending"
    status_code = 409


class AlreadyReversed(LedgerError):
    kind = "already_reversed"
    status_code = 409

    def default_message(self) -> str:
        return "Transfer has already been reversed"


class TransferAlreadySettled(LedgerError):
    """The transfer was consumed by an invoice; its stock has left the customer warehouse."""
    kind = "transfer_already_settled"
    status_code = 409

    def default_message(self) -> str:
        return "Transfer has already been settled by an invoice"


class AlreadyCancelled(LedgerError):
    kind = "already_cancelled"
    status_code = 409

    def default_message(self) -> str:
        return "Document has already been cancelled"


class ImmutableDocument(LedgerError):
    """FATURA documents and cancelled documents cannot be edited."""
    kind = "immutable_document"
    status_code = 409


class InvalidOperation(LedgerError):
    kind = "invalid_operation"
    status_code = 400


class MainWarehouseNotFound(LedgerError):
    kind = "main_warehouse_not_found"
    status_code = 503

    def default_message(self) -> str:
        return "No MAIN warehouse is configured"
