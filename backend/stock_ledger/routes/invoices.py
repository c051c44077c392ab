# backend/stock_ledger/routes/invoices.py
"""
Invoice (PROFORMA / IRSALIYE / FATURA) API routes.
"""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify
from ..decorators import require_user
from ..errors import LedgerError
from ..extensions import db
from ..services import invoice_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    ValidationError,
    get_json_body,
    parse_choice,
    parse_id_list,
    parse_int,
    parse_list,
    parse_optional_str,
    require_fields,
)


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _parse_items(value) -> list[dict]:
    items = parse_list(value, "items", allow_none=False)
    parsed = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{i}] must be an object")
        parsed.append({
            "product_id": parse_int(item.get("product_id"), f"items[{i}].product_id", minimum=1),
            "lot_id": parse_int(item.get("lot_id"), f"items[{i}].lot_id", minimum=1, allow_none=True),
            "quantity": parse_int(item.get("quantity"), f"items[{i}].quantity", minimum=1),
            "unit_price_cents": parse_int(
                item.get("unit_price_cents"), f"items[{i}].unit_price_cents", minimum=0, allow_none=True
            ),
            "vat_rate_bps": parse_int(
                item.get("vat_rate_bps"), f"items[{i}].vat_rate_bps", minimum=0, allow_none=True
            ),
        })
    return parsed


def _parse_adjustments(value) -> list[dict] | None:
    adjustments = parse_list(value, "stock_adjustments")
    if adjustments is None:
        return None
    parsed = []
    for i, adj in enumerate(adjustments):
        if not isinstance(adj, dict):
            raise ValidationError(f"stock_adjustments[{i}] must be an object")
        parsed.append({
            "warehouse_id": parse_int(adj.get("warehouse_id"), f"stock_adjustments[{i}].warehouse_id", minimum=1),
            "lot_id": parse_int(adj.get("lot_id"), f"stock_adjustments[{i}].lot_id", minimum=1),
            "quantity": parse_int(adj.get("quantity"), f"stock_adjustments[{i}].quantity", minimum=1),
        })
    return parsed


@invoices_bp.route("", methods=["POST"])
@require_user
def create_invoice():
    """
    Issue an invoice.

    Request body:
    {
        "customer_id": int,
        "document_type": "PROFORMA" | "IRSALIYE" | "FATURA",
        "items": [{"product_id", "lot_id"?, "quantity", "unit_price_cents"?, "vat_rate_bps"?}],
        "stock_adjustments": [{"warehouse_id", "lot_id", "quantity"}] (optional),
        "transfer_ids": [int] (optional, not together with stock_adjustments),
        "notes": str (optional)
    }

    Returns:
        201: Invoice created
        400: Invalid request, or a transfer not owned by the customer
        404: Customer, product, lot, warehouse or transfer not found
        409: Insufficient stock, or a transfer that is not PENDING
    """
    try:
        data = get_json_body()
        require_fields(data, "customer_id", "document_type", "items")

        invoice = invoice_service.create_invoice(
            customer_id=parse_int(data["customer_id"], "customer_id", minimum=1),
            document_type=parse_choice(data["document_type"], "document_type", invoice_service.DOCUMENT_TYPES),
            items=_parse_items(data["items"]),
            user_id=g.current_user_id,
            stock_adjustments=_parse_adjustments(data.get("stock_adjustments")),
            transfer_ids=parse_id_list(data.get("transfer_ids"), "transfer_ids"),
            notes=parse_optional_str(data.get("notes"), "notes"),
        )

        commit_with_retry()

        return jsonify(invoice.to_dict()), 201

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.route("/<int:invoice_id>", methods=["GET"])
@require_user
def get_invoice(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify(invoice.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@invoices_bp.route("/<int:invoice_id>", methods=["PATCH"])
@require_user
def update_invoice(invoice_id: int):
    """
    Edit items or notes of a PROFORMA/IRSALIYE.

    Returns:
        200: Updated
        409: FATURA or cancelled document
    """
    try:
        data = get_json_body()
        items = _parse_items(data["items"]) if data.get("items") is not None else None

        invoice = invoice_service.update_invoice(
            invoice_id,
            user_id=g.current_user_id,
            items=items,
            notes=parse_optional_str(data.get("notes"), "notes"),
        )

        commit_with_retry()

        return jsonify(invoice.to_dict()), 200

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update invoice %s", invoice_id)
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.route("/<int:invoice_id>/cancel", methods=["POST"])
@require_user
def cancel_invoice(invoice_id: int):
    """
    Cancel an invoice. Stock consumed by it is not restored.

    Request body (optional): {"reason": str}
    """
    try:
        data = get_json_body()

        invoice = invoice_service.cancel_invoice(
            invoice_id,
            user_id=g.current_user_id,
            reason=parse_optional_str(data.get("reason"), "reason"),
        )

        commit_with_retry()

        return jsonify(invoice.to_dict()), 200

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel invoice %s", invoice_id)
        return jsonify({"error": "Internal server error"}), 500
