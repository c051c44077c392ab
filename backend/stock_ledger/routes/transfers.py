# backend/stock_ledger/routes/transfers.py
"""
Warehouse-to-warehouse transfer API routes.
"""
from flask import Blueprint, current_app, g, jsonify
from ..decorators import require_user
from ..errors import LedgerError
from ..extensions import db
from ..services import transfer_service
from ..services.concurrency import commit_with_retry
from ..validation import ValidationError, get_json_body, parse_int, parse_optional_str, require_fields


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.route("", methods=["POST"])
@require_user
def create_transfer():
    """
    Move stock of one lot between warehouses.

    Request body:
    {
        "from_warehouse_id": int,
        "to_warehouse_id": int,
        "product_id": int (optional when lot_id or barcode is given),
        "lot_id": int (optional, auto-selected otherwise),
        "barcode": str (optional),
        "quantity": int,
        "notes": str (optional)
    }

    Returns:
        201: Transfer created (COMPLETED, or PENDING into a customer warehouse)
        400: Invalid request
        404: Lot or warehouse not found
        409: Insufficient stock at the source
    """
    try:
        data = get_json_body()
        require_fields(data, "from_warehouse_id", "to_warehouse_id", "quantity")

        transfer = transfer_service.create_transfer(
            from_warehouse_id=parse_int(data["from_warehouse_id"], "from_warehouse_id", minimum=1),
            to_warehouse_id=parse_int(data["to_warehouse_id"], "to_warehouse_id", minimum=1),
            product_id=parse_int(data.get("product_id"), "product_id", minimum=1, allow_none=True),
            quantity=parse_int(data["quantity"], "quantity", minimum=1),
            user_id=g.current_user_id,
            lot_id=parse_int(data.get("lot_id"), "lot_id", minimum=1, allow_none=True),
            barcode=parse_optional_str(data.get("barcode"), "barcode", max_length=128),
            notes=parse_optional_str(data.get("notes"), "notes"),
        )

        commit_with_retry()

        return jsonify(transfer.to_dict()), 201

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
@require_user
def get_transfer(transfer_id: int):
    try:
        transfer = transfer_service.get_transfer(transfer_id)
        return jsonify(transfer.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@transfers_bp.route("/<int:transfer_id>/reverse", methods=["POST"])
@require_user
def reverse_transfer(transfer_id: int):
    """
    Reverse a PENDING or COMPLETED transfer.

    Returns:
        200: Transfer reversed
        404: Transfer not found
        409: Already reversed, settled by an invoice, or the destination no longer holds the stock
    """
    try:
        transfer = transfer_service.reverse_transfer(transfer_id, user_id=g.current_user_id)

        commit_with_retry()

        return jsonify(transfer.to_dict()), 200

    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reverse transfer %s", transfer_id)
        return jsonify({"error": "Internal server error"}), 500
