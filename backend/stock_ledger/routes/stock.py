# backend/stock_ledger/routes/stock.py
"""
Lot and warehouse stock API routes.

Every write here resolves the canonical MAIN warehouse first; a missing MAIN
answers 503.
"""
from flask import Blueprint, current_app, g, jsonify, request
from ..decorators import require_user
from ..errors import LedgerError, StockLocationNotFound
from ..extensions import db
from ..services import adjustment_service
from ..services.concurrency import commit_with_retry
from ..services.lot_selection_service import auto_select_lot
from ..services.warehouse_service import get_main_warehouse_id
from ..validation import (
    ValidationError,
    get_json_body,
    parse_choice,
    parse_int,
    parse_list,
    parse_optional_str,
    require_fields,
)


stock_bp = Blueprint("stock", __name__, url_prefix="/api")


def _ledger_error(e: LedgerError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _validation_error(e: ValidationError):
    db.session.rollback()
    return jsonify({"error": str(e)}), 400


def _unexpected(message: str, *args):
    db.session.rollback()
    current_app.logger.exception(message, *args)
    return jsonify({"error": "Internal server error"}), 500


@stock_bp.route("/products/<int:product_id>/stock", methods=["GET"])
@require_user
def product_stock(product_id: int):
    """Per-lot tracked, on-hand and customer quantities for a product."""
    try:
        return jsonify(adjustment_service.summarize_product(product_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@stock_bp.route("/products/<int:product_id>/lots", methods=["POST"])
@require_user
def create_lot(product_id: int):
    """
    Create a lot and place its quantity in the main warehouse.

    Request body:
    {
        "lot_number": str,
        "quantity": int,
        "barcode": str (optional),
        "expiry_date": "YYYY-MM-DD" (optional)
    }
    """
    try:
        data = get_json_body()
        require_fields(data, "lot_number", "quantity")

        lot = adjustment_service.create_lot(
            product_id,
            parse_optional_str(data["lot_number"], "lot_number", max_length=128),
            parse_int(data["quantity"], "quantity", minimum=0),
            main_warehouse_id=get_main_warehouse_id(),
            user_id=g.current_user_id,
            barcode=parse_optional_str(data.get("barcode"), "barcode", max_length=128),
            expiry_date=parse_optional_str(data.get("expiry_date"), "expiry_date"),
        )

        commit_with_retry()

        return jsonify(lot.to_dict()), 201

    except ValidationError as e:
        return _validation_error(e)
    except LedgerError as e:
        return _ledger_error(e)
    except ValueError as e:
        # Unparseable expiry date
        return _validation_error(ValidationError(str(e)))
    except Exception:
        return _unexpected("Failed to create lot for product %s", product_id)


@stock_bp.route("/lots/<int:lot_id>", methods=["PATCH"])
@require_user
def update_lot(lot_id: int):
    """
    Set a lot's quantity (through the main warehouse) and optionally rename it.

    Request body: {"quantity": int, "lot_number": str (optional)}
    """
    try:
        data = get_json_body()
        require_fields(data, "quantity")

        lot = adjustment_service.set_lot_quantity(
            lot_id,
            parse_int(data["quantity"], "quantity", minimum=0),
            main_warehouse_id=get_main_warehouse_id(),
            user_id=g.current_user_id,
            lot_number=parse_optional_str(data.get("lot_number"), "lot_number", max_length=128),
        )

        commit_with_retry()

        return jsonify(adjustment_service.summarize_lot(lot)), 200

    except ValidationError as e:
        return _validation_error(e)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to update lot %s", lot_id)


@stock_bp.route("/lots/select", methods=["GET"])
@require_user
def select_lot():
    """Preview which lot a movement would use: ?product_id=&barcode="""
    try:
        product_id = parse_int(request.args.get("product_id"), "product_id", minimum=1, allow_none=True)
        barcode = parse_optional_str(request.args.get("barcode"), "barcode")
        if product_id is None and barcode is None:
            raise ValidationError("product_id or barcode is required")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    lot = auto_select_lot(product_id, barcode)
    if lot is None:
        return jsonify({"error": "lot_not_found", "message": "No lot matches"}), 404
    return jsonify(lot.to_dict()), 200


@stock_bp.route("/warehouses/<int:warehouse_id>/stock", methods=["POST"])
@require_user
def edit_warehouse_stock(warehouse_id: int):
    """
    Set, add or remove stock at a non-MAIN warehouse, mirrored on MAIN.

    Request body: {"lot_id": int, "quantity": int, "mode": "set" | "add" | "remove"}

    Returns:
        200: {"deleted": bool, "quantity": int, ...}
        409: Not enough stock in MAIN (adding) or at the location (removing)
    """
    try:
        data = get_json_body()
        require_fields(data, "lot_id", "quantity")

        result = adjustment_service.edit_warehouse_stock(
            warehouse_id,
            parse_int(data["lot_id"], "lot_id", minimum=1),
            parse_int(data["quantity"], "quantity", minimum=0),
            mode=parse_choice(
                data.get("mode"), "mode", adjustment_service.STOCK_EDIT_MODES,
                default=adjustment_service.STOCK_EDIT_SET,
            ),
            main_warehouse_id=get_main_warehouse_id(),
            user_id=g.current_user_id,
        )
        payload = result.to_dict()

        commit_with_retry()

        return jsonify(payload), 200

    except ValidationError as e:
        return _validation_error(e)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to edit stock of warehouse %s", warehouse_id)


@stock_bp.route("/warehouses/<int:warehouse_id>/stock/<int:location_id>", methods=["DELETE"])
@require_user
def delete_stock_location(warehouse_id: int, location_id: int):
    """Remove a location; its quantity goes back to the main warehouse."""
    try:
        location = adjustment_service.find_location_by_id(location_id)
        if location is None or location.warehouse_id != warehouse_id:
            raise StockLocationNotFound(location_id)

        location = adjustment_service.delete_stock_location(
            location_id,
            main_warehouse_id=get_main_warehouse_id(),
            user_id=g.current_user_id,
        )
        payload = location.to_dict()

        commit_with_retry()

        return jsonify(payload), 200

    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to delete stock location %s", location_id)


@stock_bp.route("/warehouses/<int:warehouse_id>/import", methods=["POST"])
@require_user
def import_stock(warehouse_id: int):
    """
    Apply already-parsed import rows to a warehouse.

    Request body: {"rows": [{"reference_code", "lot_number", "quantity", ...}]}
    """
    try:
        data = get_json_body()
        rows = parse_list(data.get("rows"), "rows", allow_none=False)
        if not all(isinstance(row, dict) for row in rows):
            raise ValidationError("rows must be objects")

        applied = adjustment_service.import_stock_rows(
            rows,
            warehouse_id=warehouse_id,
            user_id=g.current_user_id,
        )

        commit_with_retry()

        return jsonify({"applied": applied}), 200

    except ValidationError as e:
        return _validation_error(e)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to import stock into warehouse %s", warehouse_id)
