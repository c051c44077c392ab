# backend/stock_ledger/routes/warehouses.py
"""
Warehouse and customer API routes.
"""
from flask import Blueprint, current_app, jsonify
from ..decorators import require_user
from ..errors import LedgerError, MainWarehouseNotFound
from ..extensions import db
from ..models import StockLocation
from ..models.inventory import WAREHOUSE_KIND_MAIN, WAREHOUSE_KINDS
from ..services import warehouse_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    ValidationError,
    get_json_body,
    parse_choice,
    parse_int,
    parse_optional_str,
    require_fields,
)


warehouses_bp = Blueprint("warehouses", __name__, url_prefix="/api")


@warehouses_bp.route("/warehouses", methods=["POST"])
@require_user
def create_warehouse():
    """
    Request body: {"name": str, "kind": "MAIN" | "CUSTOMER" | "EMPLOYEE", "customer_id": int (optional)}
    """
    try:
        data = get_json_body()
        require_fields(data, "name")

        warehouse = warehouse_service.create_warehouse(
            parse_optional_str(data["name"], "name", max_length=255),
            parse_choice(data.get("kind"), "kind", WAREHOUSE_KINDS, default=WAREHOUSE_KIND_MAIN),
            customer_id=parse_int(data.get("customer_id"), "customer_id", minimum=1, allow_none=True),
        )

        commit_with_retry()
        warehouse_service.reset_main_warehouse_cache()

        return jsonify(warehouse.to_dict()), 201

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create warehouse")
        return jsonify({"error": "Internal server error"}), 500


@warehouses_bp.route("/warehouses/<int:warehouse_id>", methods=["PATCH"])
@require_user
def update_warehouse(warehouse_id: int):
    try:
        data = get_json_body()
        kind = data.get("kind")

        warehouse = warehouse_service.update_warehouse(
            warehouse_id,
            name=parse_optional_str(data.get("name"), "name", max_length=255),
            kind=parse_choice(kind, "kind", WAREHOUSE_KINDS) if kind is not None else None,
        )

        commit_with_retry()
        warehouse_service.reset_main_warehouse_cache()

        return jsonify(warehouse.to_dict()), 200

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update warehouse %s", warehouse_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouses_bp.route("/warehouses/<int:warehouse_id>", methods=["DELETE"])
@require_user
def delete_warehouse(warehouse_id: int):
    """
    Delete an empty warehouse. Customer references are cleared, stock is never cascaded.

    Returns:
        200: Deleted
        400: Still holds stock, has transfers, or is the main warehouse
    """
    try:
        try:
            main_id = warehouse_service.get_main_warehouse_id()
        except MainWarehouseNotFound:
            main_id = None

        warehouse = warehouse_service.delete_warehouse(warehouse_id, main_warehouse_id=main_id)
        payload = warehouse.to_dict()

        commit_with_retry()
        warehouse_service.reset_main_warehouse_cache()

        return jsonify(payload), 200

    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete warehouse %s", warehouse_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouses_bp.route("/warehouses/<int:warehouse_id>/stock", methods=["GET"])
@require_user
def warehouse_stock(warehouse_id: int):
    try:
        warehouse = warehouse_service.get_warehouse(warehouse_id)
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code

    locations = (
        db.session.query(StockLocation)
        .filter(StockLocation.warehouse_id == warehouse.id)
        .order_by(StockLocation.id.asc())
        .all()
    )
    return jsonify({
        "warehouse": warehouse.to_dict(),
        "stock": [loc.to_dict() for loc in locations],
    }), 200


@warehouses_bp.route("/customers", methods=["POST"])
@require_user
def create_customer():
    """
    Create a customer and its CUSTOMER warehouse.

    Request body: {"name": str, "email"?, "phone"?, "address"?, "tax_office"?, "tax_number"?}
    """
    try:
        data = get_json_body()
        require_fields(data, "name")

        customer = warehouse_service.create_customer(
            parse_optional_str(data["name"], "name", max_length=255),
            email=parse_optional_str(data.get("email"), "email", max_length=255),
            phone=parse_optional_str(data.get("phone"), "phone", max_length=32),
            address=parse_optional_str(data.get("address"), "address"),
            tax_office=parse_optional_str(data.get("tax_office"), "tax_office", max_length=128),
            tax_number=parse_optional_str(data.get("tax_number"), "tax_number", max_length=32),
        )

        commit_with_retry()

        return jsonify(customer.to_dict()), 201

    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500
