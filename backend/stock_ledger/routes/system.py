# backend/stock_ledger/routes/system.py
"""
System health endpoint.

Reports database connectivity, whether a canonical MAIN warehouse resolves,
and how many lots have drifted from their tracked location totals.
"""

import time
from flask import Blueprint, current_app
from ..errors import MainWarehouseNotFound
from ..extensions import db
from ..models import Lot, StockLocation, Warehouse
from ..services import reconciliation_service
from ..services.warehouse_service import get_main_warehouse_id
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        warehouse_count = db.session.query(Warehouse).count()
        lot_count = db.session.query(Lot).count()
        location_count = db.session.query(StockLocation).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "warehouses": warehouse_count,
                "lots": lot_count,
                "stock_locations": location_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_main_warehouse_health() -> dict:
    try:
        main_id = get_main_warehouse_id()
    except MainWarehouseNotFound as e:
        return {"status": "unhealthy", "error": str(e)}
    except Exception:
        current_app.logger.exception("Main warehouse health check failed")
        return {"status": "unhealthy", "error": "Database error"}
    return {"status": "healthy", "details": {"main_warehouse_id": main_id}}


def check_lot_drift() -> dict:
    """Lots whose master quantity disagrees with their locations; degraded, not fatal."""
    try:
        drifted = reconciliation_service.find_untracked_lots(limit=20)
    except Exception:
        current_app.logger.exception("Lot drift check failed")
        return {"status": "unhealthy", "error": "Database error"}
    if drifted:
        return {
            "status": "degraded",
            "warning": "Lot quantities out of sync; run `flask ledger recalc-lots`",
            "details": {"sample": drifted},
        }
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable or no MAIN warehouse
    """
    start_time = time.time()

    database_health = check_database_health()
    main_health = check_main_warehouse_health()
    drift_health = check_lot_drift()

    all_checks = [database_health, main_health, drift_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "main_warehouse": main_health,
            "lot_quantities": drift_health,
        }
    }

    return response, http_status
