# Overview: Deterministic lot selection (barcode match, then first-expiry-first-out).

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Lot


def _creation_order(query):
    return query.order_by(Lot.created_at.asc(), Lot.id.asc())


def find_lot_by_barcode(barcode: str, product_id: int | None = None) -> Lot | None:
    """
    First lot (in creation order) carrying exactly this barcode.

    Barcodes are not unique. When product_id is given the search is limited to
    that product's lots.
    """
    if not barcode:
        return None
    query = db.session.query(Lot).filter(Lot.barcode == barcode)
    if product_id is not None:
        query = query.filter(Lot.product_id == product_id)
    return _creation_order(query).first()


def fefo_order(query):
    """
    Order lots first-expiry-first-out.

    Expiry ascending with undated lots last ("use last"), then creation time,
    then id so the order is total.
    """
    return query.order_by(
        Lot.expiry_date.is_(None).asc(),
        Lot.expiry_date.asc(),
        Lot.created_at.asc(),
        Lot.id.asc(),
    )


def auto_select_lot(product_id: int | None, barcode: str | None = None) -> Lot | None:
    """
    Pick the lot a movement should use. Pure read.

    1. A barcode match short-circuits everything else. With
       BARCODE_SCOPE_TO_PRODUCT (default) the match is restricted to
       `product_id` when one is known; otherwise any product's lot may match.
    2. Otherwise the product's lots in FEFO order; the first one wins.

    Returns None when nothing matches.
    """
    if barcode:
        scope_to_product = current_app.config.get("BARCODE_SCOPE_TO_PRODUCT", True)
        lot = find_lot_by_barcode(barcode, product_id if scope_to_product else None)
        if lot is not None:
            return lot

    if product_id is None:
        return None

    return fefo_order(db.session.query(Lot).filter(Lot.product_id == product_id)).first()
