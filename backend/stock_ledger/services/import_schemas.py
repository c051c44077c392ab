from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from ..errors import InvalidOperation
from ..time_utils import parse_expiry_date


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    text = str(value).strip().replace(",", ".")
    if not text:
        return None
    return int(float(text))


def _to_cents(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(round(value * 100))
    text = str(value).strip().replace(",", ".")
    if not text:
        return None
    return int(round(float(text) * 100))


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _to_active_flag(value: Any) -> bool:
    # Spreadsheet exports write "Aktif"/"Pasif"; empty means active
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    text = str(value).strip().upper()
    if not text:
        return True
    return text.startswith("A") or text in {"1", "TRUE", "YES", "Y"}


@dataclass
class ImportRow:
    """One normalized stock row handed over by the bulk import parser."""
    reference_code: str
    lot_number: str
    quantity: int
    name: str | None = None
    brand: str | None = None
    category: str | None = None
    barcode: str | None = None
    expiry_date: date | None = None
    sale_price_cents: int | None = None
    is_active: bool = True
    critical_stock_level: int | None = None

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> "ImportRow":
        """
        Build a row from a parsed dict.

        The lot number falls back to the reference code. `sale_price` is a
        decimal amount and is converted to cents; `sale_price_cents` is taken
        as is.
        """
        reference_code = _to_text(raw.get("reference_code"))
        if not reference_code:
            raise InvalidOperation("reference_code is required")
        lot_number = _to_text(raw.get("lot_number")) or reference_code

        try:
            quantity = _to_int(raw.get("quantity")) or 0
            if raw.get("sale_price_cents") is not None:
                sale_price_cents = _to_int(raw.get("sale_price_cents"))
            else:
                sale_price_cents = _to_cents(raw.get("sale_price"))
            critical = _to_int(raw.get("critical_stock_level", raw.get("critical_stock")))
            expiry = parse_expiry_date(raw.get("expiry_date"))
        except ValueError as e:
            raise InvalidOperation(f"Row {reference_code}/{lot_number}: {e}")

        if quantity < 0:
            raise InvalidOperation(f"Row {reference_code}/{lot_number}: quantity cannot be negative")

        return cls(
            reference_code=reference_code,
            lot_number=lot_number,
            quantity=quantity,
            name=_to_text(raw.get("name")),
            brand=_to_text(raw.get("brand")),
            category=_to_text(raw.get("category")),
            barcode=_to_text(raw.get("barcode")),
            expiry_date=expiry,
            sale_price_cents=sale_price_cents,
            is_active=_to_active_flag(raw.get("is_active")),
            critical_stock_level=critical,
        )
