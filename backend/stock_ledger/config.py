# backend/stock_ledger/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stock_ledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Canonical MAIN warehouse. When unset, the oldest MAIN warehouse is used.
    MAIN_WAREHOUSE_ID = _env_int("MAIN_WAREHOUSE_ID")
    # Fail create_app() when no MAIN warehouse can be resolved.
    REQUIRE_MAIN_WAREHOUSE = _env_flag("REQUIRE_MAIN_WAREHOUSE", False)

    # Barcode scans resolve only within the requested product when one is known.
    BARCODE_SCOPE_TO_PRODUCT = _env_flag("BARCODE_SCOPE_TO_PRODUCT", True)

    # Invoice provider (remote e-invoice API). No API key -> simulated numbers.
    INVOICE_PROVIDER_URL = os.environ.get("INVOICE_PROVIDER_URL", "https://bizimhesap.com/api/b2b")
    INVOICE_PROVIDER_API_KEY = os.environ.get("INVOICE_PROVIDER_API_KEY", "")
    INVOICE_PROVIDER_FIRM_ID = os.environ.get("INVOICE_PROVIDER_FIRM_ID", "")
    INVOICE_PROVIDER_TIMEOUT = float(os.environ.get("INVOICE_PROVIDER_TIMEOUT", "15"))

    LEDGER_RECONCILE_CHUNK_SIZE = int(os.environ.get("LEDGER_RECONCILE_CHUNK_SIZE", "200"))
