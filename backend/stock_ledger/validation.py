from __future__ import annotations

from typing import Any

from flask import request


class ValidationError(ValueError):
    """400-level input problem."""


def get_json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require_fields(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) is None or data.get(f) == ""]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


def parse_int(value: Any, field: str, *, minimum: int | None = None, allow_none: bool = False) -> int | None:
    """
    Strict integer coercion for ids and quantities.

    Rejects bools, floats, decimals and scientific notation.
    """
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            number = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return number


def parse_optional_str(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    text = value.strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def parse_choice(value: Any, field: str, choices, *, default: str | None = None) -> str:
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(f"{field} is required")
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return value


def parse_list(value: Any, field: str, *, allow_none: bool = True) -> list | None:
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list")
    return value


def parse_id_list(value: Any, field: str) -> list[int] | None:
    items = parse_list(value, field)
    if items is None:
        return None
    return [parse_int(v, f"{field}[{i}]", minimum=1) for i, v in enumerate(items)]
