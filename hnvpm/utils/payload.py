"""Helpers for turning loose JSON payloads into model column values and back."""
import re
from datetime import datetime, date
from decimal import Decimal, InvalidOperation

from fastapi import HTTPException

NULL_LIKE_STRINGS = {"", "null", "none", "nan"}
PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Never accepted from a request body.
SYSTEM_FIELDS = {"id", "organization_id", "created_at", "updated_at", "created_by"}


def coerce_column_value(column, value):
    if value is None:
        return None

    if isinstance(value, str):
        value = value.strip()
        if value.lower() in NULL_LIKE_STRINGS:
            return None

    try:
        python_type = column.type.python_type
    except (NotImplementedError, AttributeError):
        return value

    if python_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return bool(value)
        if isinstance(value, str) and value.lower() in {"true", "1", "yes", "on"}:
            return True
        if isinstance(value, str) and value.lower() in {"false", "0", "no", "off"}:
            return False
        raise ValueError("invalid boolean")

    if python_type in (int, Decimal):
        try:
            return python_type(str(value)) if python_type is Decimal else int(value)
        except (TypeError, ValueError, InvalidOperation) as exc:
            raise ValueError("invalid number") from exc

    if python_type is datetime:
        if isinstance(value, datetime):
            return value
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError("invalid datetime") from exc
        # Stored naive in UTC.
        return parsed.replace(tzinfo=None)

    if python_type is date:
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError as exc:
            raise ValueError("invalid date") from exc

    return value


def sanitize_payload(model, data: dict, blocked_fields: set | None = None) -> dict:
    """Keep only known columns, coerce their values, reject the bad ones with 422."""
    blocked = SYSTEM_FIELDS | (blocked_fields or set())
    cleaned, errors = {}, []
    for key, value in (data or {}).items():
        if key in blocked:
            continue
        column = model.__table__.columns.get(key)
        if column is None:
            continue
        try:
            cleaned[key] = coerce_column_value(column, value)
        except ValueError:
            errors.append(key)

    if cleaned.get("phone") and not PHONE_RE.match(str(cleaned["phone"])):
        errors.append("phone")
    if cleaned.get("email"):
        cleaned["email"] = str(cleaned["email"]).lower()
        if not EMAIL_RE.match(cleaned["email"]):
            errors.append("email")

    if errors:
        raise HTTPException(status_code=422, detail=f"Invalid values for fields: {', '.join(errors)}")
    return cleaned


def require_fields(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise HTTPException(status_code=422, detail=f"Missing required fields: {', '.join(missing)}")


def to_dict(obj, exclude: set | None = None) -> dict:
    if obj is None:
        return None
    exclude = exclude or set()
    out = {}
    for col in obj.__table__.columns:
        if col.name in exclude:
            continue
        value = getattr(obj, col.name)
        if isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, (datetime, date)):
            value = value.isoformat()
        out[col.name] = value
    return out
