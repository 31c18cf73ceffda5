"""
Typed key/value settings.

Every value is stored together with a type tag (string, number, boolean,
object, array). The raw value is coerced to the tag once, when it is written.
"""
import json
import logging
import math
from typing import Any, Dict, List, Optional

from database import count_documents, create_document, find_and_update, get_document, get_documents
from errors import ValidationError
from schemas import Setting

logger = logging.getLogger(__name__)

TRUE_STRINGS = {"true", "1", "yes", "on"}
FALSE_STRINGS = {"false", "0", "no", "off"}

DEFAULT_SETTINGS = [
    # general
    {"key": "site_name", "value": "Food Ordering System", "type": "string", "description": "Website name", "category": "general"},
    {"key": "site_description", "value": "Best food ordering platform", "type": "string", "description": "Website description", "category": "general"},
    {"key": "contact_email", "value": "admin@foodorder.com", "type": "string", "description": "Contact email address", "category": "general"},
    {"key": "contact_phone", "value": "+1234567890", "type": "string", "description": "Contact phone number", "category": "general"},
    {"key": "maintenance_mode", "value": False, "type": "boolean", "description": "Enable maintenance mode", "category": "general"},
    # orders
    {"key": "min_order_amount", "value": 10, "type": "number", "description": "Minimum order amount", "category": "orders"},
    {"key": "delivery_fee", "value": 5, "type": "number", "description": "Delivery fee", "category": "orders"},
    {"key": "free_delivery_threshold", "value": 50, "type": "number", "description": "Free delivery threshold", "category": "orders"},
    {"key": "order_timeout", "value": 30, "type": "number", "description": "Order timeout in minutes", "category": "orders"},
    # payment
    {"key": "payment_methods", "value": ["cash", "card", "paypal"], "type": "array", "description": "Available payment methods", "category": "payment"},
    {"key": "currency", "value": "USD", "type": "string", "description": "Default currency", "category": "payment"},
    {"key": "tax_rate", "value": 8.5, "type": "number", "description": "Tax rate percentage", "category": "payment"},
    # email
    {"key": "smtp_host", "value": "smtp.gmail.com", "type": "string", "description": "SMTP host", "category": "email"},
    {"key": "smtp_port", "value": 587, "type": "number", "description": "SMTP port", "category": "email"},
    {"key": "smtp_username", "value": "", "type": "string", "description": "SMTP username", "category": "email"},
    {"key": "smtp_password", "value": "", "type": "string", "description": "SMTP password", "category": "email"},
    {"key": "email_from", "value": "noreply@foodorder.com", "type": "string", "description": "From email address", "category": "email"},
    # security
    {"key": "max_login_attempts", "value": 5, "type": "number", "description": "Maximum login attempts", "category": "security"},
    {"key": "session_timeout", "value": 24, "type": "number", "description": "Session timeout in hours", "category": "security"},
    {"key": "password_min_length", "value": 8, "type": "number", "description": "Minimum password length", "category": "security"},
    {"key": "require_email_verification", "value": True, "type": "boolean", "description": "Require email verification", "category": "security"},
    # notifications
    {"key": "admin_notifications", "value": True, "type": "boolean", "description": "Enable admin notifications", "category": "notifications"},
    {"key": "order_notifications", "value": True, "type": "boolean", "description": "Enable order notifications", "category": "notifications"},
    {"key": "email_notifications", "value": True, "type": "boolean", "description": "Enable email notifications", "category": "notifications"},
]


def _invalid(type_tag, message):
    return ValidationError(f"Invalid value for type '{type_tag}'", errors=[{"field": "value", "message": message}])


def _to_number(raw):
    value = _parse_number(raw)
    if isinstance(value, float) and not math.isfinite(value):
        raise _invalid("number", "Value must be a finite number")
    return value


def _parse_number(raw):
    if isinstance(raw, bool):
        raise _invalid("number", "Value must be a number")
    if isinstance(raw, (int, float)):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            pass
    raise _invalid("number", "Value must be a number")


def _to_boolean(raw):
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return raw != 0
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    raise _invalid("boolean", "Value must be true or false")


def _reject_constant(name):
    raise ValueError(f"{name} is not allowed")


def _parse_json(raw, type_tag):
    try:
        # NaN and Infinity cannot be sent back out as JSON
        return json.loads(raw, parse_constant=_reject_constant)
    except ValueError:
        raise _invalid(type_tag, "Value is not valid JSON")


def _to_object(raw):
    value = _parse_json(raw, "object") if isinstance(raw, str) else raw
    if not isinstance(value, dict):
        raise _invalid("object", "Value must be an object")
    return value


def _to_array(raw):
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("[") and text.endswith("]"):
            value = _parse_json(text, "array")
        else:
            # comma separated, e.g. "cash, card, paypal"
            value = [part.strip() for part in text.split(",") if part.strip()]
    else:
        value = raw
    if not isinstance(value, list):
        raise _invalid("array", "Value must be an array")
    return value


def _to_string(raw):
    if isinstance(raw, (dict, list)):
        raise _invalid("string", "Value must be text")
    if isinstance(raw, bool):
        return "true" if raw else "false"
    return str(raw)


COERCERS = {
    "string": _to_string,
    "number": _to_number,
    "boolean": _to_boolean,
    "object": _to_object,
    "array": _to_array,
}


def coerce_value(type_tag: str, raw: Any) -> Any:
    if type_tag not in COERCERS:
        raise ValidationError("Invalid type", errors=[{"field": "type", "message": f"Unknown setting type '{type_tag}'"}])
    if raw is None:
        raise ValidationError("Value is required", errors=[{"field": "value", "message": "Value is required"}])
    return COERCERS[type_tag](raw)


def get_setting(key: str) -> Optional[dict]:
    return get_document("setting", {"key": key})


def get_value(key: str, default: Any = None) -> Any:
    setting = get_setting(key)
    return setting["value"] if setting else default


def set_value(key: str, raw: Any, type_tag: str = "string", description: str = "", category: str = "general") -> dict:
    """Coerce and upsert a setting; returns the stored document."""
    value = coerce_value(type_tag, raw)
    setting = Setting(key=key, value=value, type=type_tag, description=description or "", category=category or "general")
    return find_and_update("setting", {"key": key}, setting.model_dump(), upsert=True)


def list_grouped() -> Dict[str, List[dict]]:
    grouped: Dict[str, List[dict]] = {}
    for setting in get_documents("setting", sort=[("category", 1), ("key", 1)]):
        grouped.setdefault(setting.get("category", "general"), []).append(setting)
    return grouped


def initialize_defaults() -> int:
    """Create the default settings that are missing; returns how many were created."""
    created = 0
    for default in DEFAULT_SETTINGS:
        if count_documents("setting", {"key": default["key"]}):
            continue
        create_document("setting", Setting(**default))
        created += 1
    if created:
        logger.info("Seeded %d default settings", created)
    return created
