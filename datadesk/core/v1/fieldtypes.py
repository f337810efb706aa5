from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Optional
import re


# -------------------------------
# Field type registry
#   type tag -> widget + validator + coercion + display formatter
# Forms, tables and the detail view all look types up here; nothing else
# switches on the type tag.
# -------------------------------

REQUIRED_MESSAGE = "This field is required"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
URL_RE = re.compile(r"^(http|https)://[^ \"]+$")
COLOR_RE = re.compile(r"^#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$")
INT_ID_RE = re.compile(r"^(0|-?[1-9]\d*)$")
TIME_RE = re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$")


@dataclass(frozen=True)
class FieldType:
    name: str
    widget: str = "input"
    input_type: str = "text"
    validate: Optional[Callable[[object], Optional[str]]] = None
    coerce: Optional[Callable[[object], object]] = None
    display: Optional[Callable[[object], str]] = None

    def check(self, value) -> Optional[str]:
        if self.validate is None:
            return None
        return self.validate(value)

    def to_value(self, raw):
        if self.coerce is None:
            return raw
        return self.coerce(raw)

    def format(self, value) -> str:
        if value is None:
            return ""
        if self.display is None:
            return str(value)
        return self.display(value)


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


# Validators receive non-blank values only.

def _validate_number(value) -> Optional[str]:
    if isinstance(value, bool):
        return "Please enter a valid number"
    try:
        f = float(value)
    except (TypeError, ValueError):
        return "Please enter a valid number"
    if f != f or f in (float("inf"), float("-inf")):
        return "Please enter a valid number"
    return None


def _validate_integer(value) -> Optional[str]:
    if isinstance(value, bool):
        return "Please enter a valid whole number"
    if isinstance(value, int):
        return None
    s = str(value).strip()
    if re.fullmatch(r"[+-]?\d+", s) is None:
        return "Please enter a valid whole number"
    return None


def _parse_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    # Accept a full timestamp too; the date part is what we keep
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def _parse_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    s = str(value).strip()
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None


def _validate_date(value) -> Optional[str]:
    return None if _parse_date(value) is not None else "Please enter a valid date"


def _validate_datetime(value) -> Optional[str]:
    return None if _parse_datetime(value) is not None else "Please enter a valid date"


def _validate_time(value) -> Optional[str]:
    return None if TIME_RE.fullmatch(str(value).strip()) else "Please enter a valid time"


def _validate_email(value) -> Optional[str]:
    return None if EMAIL_RE.fullmatch(str(value).strip()) else "Please enter a valid email address"


def _validate_url(value) -> Optional[str]:
    if URL_RE.fullmatch(str(value).strip()):
        return None
    return "Please enter a valid URL (starting with http:// or https://)"


def _validate_color(value) -> Optional[str]:
    return None if COLOR_RE.fullmatch(str(value).strip()) else "Please enter a valid color (#RGB or #RRGGBB)"


def _coerce_str(raw):
    if raw is None:
        return None
    s = str(raw).strip()
    return s or None


def _coerce_id(raw):
    # Allocated and seeded keys are ints; ids from forms and URLs arrive as text
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    s = _coerce_str(raw)
    if s is not None and INT_ID_RE.fullmatch(s):
        return int(s)
    return s


def _coerce_number(raw):
    if is_blank(raw):
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return raw
    s = str(raw).strip()
    if re.fullmatch(r"[+-]?\d+", s):
        return int(s)
    return float(s)


def _coerce_integer(raw):
    if is_blank(raw):
        return None
    return int(str(raw).strip())


def _coerce_boolean(raw):
    if isinstance(raw, bool):
        return raw
    if raw is None:
        return False
    return str(raw).strip().lower() in ("1", "true", "on", "yes", "y")


def _coerce_date(raw):
    if is_blank(raw):
        return None
    d = _parse_date(raw)
    return d.isoformat() if d else str(raw).strip()


def _coerce_datetime(raw):
    if is_blank(raw):
        return None
    dt = _parse_datetime(raw)
    return dt.isoformat() if dt else str(raw).strip()


def _coerce_tags(raw):
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(s).strip() for s in raw if str(s).strip()]
    return [s.strip() for s in str(raw).split(",") if s.strip()]


def _display_number(value) -> str:
    try:
        return f"{float(value):.2f}"
    except (TypeError, ValueError):
        return str(value)


def _display_boolean(value) -> str:
    if isinstance(value, str):
        value = _coerce_boolean(value)
    return "Yes" if value else "No"


def _display_date(value) -> str:
    d = _parse_date(value)
    return d.isoformat() if d else str(value)


def _display_datetime(value) -> str:
    dt = _parse_datetime(value)
    return dt.strftime("%Y-%m-%d %H:%M") if dt else str(value)


def _display_tags(value) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def _display_password(value) -> str:
    return "••••••" if value else ""


FIELD_TYPES: Dict[str, FieldType] = {
    "string": FieldType("string", coerce=_coerce_str),
    "text": FieldType("text", widget="textarea", coerce=_coerce_str),
    "number": FieldType("number", input_type="number", validate=_validate_number,
                        coerce=_coerce_number, display=_display_number),
    "integer": FieldType("integer", input_type="number", validate=_validate_integer,
                         coerce=_coerce_integer),
    "boolean": FieldType("boolean", widget="checkbox", input_type="checkbox",
                         coerce=_coerce_boolean, display=_display_boolean),
    "date": FieldType("date", widget="date", input_type="date", validate=_validate_date,
                      coerce=_coerce_date, display=_display_date),
    "datetime": FieldType("datetime", widget="datetime", input_type="datetime-local",
                          validate=_validate_datetime, coerce=_coerce_datetime,
                          display=_display_datetime),
    "time": FieldType("time", widget="time", input_type="time", validate=_validate_time,
                      coerce=_coerce_str),
    "email": FieldType("email", input_type="email", validate=_validate_email, coerce=_coerce_str),
    "url": FieldType("url", input_type="url", validate=_validate_url, coerce=_coerce_str),
    "phone": FieldType("phone", input_type="tel", coerce=_coerce_str),
    "password": FieldType("password", input_type="password", coerce=_coerce_str,
                          display=_display_password),
    "color": FieldType("color", input_type="color", validate=_validate_color, coerce=_coerce_str),
    "tags": FieldType("tags", widget="tags", coerce=_coerce_tags, display=_display_tags),
    "relation": FieldType("relation", widget="select", coerce=_coerce_id),
}


def get_field_type(type_tag: str | None) -> FieldType:
    """Look up a type tag; unknown tags render and validate as plain strings."""
    return FIELD_TYPES.get(str(type_tag or "string").strip().lower(), FIELD_TYPES["string"])


def known_type(type_tag: str | None) -> bool:
    return str(type_tag or "").strip().lower() in FIELD_TYPES


def register_field_type(field_type: FieldType) -> None:
    FIELD_TYPES[field_type.name] = field_type
