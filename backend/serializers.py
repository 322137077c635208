# serializers.py - Helpers shared by the router `_x_out()` functions and schemas
from datetime import date, datetime
from typing import Annotated, Optional

from pydantic import BeforeValidator


def ts(value) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if isinstance(value, (datetime, date)) else str(value)


def enum_value(value) -> Optional[str]:
    return getattr(value, "value", value)


def clean_text(value: Optional[str]) -> Optional[str]:
    """Trim; empty strings become None"""
    if value is None:
        return None
    value = value.strip()
    return value or None


def _blank_to_none(v):
    return None if isinstance(v, str) and not v.strip() else v


# Form clients send "" to clear a date
OptionalDate = Annotated[Optional[date], BeforeValidator(_blank_to_none)]
OptionalDateTime = Annotated[Optional[datetime], BeforeValidator(_blank_to_none)]
