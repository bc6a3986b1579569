"""Utility functions for handling enum/string values safely."""
from enum import Enum
from typing import List, Type


def enum_values(enum_cls: Type[Enum]) -> List[str]:
    """
    Values to persist for a str-Enum column (SQLAlchemy Enum values_callable).

    Stores 'clock_in' rather than the member name 'CLOCK_IN'.
    """
    return [member.value for member in enum_cls]


def enum_to_str(v):
    """
    Safely convert enum or string value to string.

    Examples:
        >>> enum_to_str(GrantType.MANUAL)
        'manual'
        >>> enum_to_str('manual')
        'manual'
        >>> enum_to_str(None)
        None
    """
    if v is None:
        return None
    if isinstance(v, Enum):
        return v.value
    return str(v)
