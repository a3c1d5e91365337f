"""Phone number validation."""
import re
from typing import Any

# Optional "+", then 2-15 digits with a non-zero first digit
E164_PATTERN = re.compile(r"\+?[1-9]\d{1,14}")


def is_valid_phone_number(value: Any) -> bool:
    """
    Check whether a value looks like an international phone number.

    Formatting characters (spaces, dashes, parentheses) are not stripped,
    so "+1 555 123 4567" is rejected.

    Returns:
        True if the value matches the international format, False otherwise
    """
    if not isinstance(value, str):
        return False
    return E164_PATTERN.fullmatch(value) is not None
