"""
Pickup codes: short numeric one-time codes exchanged in person.

Codes come from ``secrets`` and are compared in constant time.
"""

import hmac
import secrets


def generate_numeric_code(length: int) -> str:
    """A ``length``-digit code with no leading zero."""
    if length < 1:
        raise ValueError(f"code length must be positive, got {length}")
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


def codes_match(expected: str | None, supplied: str | None) -> bool:
    if not expected or supplied is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), str(supplied).strip().encode("utf-8"))
