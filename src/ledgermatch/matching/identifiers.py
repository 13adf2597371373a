"""
Counterparty tax identifier comparison.

Extracted payments frequently show the national ID (DNI, 7-8 digits)
where the invoice carries the full tax ID (CUIT/CUIL, 11 digits:
2-digit prefix, 8-digit DNI, check digit). Both forms identify the same
counterparty.
"""

import re

_SEPARATORS = re.compile(r"[-\s.]")


def normalize_tax_id(value: str | None) -> str:
    """Strip separators from a tax identifier ("20-12345678-6" -> "20123456786")."""
    if not value:
        return ""
    return _SEPARATORS.sub("", str(value))


def _is_cuit(value: str) -> bool:
    return len(value) == 11 and value.isdigit()


def _is_dni(value: str) -> bool:
    return 7 <= len(value) <= 8 and value.isdigit()


def dni_from_cuit(cuit: str) -> str:
    """Return the DNI embedded in an 11-digit CUIT, without leading zeros."""
    cleaned = normalize_tax_id(cuit)
    if not _is_cuit(cleaned):
        return ""
    return cleaned[2:10].lstrip("0")


def tax_ids_match(first: str | None, second: str | None) -> bool:
    """Check whether two identifiers refer to the same counterparty.

    Matches on equal normalized values, or when one side is a CUIT and the
    other is the DNI embedded in it. Empty identifiers never match.
    """
    a = normalize_tax_id(first)
    b = normalize_tax_id(second)
    if not a or not b:
        return False

    if a == b:
        return True

    if _is_cuit(a) and _is_dni(b):
        return dni_from_cuit(a) == b.lstrip("0")
    if _is_cuit(b) and _is_dni(a):
        return dni_from_cuit(b) == a.lstrip("0")

    return False
