"""Address helpers used to expose only coarse location data to professionals."""

import re
from typing import Optional

_POSTCODE_CITY = re.compile(r"\b\d{5}\s+[^\d,]+")
_DISTRICT = re.compile(r"\b(\d{1,2})(?:e|er|ème|eme)\b", re.IGNORECASE)
_PARIS_POSTCODE = re.compile(r"\b750(\d{2})\b")

UNKNOWN_AREA = "Not specified"


def extract_city_from_address(address: Optional[str]) -> str:
    """
    Return the city part of a free-form address ("12 rue X, 75001 Paris" -> "75001 Paris").

    Falls back to the last comma-separated component, then to a placeholder.
    """
    if not address or not address.strip():
        return UNKNOWN_AREA

    match = _POSTCODE_CITY.search(address)
    if match:
        return " ".join(match.group(0).split())

    parts = [part.strip() for part in address.split(',') if part.strip()]
    if len(parts) > 1:
        return parts[-1]
    return UNKNOWN_AREA


def extract_district_from_address(address: Optional[str]) -> str:
    """Return the arrondissement ("1er", "15e") when the address carries one."""
    if not address:
        return ""

    postcode = _PARIS_POSTCODE.search(address)
    if postcode:
        number = int(postcode.group(1))
    else:
        match = _DISTRICT.search(address)
        if not match:
            return ""
        number = int(match.group(1))

    if number < 1 or number > 20:
        return ""
    return "1er" if number == 1 else f"{number}e"


def mask_customer_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    """Initial of the first name plus last name ("Marie", "Dupont" -> "M. Dupont")."""
    first_name = (first_name or "").strip()
    last_name = (last_name or "").strip()
    if first_name and last_name:
        return f"{first_name[0].upper()}. {last_name}"
    return last_name or (f"{first_name[0].upper()}." if first_name else "")
