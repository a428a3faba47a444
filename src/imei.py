"""IMEI helpers for the IMEI-lookup caller, which feeds carrier make/model/storage into match_to_library."""

import re


def clean_imei(raw: str) -> str:
    """Drop spaces and hyphens: '49-015420 323751 8' -> '490154203237518'."""
    return re.sub(r'[\s\-]', '', raw or '')


def is_valid_imei(imei: str) -> bool:
    """Exactly 15 digits with a valid Luhn check digit."""
    if not re.fullmatch(r'\d{15}', imei or ''):
        return False
    total = 0
    for i, ch in enumerate(imei):
        digit = int(ch)
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def extract_tac(imei: str) -> str:
    """Type Allocation Code: the first 8 digits, identifying the device model."""
    return imei[:8]
