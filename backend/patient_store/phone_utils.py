from __future__ import annotations

import re

COUNTRY_CODE = "62"
_NON_DIGIT_RE = re.compile(r"\D+")


def digits_only(raw: str | None) -> str:
    return _NON_DIGIT_RE.sub("", raw or "")


def normalize_phone(raw: str | None) -> str:
    """Canonical country-code form used for cache keys and storage."""
    digits = digits_only(raw)
    if not digits:
        return ""
    if digits.startswith(COUNTRY_CODE):
        return digits
    if digits.startswith("0"):
        return COUNTRY_CODE + digits[1:]
    if digits.startswith("8"):
        return COUNTRY_CODE + digits
    return digits


def generate_phone_alternatives(raw: str | None) -> list[str]:
    """Alternate spellings of the same subscriber number, never including ``raw`` itself."""
    original = (raw or "").strip()
    digits = digits_only(original)
    candidates: list[str] = []
    if digits.startswith(COUNTRY_CODE) and len(digits) >= 11:
        local = digits[len(COUNTRY_CODE):]
        candidates.extend(["0" + local, digits, "+" + digits])
    elif digits.startswith("0") and len(digits) >= 10:
        local = digits[1:]
        candidates.extend([COUNTRY_CODE + local, "+" + COUNTRY_CODE + local, digits])
    elif digits.startswith("8") and len(digits) >= 9:
        candidates.extend([COUNTRY_CODE + digits, "0" + digits])

    alternatives: list[str] = []
    for candidate in candidates:
        if candidate and candidate != original and candidate not in alternatives:
            alternatives.append(candidate)
    return alternatives[:3]


def mask_phone(raw: str | None) -> str:
    digits = digits_only(raw)
    if len(digits) <= 4:
        return "***"
    return f"{digits[:4]}***{digits[-3:]}"
