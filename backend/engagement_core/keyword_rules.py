"""Deterministic keyword rule tables, one block per language.

Bump ``RULESET_VERSION`` whenever a table changes so logged classifications
can be traced back to the rules that produced them.
"""

from __future__ import annotations

import re
from typing import Any

RULESET_VERSION = "2024.2"

_TOKEN_RE = re.compile(r"[^\w\s-]+", re.UNICODE)

# Exact single-word replies accepted by the verification handler.
VERIFICATION_REPLIES: dict[str, dict[str, tuple[str, ...]]] = {
    "id": {"affirmative": ("ya",), "negative": ("tidak",)},
    "en": {"affirmative": ("yes",), "negative": ("no",)},
}

# Broader vocabulary used only by the fallback classifier.
VERIFICATION_FALLBACK: dict[str, dict[str, tuple[str, ...]]] = {
    "id": {
        "affirmative": (
            "ya",
            "iya",
            "ok",
            "oke",
            "baik",
            "setuju",
            "mau",
            "ingin",
            "terima",
            "siap",
            "bisa",
            "boleh",
        ),
        "negative": ("tidak", "ga", "gak", "engga", "enggak", "tolak", "nanti", "besok", "belum"),
    },
    "en": {
        "affirmative": ("yes", "y", "yeah", "sure", "okay", "agree"),
        "negative": ("no", "n", "nope", "decline", "later"),
    },
}

# Checked in this order: help first, then missed before confirmed so "belum minum" is not read as taken.
CONFIRMATION_RULES: dict[str, dict[str, tuple[str, ...]]] = {
    "id": {
        "help_needed": ("tolong", "bantuan", "bantu", "sakit", "nyeri"),
        "missed": ("belum", "blm", "lupa", "skip", "lewat", "nanti", "tidak"),
        "confirmed": ("sudah", "udah", "udh", "sdh", "selesai", "minum", "ya"),
    },
    "en": {
        "help_needed": ("help", "pain", "sick"),
        "missed": ("missed", "forgot", "not yet", "skipped", "later"),
        "confirmed": ("done", "taken", "took", "yes"),
    },
}
_CONFIRMATION_ORDER = ("help_needed", "missed", "confirmed")

QUESTION_WORDS = (
    "apa",
    "apakah",
    "kapan",
    "bagaimana",
    "gimana",
    "berapa",
    "kenapa",
    "mengapa",
    "siapa",
    "dimana",
    "what",
    "when",
    "how",
    "why",
    "which",
)
MAX_CONFIRMATION_REPLY_WORDS = 8

GENERAL_INQUIRY_RULES: dict[str, tuple[str, ...]] = {
    "emergency": ("darurat", "emergency", "tolong", "bantuan"),
    "health_notes": ("catatan", "kesehatan", "riwayat", "record", "note"),
    "medication_compliance": ("kepatuhan", "patuh", "compliance", "adherence"),
    "medication_schedule": ("jadwal", "schedule"),
    "medication_info": ("informasi obat", "info obat", "dosis", "efek samping", "medication"),
    "reminder": ("pengingat", "reminder", "obat", "minum"),
}
_DATA_TYPE_ORDER = ("health_notes", "medication_compliance", "medication_schedule", "medication_info", "reminder")
_TOPICS = {
    "health_notes": "catatan_kesehatan",
    "medication_compliance": "kepatuhan_obat",
    "medication_schedule": "jadwal_obat",
    "medication_info": "informasi_obat",
    "reminder": "pengingat_obat",
}
FALLBACK_CONFIDENCE = 0.6
FALLBACK_REASON = "Fallback analysis due to classification failure"


def normalize_reply(message: str) -> str:
    return " ".join(_TOKEN_RE.sub(" ", (message or "").lower()).split())


def _contains(normalized: str, phrase: str) -> bool:
    return re.search(r"\b" + re.escape(phrase) + r"\b", normalized) is not None


def match_verification_reply(message: str) -> str | None:
    """Strict match: the whole reply must be exactly one known keyword."""
    normalized = normalize_reply(message)
    for table in VERIFICATION_REPLIES.values():
        for outcome in ("affirmative", "negative"):
            if normalized in table[outcome]:
                return outcome
    return None


def match_verification_fallback(message: str) -> str | None:
    normalized = normalize_reply(message)
    words = normalized.split()
    if not words:
        return None
    for table in VERIFICATION_FALLBACK.values():
        for outcome in ("negative", "affirmative"):
            if words[0] in table[outcome] or normalized in table[outcome]:
                return outcome
    return None


def match_confirmation(message: str) -> str | None:
    normalized = normalize_reply(message)
    if not normalized:
        return None
    for outcome in _CONFIRMATION_ORDER:
        for table in CONFIRMATION_RULES.values():
            if any(_contains(normalized, keyword) for keyword in table[outcome]):
                return outcome
    return None


def looks_like_confirmation_reply(message: str) -> bool:
    """Short, non-question replies that hit the confirmation table."""
    if "?" in (message or ""):
        return False
    normalized = normalize_reply(message)
    words = normalized.split()
    if not words or len(words) > MAX_CONFIRMATION_REPLY_WORDS:
        return False
    if any(word in QUESTION_WORDS for word in words):
        return False
    return match_confirmation(message) is not None


def fallback_general_inquiry(message: str) -> dict[str, Any]:
    normalized = normalize_reply(message)
    is_emergency = any(_contains(normalized, keyword) for keyword in GENERAL_INQUIRY_RULES["emergency"])
    data_type = next(
        (
            candidate
            for candidate in _DATA_TYPE_ORDER
            if any(_contains(normalized, keyword) for keyword in GENERAL_INQUIRY_RULES[candidate])
        ),
        None,
    )
    if is_emergency:
        response_type = "eskalasi"
    elif data_type:
        response_type = "data_pasien"
    else:
        response_type = "informasi"
    return {
        "intent": "general_inquiry",
        "response_type": response_type,
        "topic": _TOPICS.get(data_type or "", "umum"),
        "data_access_required": data_type is not None,
        "patient_data_type": data_type,
        "needs_human_help": is_emergency,
        "follow_up_required": False,
        "reason": FALLBACK_REASON,
        "confidence": FALLBACK_CONFIDENCE,
    }
