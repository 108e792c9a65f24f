from __future__ import annotations

import pytest

from engagement_core import keyword_rules

VERIFICATION_FIXTURES = [
    ("ya", "affirmative"),
    ("YA", "affirmative"),
    ("Ya.", "affirmative"),
    ("yes", "affirmative"),
    ("tidak", "negative"),
    ("Tidak!", "negative"),
    ("no", "negative"),
    ("ya tentu saja", None),
    ("mungkin", None),
    ("", None),
]

FALLBACK_VERIFICATION_FIXTURES = [
    ("iya boleh", "affirmative"),
    ("oke siap", "affirmative"),
    ("gak mau", "negative"),
    ("nanti saja", "negative"),
    ("sure", "affirmative"),
    ("siapa ini", None),
]

CONFIRMATION_FIXTURES = [
    ("sudah", "confirmed"),
    ("Sudah minum obat", "confirmed"),
    ("udh", "confirmed"),
    ("done", "confirmed"),
    ("belum", "missed"),
    ("belum minum", "missed"),
    ("lupa minum tadi", "missed"),
    ("forgot", "missed"),
    ("tolong saya pusing", "help_needed"),
    ("sudah minum tapi sakit", "help_needed"),
    ("halo", None),
]


@pytest.mark.parametrize(("message", "expected"), VERIFICATION_FIXTURES)
def test_strict_verification_table(message, expected):
    assert keyword_rules.match_verification_reply(message) == expected


@pytest.mark.parametrize(("message", "expected"), FALLBACK_VERIFICATION_FIXTURES)
def test_fallback_verification_table(message, expected):
    assert keyword_rules.match_verification_fallback(message) == expected


@pytest.mark.parametrize(("message", "expected"), CONFIRMATION_FIXTURES)
def test_confirmation_table(message, expected):
    assert keyword_rules.match_confirmation(message) == expected


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("sudah", True),
        ("belum minum", True),
        ("Kapan saya harus minum obat?", False),
        ("apa efek samping obat yang saya minum", False),
        ("saya sudah minum obat pagi ini tapi masih lupa yang siang juga", False),
        ("terima kasih", False),
    ],
)
def test_confirmation_reply_shape(message, expected):
    assert keyword_rules.looks_like_confirmation_reply(message) is expected


@pytest.mark.parametrize(
    ("message", "data_type", "response_type"),
    [
        ("Tolong lihat catatan kesehatan saya", "health_notes", "eskalasi"),
        ("bagaimana kepatuhan saya bulan ini", "medication_compliance", "data_pasien"),
        ("jadwal obat saya", "medication_schedule", "data_pasien"),
        ("apa efek samping metformin", "medication_info", "data_pasien"),
        ("pengingat saya jam berapa", "reminder", "data_pasien"),
        ("selamat pagi", None, "informasi"),
    ],
)
def test_general_inquiry_fallback(message, data_type, response_type):
    result = keyword_rules.fallback_general_inquiry(message)

    assert result["patient_data_type"] == data_type
    assert result["response_type"] == response_type
    assert result["data_access_required"] is (data_type is not None)
    assert result["confidence"] == keyword_rules.FALLBACK_CONFIDENCE
    assert result["reason"] == keyword_rules.FALLBACK_REASON


def test_every_language_block_has_the_same_outcomes():
    for table in (keyword_rules.VERIFICATION_REPLIES, keyword_rules.VERIFICATION_FALLBACK):
        assert {frozenset(block) for block in table.values()} == {frozenset({"affirmative", "negative"})}
    for block in keyword_rules.CONFIRMATION_RULES.values():
        assert set(block) == {"help_needed", "missed", "confirmed"}
