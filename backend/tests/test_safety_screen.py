from __future__ import annotations

import pytest

from engagement_core import SafetyScreen


@pytest.fixture
def screen() -> SafetyScreen:
    return SafetyScreen()


@pytest.mark.parametrize(
    "message",
    [
        "Ibu saya pingsan di kamar mandi",
        "Saya sesak napas sejak tadi malam",
        "Bapak muntah darah, apa yang harus dilakukan",
        "I think I took an overdose of my pills",
        "Saya ingin bunuh diri",
    ],
)
def test_life_threatening_phrases_are_emergencies(screen, message):
    result = screen.screen(message)

    assert result.is_emergency is True
    assert result.escalation_required is True
    assert result.confidence >= 25
    assert result.indicators


def test_confidence_grows_with_indicators_and_caps_at_100(screen):
    single = screen.screen("Saya pingsan tadi pagi di rumah")
    many = screen.screen("Darurat! Sesak napas, pingsan, berdarah, serangan jantung, koma")

    assert single.confidence == 25
    assert many.confidence == 100


def test_short_plea_for_help_is_urgent(screen):
    result = screen.screen("tolong")

    assert result.is_emergency is True
    assert "short_urgent_message" in result.indicators


def test_long_message_with_tolong_is_not_automatically_urgent(screen):
    result = screen.screen("Tolong ingatkan saya jadwal kontrol bulan depan ya, terima kasih banyak")

    assert result.is_emergency is False
    assert result.confidence == 0


def test_keywords_match_whole_words_only(screen):
    # "komando" must not trigger "koma".
    result = screen.screen("Saya lihat film komando semalam")

    assert result.is_emergency is False


@pytest.mark.parametrize("message", ["Sudah minum obat", "Jadwal obat saya jam berapa?", "ya", ""])
def test_routine_messages_are_not_emergencies(screen, message):
    result = screen.screen(message)

    assert result.is_emergency is False
    assert result.escalation_required is False
    assert result.indicators == ()


def test_offensive_content_requires_escalation_without_emergency(screen):
    result = screen.screen("dasar asshole kamu")

    assert result.is_emergency is False
    assert result.escalation_required is True
    assert [(v.keyword, v.severity) for v in result.violations] == [("asshole", "high")]


def test_medium_severity_content_is_recorded_but_not_escalated(screen):
    result = screen.screen("brengsek, pengingatnya telat")

    assert result.escalation_required is False
    assert result.as_dict()["violations"] == [{"keyword": "brengsek", "severity": "medium"}]
