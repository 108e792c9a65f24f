from __future__ import annotations

import pytest

from engagement_core import HandlerEntry, HandlerRegistry, entry_for, handles, route_interaction, select_handler


async def _noop(ctx):
    return None


def _entry(name: str, priority: int, *types: str) -> HandlerEntry:
    return HandlerEntry(name=name, priority=priority, predicate=handles(*types), handler=_noop)


def test_registry_orders_by_priority_and_picks_first_match():
    registry = HandlerRegistry(
        [
            _entry("catch_all", 90, "general_inquiry", "verification"),
            _entry("verification", 10, "verification"),
        ]
    )

    assert registry.list_names() == ["verification", "catch_all"]
    assert registry.dispatch("verification").name == "verification"
    assert registry.dispatch("general_inquiry").name == "catch_all"


def test_unmatched_type_returns_none():
    registry = HandlerRegistry([_entry("verification", 10, "verification")])

    assert registry.dispatch("unsubscribe") is None
    assert select_handler((), "verification") is None


def test_duplicate_handler_names_are_rejected():
    with pytest.raises(ValueError):
        HandlerRegistry([_entry("a", 10, "verification"), _entry("a", 20, "general_inquiry")])


def test_entry_for_defaults_to_handler_name():
    class Dummy:
        name = "reminder_confirmation"
        priority = 20

        async def handle(self, ctx):
            return None

    entry = entry_for(Dummy())

    assert entry.priority == 20
    assert entry.predicate("reminder_confirmation") is True
    assert entry.predicate("general_inquiry") is False


@pytest.mark.parametrize(
    ("status", "message", "explicit", "expected"),
    [
        ("PENDING", "ya", None, "verification"),
        ("PENDING", "jadwal obat saya kapan?", None, "verification"),
        ("VERIFIED", "sudah", None, "reminder_confirmation"),
        ("VERIFIED", "belum minum", None, "reminder_confirmation"),
        ("VERIFIED", "Kapan saya minum obat?", None, "general_inquiry"),
        ("VERIFIED", "terima kasih", None, "general_inquiry"),
        ("DECLINED", "sudah", None, "general_inquiry"),
        ("VERIFIED", "sudah", "general_inquiry", "general_inquiry"),
        ("VERIFIED", "sudah", "not_a_type", "reminder_confirmation"),
    ],
)
def test_route_interaction(status, message, explicit, expected):
    assert route_interaction({"verification_status": status}, message, explicit) == expected
