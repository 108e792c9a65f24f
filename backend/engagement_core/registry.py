from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from .models import InteractionContext, InteractionResponse

InteractionHandlerFn = Callable[[InteractionContext], Awaitable[InteractionResponse]]
HandlerPredicate = Callable[[str], bool]


def handles(*interaction_types: str) -> HandlerPredicate:
    accepted = frozenset(interaction_types)
    return lambda interaction_type: interaction_type in accepted


@dataclass(frozen=True)
class HandlerEntry:
    name: str
    priority: int
    predicate: HandlerPredicate
    handler: InteractionHandlerFn


def select_handler(entries: tuple[HandlerEntry, ...], interaction_type: str) -> HandlerEntry | None:
    for entry in entries:
        if entry.predicate(interaction_type):
            return entry
    return None


class HandlerRegistry:
    """Priority-ordered handler list, fixed at construction."""

    def __init__(self, entries: Iterable[HandlerEntry]) -> None:
        ordered = sorted(entries, key=lambda entry: entry.priority)
        names = [entry.name for entry in ordered]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate handler names: {names}")
        self._entries: tuple[HandlerEntry, ...] = tuple(ordered)

    @property
    def entries(self) -> tuple[HandlerEntry, ...]:
        return self._entries

    def dispatch(self, interaction_type: str) -> HandlerEntry | None:
        return select_handler(self._entries, interaction_type)

    def list_names(self) -> list[str]:
        return [entry.name for entry in self._entries]


def entry_for(handler: Any, *interaction_types: str) -> HandlerEntry:
    """Wrap a handler object exposing ``name``, ``priority`` and ``handle``."""
    accepted = interaction_types or (handler.name,)
    return HandlerEntry(
        name=handler.name,
        priority=handler.priority,
        predicate=handles(*accepted),
        handler=handler.handle,
    )
