"""Per-turn accumulation of streamed tool-call fragments."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING
import uuid

from relay.models import ToolCall

if TYPE_CHECKING:
    from collections.abc import Iterable

    from relay.models import ToolCallFragment


@dataclass
class _ToolCallState:
    id: str | None = None
    name: str | None = None
    arguments: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Index -> partial tool call table. Create a new one every turn.

    Fragments only overwrite the fields they carry; argument chunks append in
    arrival order per index, so interleaving across indices does not change
    the result.
    """

    def __init__(self) -> None:
        self._states: dict[int, _ToolCallState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def add(self, fragment: ToolCallFragment) -> None:
        state = self._states.setdefault(fragment.index, _ToolCallState())
        if fragment.id:
            state.id = fragment.id
        if fragment.name:
            state.name = fragment.name
        if fragment.arguments:
            state.arguments.append(fragment.arguments)

    def extend(self, fragments: Iterable[ToolCallFragment]) -> None:
        for fragment in fragments:
            self.add(fragment)

    def completed(self) -> list[ToolCall]:
        """Return calls with a name and non-empty arguments, ordered by index."""
        calls: list[ToolCall] = []
        for index in sorted(self._states):
            state = self._states[index]
            arguments = "".join(state.arguments)
            if not state.name or not arguments:
                continue
            calls.append(
                ToolCall(
                    id=state.id or f"call_{uuid.uuid4().hex[:24]}",
                    name=state.name,
                    arguments=arguments,
                )
            )
        return calls
