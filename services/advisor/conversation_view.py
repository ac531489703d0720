"""In-memory list of turns shown to the user, with change events."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from models.session_models import Turn


class TurnEventKind(str, Enum):
    ADDED = "turn.added"
    UPDATED = "turn.updated"
    REMOVED = "turn.removed"
    RESET = "turns.reset"


@dataclass(frozen=True)
class TurnEvent:
    kind: TurnEventKind
    turn: Optional[Turn] = None
    turns: Optional[List[Turn]] = None


class ConversationView:
    """Ordered turns of the selected session.

    The listener is called synchronously on every change, so it must copy or
    serialize the turn right away if it defers delivery.
    """

    def __init__(self, listener: Optional[Callable[[TurnEvent], None]] = None) -> None:
        self.listener = listener
        self._turns: List[Turn] = []

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def turns(self) -> List[Turn]:
        return list(self._turns)

    def get(self, turn_id: str) -> Optional[Turn]:
        for turn in self._turns:
            if turn.id == turn_id:
                return turn
        return None

    def append(self, turn: Turn) -> Turn:
        self._turns.append(turn)
        self._emit(TurnEvent(TurnEventKind.ADDED, turn=turn))
        return turn

    def update_content(self, turn_id: str, content: str) -> bool:
        """Replace the content of an in-flight turn. Completed turns are left untouched."""
        turn = self.get(turn_id)
        if turn is None or turn.complete:
            return False
        turn.content = content
        self._emit(TurnEvent(TurnEventKind.UPDATED, turn=turn))
        return True

    def mark_complete(self, turn_id: str) -> bool:
        turn = self.get(turn_id)
        if turn is None or turn.complete:
            return False
        turn.complete = True
        self._emit(TurnEvent(TurnEventKind.UPDATED, turn=turn))
        return True

    def remove(self, turn_id: str) -> bool:
        turn = self.get(turn_id)
        if turn is None:
            return False
        self._turns.remove(turn)
        self._emit(TurnEvent(TurnEventKind.REMOVED, turn=turn))
        return True

    def replace(self, turns: Sequence[Turn]) -> None:
        self._turns = list(turns)
        self._emit(TurnEvent(TurnEventKind.RESET, turns=self.turns))

    def clear(self) -> None:
        self.replace([])

    def _emit(self, event: TurnEvent) -> None:
        if self.listener is not None:
            self.listener(event)
