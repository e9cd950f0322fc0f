"""Append-only conversation history."""

import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..tools.types import ToolCallRequest
from .turn import Role, Turn

logger = logging.getLogger(__name__)


class HistoryLog:
    """
    Ordered, append-only log of conversation turns.

    Turns are frozen, so nothing recorded here can change after append;
    snapshot() hands out an immutable tuple.
    """

    def __init__(self, turns: Optional[List[Turn]] = None):
        self._turns: List[Turn] = []
        for turn in turns or []:
            self.append(turn)

    def append(self, turn: Turn) -> None:
        """Append a turn at the end of the log."""
        if not isinstance(turn, Turn):
            raise TypeError(f"Expected Turn, got {type(turn).__name__}")
        self._turns.append(turn)
        logger.debug(f"Appended {turn.role.value} turn #{len(self._turns)}")

    def snapshot(self) -> Tuple[Turn, ...]:
        """All turns in append order."""
        return tuple(self._turns)

    def last(self) -> Optional[Turn]:
        return self._turns[-1] if self._turns else None

    def last_assistant_index(self) -> Optional[int]:
        for index in range(len(self._turns) - 1, -1, -1):
            if self._turns[index].role == Role.ASSISTANT:
                return index
        return None

    def pending_tool_calls(self) -> List[ToolCallRequest]:
        """Calls of the last assistant turn that have no result yet."""
        index = self.last_assistant_index()
        if index is None:
            return []

        answered = {
            turn.tool_result.call_id
            for turn in self._turns[index + 1:]
            if turn.tool_result is not None
        }
        return [call for call in self._turns[index].tool_calls if call.id not in answered]

    def to_json(self) -> str:
        """Serialize the log to JSON."""
        return json.dumps([turn.model_dump(mode="json") for turn in self._turns])

    @classmethod
    def from_json(cls, data: str) -> "HistoryLog":
        """Rebuild a log produced by to_json()."""
        items: List[Dict[str, Any]] = json.loads(data)
        return cls([Turn.model_validate(item) for item in items])

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self.snapshot())
