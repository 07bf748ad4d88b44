"""
Conversation Memory.

Per-user log of recent turns, held in process memory and passed into the
chat service by construction. Expiry is driven by an injected clock.

Bounds (applied on every read and every write):
- Turns older than ``expiry_seconds`` are dropped
- At most ``max_turns`` of the most recent turns are kept
"""

from typing import Dict, List, Optional

from ..domain.conversation import ConversationTurn
from ..utils.clock import Clock, SystemClock
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id

logger = get_module_logger()


class ConversationMemory:
    """
    Session store keyed by user id.

    Usage:
        memory = ConversationMemory(max_turns=10, expiry_seconds=1800)
        memory.record("user-1", turn)
        recent = memory.read("user-1")
        memory.clear("user-1")
    """

    def __init__(self, max_turns: int = 10, expiry_seconds: float = 1800, clock: Optional[Clock] = None):
        self.max_turns = max_turns
        self.expiry_seconds = expiry_seconds
        self.clock = clock or SystemClock()
        self._logs: Dict[str, List[ConversationTurn]] = {}

    def now(self) -> float:
        return self.clock.now()

    def _evict(self, user_id: str) -> List[ConversationTurn]:
        turns = self._logs.get(user_id)
        if not turns:
            return []

        cutoff = self.clock.now() - self.expiry_seconds
        kept = [turn for turn in turns if turn.timestamp > cutoff]
        if len(kept) > self.max_turns:
            kept = kept[-self.max_turns:]

        if kept:
            self._logs[user_id] = kept
        else:
            self._logs.pop(user_id, None)
        return kept

    def record(self, user_id: str, turn: ConversationTurn) -> None:
        self._logs.setdefault(user_id, []).append(turn)
        kept = self._evict(user_id)
        logger.debug("Conversation turn recorded", turns=len(kept), trace_id=current_trace_id())

    def read(self, user_id: str) -> List[ConversationTurn]:
        """Non-expired turns, oldest first."""
        return list(self._evict(user_id))

    def clear(self, user_id: str) -> int:
        """Drop the user's log; returns how many turns were removed."""
        removed = len(self._logs.pop(user_id, []))
        logger.info("Conversation history cleared", removed=removed, trace_id=current_trace_id())
        return removed
