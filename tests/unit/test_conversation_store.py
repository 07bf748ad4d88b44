"""Unit tests for ConversationMemory bounds and isolation."""

from studyroom_ai.domain.conversation import ConversationTurn
from studyroom_ai.repositories.conversation_store import ConversationMemory


def turn(memory: ConversationMemory, index: int) -> ConversationTurn:
    return ConversationTurn(
        timestamp=memory.now(),
        user_query=f"question {index}",
        response_summary=f"answer {index}",
        succeeded=True,
        correlation_id=f"trace-{index}",
    )


class TestBounds:

    def test_keeps_most_recent_turns(self, clock):
        memory = ConversationMemory(max_turns=10, expiry_seconds=1800, clock=clock)
        for index in range(15):
            memory.record("user-1", turn(memory, index))
            clock.advance(1)

        turns = memory.read("user-1")

        assert len(turns) == 10
        assert turns[0].user_query == "question 5"
        assert turns[-1].user_query == "question 14"

    def test_expired_turns_dropped(self, clock):
        memory = ConversationMemory(max_turns=10, expiry_seconds=1800, clock=clock)
        memory.record("user-1", turn(memory, 1))

        clock.advance(1801)

        assert memory.read("user-1") == []

    def test_turn_kept_just_before_expiry(self, clock):
        memory = ConversationMemory(max_turns=10, expiry_seconds=1800, clock=clock)
        memory.record("user-1", turn(memory, 1))

        clock.advance(1799)

        assert len(memory.read("user-1")) == 1

    def test_only_old_turns_expire(self, clock):
        memory = ConversationMemory(max_turns=10, expiry_seconds=100, clock=clock)
        memory.record("user-1", turn(memory, 1))
        clock.advance(60)
        memory.record("user-1", turn(memory, 2))
        clock.advance(60)

        assert [t.user_query for t in memory.read("user-1")] == ["question 2"]


class TestUsers:

    def test_isolated_per_user(self, clock):
        memory = ConversationMemory(clock=clock)
        memory.record("user-1", turn(memory, 1))
        memory.record("user-2", turn(memory, 2))

        assert [t.user_query for t in memory.read("user-1")] == ["question 1"]
        assert [t.user_query for t in memory.read("user-2")] == ["question 2"]

    def test_clear(self, clock):
        memory = ConversationMemory(clock=clock)
        memory.record("user-1", turn(memory, 1))
        memory.record("user-1", turn(memory, 2))
        memory.record("user-2", turn(memory, 3))

        assert memory.clear("user-1") == 2
        assert memory.read("user-1") == []
        assert len(memory.read("user-2")) == 1

    def test_clear_unknown_user(self, clock):
        assert ConversationMemory(clock=clock).clear("nobody") == 0
