# tests/test_opportunity_queue.py
"""
OpportunityQueue 單元測試

- 優先級排序、同優先級先到先出
- 同 ID 升級替換
- 過期丟棄
"""

import pytest

from actionbet.opportunity import Opportunity
from actionbet.opportunity_queue import DiscardReason, OpportunityQueue, should_replace


def make_opportunity(opportunity_id, priority=1, event_type="NEXT_GOAL_BET"):
    return Opportunity(id=opportunity_id, event_type=event_type, description=opportunity_id, priority=priority)


@pytest.fixture
def queue():
    return OpportunityQueue(staleness_ms=30000)


class TestShouldReplace:
    """測試替換判斷"""

    @pytest.mark.parametrize("current,incoming,expected", [
        (1, 3, True),
        (1, 1, False),
        (3, 1, False),
        (0, 1, True),
    ])
    def test_strictly_higher_replaces(self, current, incoming, expected):
        assert should_replace(make_opportunity("a", current), make_opportunity("b", incoming)) is expected

    def test_method_matches_function(self, queue):
        assert queue.should_replace(make_opportunity("a", 1), make_opportunity("b", 2)) is True


class TestOrdering:
    """測試出隊順序"""

    def test_fifo_among_equal_priority(self, queue):
        queue.enqueue(make_opportunity("a"), now=0)
        queue.enqueue(make_opportunity("b"), now=10)
        queue.enqueue(make_opportunity("c"), now=20)

        assert [queue.dequeue(now=30).opportunity.id for _ in range(3)] == ["a", "b", "c"]

    def test_highest_priority_first(self, queue):
        queue.enqueue(make_opportunity("low", 1), now=0)
        queue.enqueue(make_opportunity("high", 9), now=10)
        queue.enqueue(make_opportunity("mid", 5), now=20)

        assert queue.ids() == ["high", "mid", "low"]
        assert queue.dequeue(now=30).opportunity.id == "high"
        assert queue.peek().id == "mid"

    def test_same_arrival_time_uses_insertion_order(self, queue):
        queue.enqueue(make_opportunity("first"), now=100)
        queue.enqueue(make_opportunity("second"), now=100)
        assert queue.dequeue(now=100).opportunity.id == "first"

    def test_empty_dequeue(self, queue):
        result = queue.dequeue(now=0)
        assert result.opportunity is None
        assert result.discarded == []
        assert queue.peek() is None


class TestDeduplication:
    """測試同 ID 去重"""

    def test_duplicate_same_priority_ignored(self, queue):
        assert queue.enqueue(make_opportunity("a", 1), now=0) is True
        assert queue.enqueue(make_opportunity("a", 1), now=5) is False
        assert len(queue) == 1

    def test_higher_priority_upgrades_in_place(self, queue):
        """測試升級替換保留原本順位"""
        queue.enqueue(make_opportunity("a", 1), now=0)
        queue.enqueue(make_opportunity("b", 2), now=5)

        upgraded = make_opportunity("a", 2, event_type="CARD_BET")
        assert queue.enqueue(upgraded, now=10) is True

        assert len(queue) == 2
        assert upgraded.queued_at == 0
        first = queue.dequeue(now=20).opportunity
        assert first.id == "a"
        assert first.event_type == "CARD_BET"

    def test_contains(self, queue):
        queue.enqueue(make_opportunity("a"), now=0)
        assert "a" in queue
        assert "b" not in queue


class TestStaleness:
    """測試過期丟棄"""

    def test_stale_opportunities_discarded(self, queue):
        queue.enqueue(make_opportunity("old", 9), now=0)
        queue.enqueue(make_opportunity("fresh", 1), now=20000)

        result = queue.dequeue(now=31000)

        assert result.opportunity.id == "fresh"
        assert [(o.id, r) for o, r in result.discarded] == [("old", DiscardReason.STALE)]
        assert len(queue) == 0

    def test_boundary_is_not_stale(self, queue):
        queue.enqueue(make_opportunity("a"), now=0)
        assert queue.dequeue(now=30000).opportunity.id == "a"

    def test_all_stale(self, queue):
        queue.enqueue(make_opportunity("a"), now=0)
        queue.enqueue(make_opportunity("b"), now=1)
        result = queue.dequeue(now=100000)
        assert result.opportunity is None
        assert len(result.discarded) == 2

    def test_staleness_disabled(self):
        queue = OpportunityQueue(staleness_ms=None)
        queue.enqueue(make_opportunity("a"), now=0)
        assert queue.dequeue(now=10_000_000).opportunity.id == "a"

    def test_dequeue_without_now_skips_staleness(self, queue):
        queue.enqueue(make_opportunity("a"), now=0)
        assert queue.dequeue().opportunity.id == "a"


class TestMaintenance:
    """測試清空、移除、快照"""

    def test_clear(self, queue):
        queue.enqueue(make_opportunity("a"), now=0)
        queue.enqueue(make_opportunity("b"), now=1)
        removed = queue.clear()
        assert [o.id for o in removed] == ["a", "b"]
        assert len(queue) == 0

    def test_remove(self, queue):
        queue.enqueue(make_opportunity("a"), now=0)
        assert queue.remove("a").id == "a"
        assert queue.remove("a") is None

    def test_snapshot(self, queue):
        queue.enqueue(make_opportunity("a", 1), now=0)
        queue.enqueue(make_opportunity("b", 5), now=1)
        snapshot = queue.snapshot()
        assert snapshot[0] == {"id": "b", "event_type": "NEXT_GOAL_BET", "priority": 5, "queued_at": 1}
        assert snapshot[1]["id"] == "a"
