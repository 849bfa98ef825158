# tests/test_event_bus.py
"""
EventBus 單元測試

測試範圍：
- 基本訂閱和發布（FIFO 順序）
- 一次性訂閱
- 取消訂閱
- 事件歷史
- 性能監控
- 循環檢測
- 回調錯誤隔離
"""

import time

import pytest

from actionbet.core.event_bus import Event, EventBus, EventType


def make_event(event_type=EventType.PAUSED, source="test", **data):
    return Event(type=event_type, timestamp=time.time() * 1000, source=source, data=data)


class TestBasicSubscription:
    """測試基本訂閱功能"""

    def test_subscribe_and_publish(self):
        """測試訂閱和發布事件"""
        bus = EventBus()
        received = []

        bus.subscribe(EventType.PAUSED, received.append)
        bus.publish(make_event(EventType.PAUSED, reason="BETTING_OPPORTUNITY"))

        assert len(received) == 1
        assert received[0].type == EventType.PAUSED
        assert received[0].data["reason"] == "BETTING_OPPORTUNITY"

    def test_delivery_order_is_subscription_order(self):
        """測試分發順序等於訂閱順序"""
        bus = EventBus()
        order = []

        bus.subscribe(EventType.RESUMED, lambda e: order.append("first"))
        bus.subscribe(EventType.RESUMED, lambda e: order.append("second"))
        bus.subscribe(EventType.RESUMED, lambda e: order.append("third"))

        bus.publish(make_event(EventType.RESUMED))

        assert order == ["first", "second", "third"]

    def test_duplicate_subscription_ignored(self):
        """測試重複訂閱只接收一次"""
        bus = EventBus()
        received = []

        def handler(event: Event):
            received.append(event)

        bus.subscribe(EventType.PAUSED, handler)
        bus.subscribe(EventType.PAUSED, handler)

        bus.publish(make_event(EventType.PAUSED))

        assert len(received) == 1

    def test_emit_builds_event(self):
        """測試 emit 建立事件並帶上 correlation_id"""
        bus = EventBus()
        received = []
        bus.subscribe(EventType.COUNTDOWN_EXPIRED, received.append)

        event = bus.emit(EventType.COUNTDOWN_EXPIRED, "countdown", {"duration": 10000}, correlation_id="opp-1")

        assert received == [event]
        assert event.correlation_id == "opp-1"
        assert event.source == "countdown"
        assert event.event_id is not None

    def test_emit_without_data(self):
        """測試 emit 不帶 data 時為空字典"""
        bus = EventBus()
        event = bus.emit(EventType.MATCH_ENDED, "test")
        assert event.data == {}


class TestOnceSubscription:
    """測試一次性訂閱功能"""

    def test_subscribe_once(self):
        """測試一次性訂閱只觸發一次"""
        bus = EventBus()
        received = []

        bus.subscribe_once(EventType.BET_PLACED, received.append)

        bus.publish(make_event(EventType.BET_PLACED))
        bus.publish(make_event(EventType.BET_PLACED))

        assert len(received) == 1

    def test_mixed_subscriptions(self):
        """測試混合普通訂閱和一次性訂閱"""
        bus = EventBus()
        normal_received = []
        once_received = []

        bus.subscribe(EventType.BET_PLACED, normal_received.append)
        bus.subscribe_once(EventType.BET_PLACED, once_received.append)

        bus.publish(make_event(EventType.BET_PLACED))
        bus.publish(make_event(EventType.BET_PLACED))

        assert len(normal_received) == 2
        assert len(once_received) == 1


class TestUnsubscribe:
    """測試取消訂閱功能"""

    def test_unsubscribe_normal(self):
        """測試取消普通訂閱"""
        bus = EventBus()
        received = []

        def handler(event: Event):
            received.append(event)

        bus.subscribe(EventType.PAUSED, handler)
        bus.publish(make_event(EventType.PAUSED))

        assert bus.unsubscribe(EventType.PAUSED, handler) is True

        bus.publish(make_event(EventType.PAUSED))
        assert len(received) == 1

    def test_unsubscribe_nonexistent(self):
        """測試取消不存在的訂閱"""
        bus = EventBus()

        def handler(event: Event):
            pass

        assert bus.unsubscribe(EventType.PAUSED, handler) is False

    def test_unsubscribe_during_dispatch(self):
        """測試回調內取消訂閱不影響本次分發"""
        bus = EventBus()
        received = []

        def first(event: Event):
            received.append("first")
            bus.unsubscribe(EventType.RESUMED, second)

        def second(event: Event):
            received.append("second")

        bus.subscribe(EventType.RESUMED, first)
        bus.subscribe(EventType.RESUMED, second)

        bus.publish(make_event(EventType.RESUMED))
        bus.publish(make_event(EventType.RESUMED))

        assert received == ["first", "second", "first"]

    def test_clear_removes_all(self):
        """測試 clear 移除所有訂閱"""
        bus = EventBus()
        bus.subscribe(EventType.PAUSED, lambda e: None)
        bus.subscribe_once(EventType.RESUMED, lambda e: None)

        bus.clear()

        assert bus.get_subscriber_count() == 0


class TestEventHistory:
    """測試事件歷史功能"""

    def test_event_history(self):
        """測試事件歷史記錄（最新的在前）"""
        bus = EventBus()

        bus.publish(make_event(EventType.PAUSED, source="test1"))
        bus.publish(make_event(EventType.RESUMED, source="test2"))

        history = bus.get_history()
        assert len(history) == 2
        assert history[0].source == "test2"
        assert history[1].source == "test1"

    def test_event_history_filter(self):
        """測試事件歷史過濾"""
        bus = EventBus()

        bus.publish(make_event(EventType.PAUSED, source="test1"))
        bus.publish(make_event(EventType.RESUMED, source="test2"))
        bus.publish(make_event(EventType.PAUSED, source="test3"))

        history = bus.get_history(event_type=EventType.PAUSED)
        assert [e.source for e in history] == ["test3", "test1"]

    def test_event_history_bounded(self):
        """測試事件歷史有上限"""
        bus = EventBus(max_history=10)

        for i in range(20):
            bus.publish(make_event(EventType.MATCH_TICK, source=f"test{i}"))

        history = bus.get_history(limit=100)
        assert len(history) == 10
        assert history[0].source == "test19"

    def test_clear_history(self):
        """測試清空事件歷史"""
        bus = EventBus()
        bus.publish(make_event())
        assert len(bus.get_history()) == 1

        bus.clear_history()
        assert len(bus.get_history()) == 0


class TestPerformanceTracking:
    """測試性能監控功能"""

    def test_performance_tracking_enabled(self):
        """測試啟用性能追蹤"""
        bus = EventBus(enable_performance_tracking=True)

        def handler(event: Event):
            time.sleep(0.001)

        bus.subscribe(EventType.COUNTDOWN_UPDATE, handler)
        for _ in range(5):
            bus.publish(make_event(EventType.COUNTDOWN_UPDATE))

        stats = bus.get_performance_stats()
        keys = [k for k in stats if k.startswith(f"{EventType.COUNTDOWN_UPDATE.value}::")]

        assert len(keys) == 1
        assert stats[keys[0]]["count"] == 5
        assert stats[keys[0]]["avg_time"] > 0

    def test_performance_tracking_disabled(self):
        """測試未啟用性能追蹤"""
        bus = EventBus(enable_performance_tracking=False)
        bus.subscribe(EventType.PAUSED, lambda e: None)
        bus.publish(make_event())

        assert bus.get_performance_stats() == {}

    def test_reset_performance_stats(self):
        """測試重置性能統計"""
        bus = EventBus(enable_performance_tracking=True)
        bus.subscribe(EventType.PAUSED, lambda e: None)
        bus.publish(make_event())
        assert len(bus.get_performance_stats()) > 0

        bus.reset_performance_stats()
        assert len(bus.get_performance_stats()) == 0


class TestLoopDetection:
    """測試循環檢測功能"""

    def test_event_loop_detection(self):
        """測試事件循環檢測"""
        bus = EventBus()
        publish_count = [0]

        def handler(event: Event):
            publish_count[0] += 1
            if publish_count[0] < 50:
                bus.publish(make_event(EventType.PAUSED, source="nested"))

        bus.subscribe(EventType.PAUSED, handler)
        bus.publish(make_event(EventType.PAUSED))

        assert publish_count[0] <= bus._max_depth + 1


class TestErrorHandling:
    """測試錯誤處理"""

    def test_callback_exception_does_not_break_bus(self):
        """測試回調拋出異常不會影響其他訂閱者與發布者"""
        bus = EventBus()
        received = []

        def broken(event: Event):
            raise RuntimeError("Test error")

        bus.subscribe(EventType.PAUSE_TIMEOUT_WARNING, broken)
        bus.subscribe(EventType.PAUSE_TIMEOUT_WARNING, received.append)

        bus.publish(make_event(EventType.PAUSE_TIMEOUT_WARNING))

        assert len(received) == 1


class TestSubscriberCount:
    """測試訂閱者計數"""

    def test_get_subscriber_count_specific(self):
        """測試獲取特定事件的訂閱者數量"""
        bus = EventBus()
        bus.subscribe(EventType.PAUSED, lambda e: None)
        bus.subscribe(EventType.PAUSED, lambda e: None)
        bus.subscribe_once(EventType.PAUSED, lambda e: None)

        assert bus.get_subscriber_count(EventType.PAUSED) == 3

    def test_get_subscriber_count_total(self):
        """測試獲取總訂閱者數量"""
        bus = EventBus()

        def handler(event: Event):
            pass

        bus.subscribe(EventType.PAUSED, handler)
        bus.subscribe(EventType.RESUMED, handler)
        bus.subscribe_once(EventType.BET_PLACED, handler)

        assert bus.get_subscriber_count() == 3


class TestEventID:
    """測試事件 ID 生成"""

    def test_event_id_auto_generation(self):
        """測試發布時自動生成事件 ID"""
        bus = EventBus()
        event = make_event()
        assert event.event_id is None

        bus.publish(event)
        assert event.event_id is not None
        assert event.event_id.startswith(EventType.PAUSED.value)

    def test_event_id_preserved(self):
        """測試已有的事件 ID 不被覆寫"""
        bus = EventBus()
        event = make_event()
        event.event_id = "custom-id"
        bus.publish(event)
        assert event.event_id == "custom-id"


@pytest.mark.parametrize("event_type", list(EventType))
def test_event_type_values_are_lowercase(event_type):
    """事件類型值為小寫字串"""
    assert event_type.value == event_type.value.lower()
