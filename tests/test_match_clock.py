# tests/test_match_clock.py
"""
比賽時鐘、時間軸載入與場次回放測試
"""

import json

import pytest

from actionbet.config import SessionConfig, TimingConfig
from actionbet.core.event_bus import EventBus, EventType
from actionbet.core.scheduler import VirtualScheduler
from actionbet.io_events import iter_ndjson, load_timeline
from actionbet.match_clock import MatchClock
from actionbet.orchestrator import BettingOrchestrator
from actionbet.run_session import AutoDecider, build_session, main, run_fast

CHOICES = [{"text": "Goal", "odds": 6.0}, {"text": "Cleared", "odds": 1.4}]


class FakePause:
    """只提供 is_paused 的暫停狀態"""

    def __init__(self):
        self.paused = False

    def is_paused(self):
        return self.paused


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def pause():
    return FakePause()


def write_timeline(tmp_path, events, extra_lines=()):
    path = tmp_path / "match.ndjson"
    lines = [json.dumps(e) for e in events] + list(extra_lines)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class TestMatchClock:
    """測試比賽時鐘"""

    def test_tick_advances_minute(self, scheduler, bus, pause):
        ticks = []
        bus.subscribe(EventType.MATCH_TICK, ticks.append)
        clock = MatchClock(scheduler, bus, pause, tick_ms=500, length_minutes=10)

        assert clock.start() is True
        scheduler.advance(1500)

        assert clock.minute == 3
        assert [e.data["minute"] for e in ticks] == [1, 2, 3]

    def test_paused_clock_does_not_advance(self, scheduler, bus, pause):
        clock = MatchClock(scheduler, bus, pause, tick_ms=500, length_minutes=10)
        clock.start()
        scheduler.advance(500)

        pause.paused = True
        scheduler.advance(2000)
        assert clock.minute == 1
        assert clock.paused_ticks == 4

        pause.paused = False
        scheduler.advance(500)
        assert clock.minute == 2

    def test_events_delivered_at_their_minute(self, scheduler, bus, pause):
        delivered = []
        timeline = [
            {"time": 2, "type": "GOAL", "team": "home"},
            {"time": 2, "type": "COMMENTARY"},
            {"time": 3, "type": "GOAL", "team": "away"},
        ]
        clock = MatchClock(scheduler, bus, pause, delivered.append, timeline=timeline, length_minutes=10)
        clock.start()

        scheduler.advance(1000)
        assert [e["type"] for e in delivered] == ["GOAL", "COMMENTARY"]
        assert clock.score == {"home": 1, "away": 0}

        scheduler.advance(500)
        assert clock.score == {"home": 1, "away": 1}
        assert clock.delivered == 3

    def test_handler_error_does_not_stop_clock(self, scheduler, bus, pause):
        def broken(event):
            raise RuntimeError("handler crashed")

        clock = MatchClock(scheduler, bus, pause, broken, timeline=[{"time": 1, "type": "GOAL"}],
                           length_minutes=10)
        clock.start()
        scheduler.advance(1000)
        assert clock.minute == 2

    def test_match_ends_at_length(self, scheduler, bus, pause):
        ended = []
        bus.subscribe(EventType.MATCH_ENDED, ended.append)
        clock = MatchClock(scheduler, bus, pause, length_minutes=3)
        clock.start()

        scheduler.run_until_idle()

        assert clock.minute == 3
        assert clock.is_finished() is True
        assert ended[0].data["minute"] == 3
        assert scheduler.pending_count() == 0
        assert clock.start() is False

    def test_stop(self, scheduler, bus, pause):
        clock = MatchClock(scheduler, bus, pause, length_minutes=10)
        clock.start()
        assert clock.start() is False
        clock.stop()
        scheduler.advance(5000)
        assert clock.minute == 0
        assert clock.is_running() is False

    @pytest.mark.parametrize("event", [{"type": "GOAL"}, {"time": "5"}, {"time": True}, "GOAL"])
    def test_add_event_requires_int_time(self, scheduler, bus, pause, event):
        clock = MatchClock(scheduler, bus, pause)
        assert clock.add_event(event) is False

    def test_clock_waits_for_opportunity(self, scheduler, bus):
        """測試投注機會期間比賽時鐘停止"""
        orchestrator = BettingOrchestrator(SessionConfig(), scheduler, bus)
        timeline = [{"time": 2, "type": "NEXT_GOAL_BET", "id": "ng-2", "choices": CHOICES}]
        clock = MatchClock(scheduler, bus, orchestrator.pause, orchestrator.handle_match_event,
                           timeline=timeline, length_minutes=5)
        resolved = []
        bus.subscribe(EventType.OPPORTUNITY_RESOLVED, resolved.append)

        clock.start()
        scheduler.advance(5000)
        assert clock.minute == 2
        assert orchestrator.is_paused() is True

        scheduler.run_until_idle()
        assert clock.minute == 5
        assert clock.paused_ticks >= 19
        assert resolved[0].data["resolution"] == "timeout"
        orchestrator.shutdown()


class TestTimelineLoading:
    """測試時間軸載入"""

    def test_iter_ndjson_skips_bad_lines(self, tmp_path):
        path = write_timeline(
            tmp_path,
            [{"time": 1, "type": "KICK_OFF"}],
            extra_lines=["", "# comment", "{not json", "[1, 2]", '{"time": 2, "type": "GOAL"}'],
        )
        events = list(iter_ndjson(path))
        assert [e["type"] for e in events] == ["KICK_OFF", "GOAL"]

    def test_load_timeline_sorts_and_drops(self, tmp_path):
        path = write_timeline(tmp_path, [
            {"time": 30, "type": "GOAL"},
            {"type": "COMMENTARY"},
            {"time": -1, "type": "COMMENTARY"},
            {"time": 5, "type": "KICK_OFF"},
            {"time": 30, "type": "CORNER_BET"},
        ])
        events = load_timeline(path)
        assert [(e["time"], e["type"]) for e in events] == [(5, "KICK_OFF"), (30, "GOAL"), (30, "CORNER_BET")]

    def test_load_missing_timeline(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_timeline(tmp_path / "missing.ndjson")


class TestSessionRunner:
    """測試場次回放"""

    def short_config(self):
        return SessionConfig(timing=TimingConfig(match_length_minutes=5))

    def timeline(self):
        return [
            {"time": 2, "type": "CORNER_BET", "id": "corner-2", "choices": CHOICES},
            {"time": 3, "type": "GOAL", "team": "home"},
        ]

    def test_run_fast_auto_bet(self):
        summary = run_fast(self.short_config(), self.timeline(), "first", 1000)

        assert summary["minute"] == 5
        assert summary["score"] == {"home": 1, "away": 0}
        assert summary["bets"] == 1
        assert summary["resolutions"] == {"placed": 1}
        assert summary["paused_ticks"] > 0

    def test_run_fast_without_decisions(self):
        summary = run_fast(self.short_config(), self.timeline(), "none", 1000)
        assert summary["bets"] == 0
        assert summary["resolutions"] == {"timeout": 1}

    def test_match_end_shuts_down_session(self):
        scheduler = VirtualScheduler()
        orchestrator, clock, _ = build_session(self.short_config(), scheduler, self.timeline(),
                                               auto_decision="skip", decision_delay_ms=500)
        clock.start()
        scheduler.run_until_idle()

        assert orchestrator.status()["closed"] is True
        assert orchestrator.status()["resolutions"] == {"skipped": 1}
        assert scheduler.pending_count() == 0

    def test_auto_decider_rejects_unknown_mode(self):
        with pytest.raises(ValueError):
            AutoDecider(BettingOrchestrator(), "always")

    def test_auto_decider_cancel(self):
        orchestrator = BettingOrchestrator()
        decider = AutoDecider(orchestrator, "skip", 1000)
        orchestrator.handle_match_event({"id": "a", "type": "CORNER_BET", "choices": CHOICES})

        decider.cancel()
        orchestrator.scheduler.advance(1000)

        assert orchestrator.active_opportunity.id == "a"
        orchestrator.shutdown()


class TestMain:
    """測試命令列入口"""

    @pytest.fixture(autouse=True)
    def isolated(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        for name in ("ACTIONBET_TIMELINE", "ACTIONBET_CONFIG"):
            monkeypatch.setenv(name, "")

    def test_missing_timeline_argument(self):
        assert main(["--fast"]) == 2

    def test_timeline_not_found(self, tmp_path):
        assert main(["--timeline", str(tmp_path / "missing.ndjson"), "--fast"]) == 1

    def test_invalid_config(self, tmp_path):
        timeline = write_timeline(tmp_path, [{"time": 1, "type": "KICK_OFF"}])
        config = tmp_path / "bad.json"
        config.write_text(json.dumps({"default_stake": -1}), encoding="utf-8")
        assert main(["--timeline", str(timeline), "--config", str(config), "--fast"]) == 1

    def test_fast_replay(self, tmp_path):
        timeline = write_timeline(tmp_path, [
            {"time": 1, "type": "KICK_OFF"},
            {"time": 10, "type": "CORNER_BET", "id": "corner-10", "choices": CHOICES},
        ])
        config = tmp_path / "short.yaml"
        config.write_text("timing:\n  match_length_minutes: 20\n", encoding="utf-8")

        assert main([
            "--timeline", str(timeline),
            "--config", str(config),
            "--fast",
            "--auto-decision", "first",
            "--decision-delay-ms", "500",
        ]) == 0
        assert (tmp_path / "data" / "logs").is_dir()
