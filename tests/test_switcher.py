"""Switch controller: hysteresis, failover, overrides and the manual surface."""

import time

import pytest

from bitrate_guard.commands import ChatCommand
from bitrate_guard.config import Options, OptionalScenes
from bitrate_guard.registry import ServerRegistry
from bitrate_guard.switcher import Switcher
from bitrate_guard.triggers import SwitchType

from conftest import make_config, server


def wait_for(cond, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if cond():
            return True
        time.sleep(0.01)
    return cond()


class TestScenarios:
    """End-to-end ticks over a BELABOX-style stats endpoint."""

    def test_low_bitrate_switches_to_low(self, http, host, make_switcher):
        http.belabox("http://a", "live", 500)
        sw = make_switcher(make_config([server("A", "http://a")], retry_attempts=1))

        sw.tick()

        assert host.switches == ["Low"]
        assert sw.said == ["Switched to Low scene (low bitrate detected)"]

    def test_no_signal_switches_to_offline(self, http, host, make_switcher):
        http.belabox("http://a", "live", 0)
        sw = make_switcher(make_config([server("A", "http://a")], retry_attempts=1))

        sw.tick()

        assert host.switches == ["Offline"]
        assert sw.said == ["Switched to Offline scene"]

    def test_failover_to_backup_uses_global_scene(self, http, host, make_switcher):
        host.scenes.append("A-Live")
        http.belabox("http://a", "live", 5000)
        http.belabox("http://b", "live", 5000)
        sw = make_switcher(make_config([server("A", "http://a", priority=0, normal="A-Live"),
                                        server("B", "http://b", priority=1)], retry_attempts=2))

        sw.tick()
        assert host.current == "A-Live"
        assert sw.last_server_name == "A"

        http.belabox("http://a", "live", 0)
        sw.tick()
        assert host.current == "A-Live"
        sw.tick()

        assert host.current == "Live"
        assert sw.last_server_name == "B"

    def test_unmanaged_scene_is_left_alone(self, http, host, make_switcher):
        host.scenes.append("Just Chatting")
        host.current = "Just Chatting"
        http.belabox("http://a", "live", 500)
        sw = make_switcher(make_config([server("A", "http://a")]))

        sw.tick()

        assert host.switches == []


class TestHysteresis:
    def test_switch_waits_for_the_streak(self, http, host, make_switcher):
        http.belabox("http://a", "live", 5000)
        sw = make_switcher(make_config([server("A", "http://a")], retry_attempts=3,
                                       instant_recover=False))
        for _ in range(4):
            sw.tick()
        assert host.switches == []

        http.belabox("http://a", "live", 500)
        for _ in range(3):
            sw.tick()
            assert host.switches == []
        sw.tick()

        assert host.switches == ["Low"]

    def test_flapping_never_switches(self, http, host, make_switcher):
        sw = make_switcher(make_config([server("A", "http://a")], retry_attempts=2,
                                       instant_recover=False))
        for kbps in (5000, 500, 5000, 500, 5000, 500):
            http.belabox("http://a", "live", kbps)
            sw.tick()
        assert host.switches == []

    def test_instant_recover_from_offline(self, http, host, make_switcher):
        host.current = "Offline"
        http.belabox("http://a", "live", 5000)
        sw = make_switcher(make_config([server("A", "http://a")], retry_attempts=5))

        sw.tick()

        assert host.switches == ["Live"]
        assert sw.said == ["Switched to Live scene (bitrate recovered)"]

    def test_without_instant_recover_recovery_is_debounced(self, http, host, make_switcher):
        host.current = "Offline"
        http.belabox("http://a", "live", 5000)
        sw = make_switcher(make_config([server("A", "http://a")], retry_attempts=2,
                                       instant_recover=False))

        sw.tick()
        sw.tick()
        assert host.switches == []
        sw.tick()
        assert host.switches == ["Live"]


class TestPreviousAndOverrides:
    def test_previous_restores_remembered_scene(self, http, host, make_switcher):
        http.belabox("http://a", "live", 500)
        sw = make_switcher(make_config([server("A", "http://a")], retry_attempts=1))
        sw.tick()
        assert sw.previous_scene == "Low"

        host.current = "Offline"
        http.belabox("http://a", "live", 1)
        sw.tick()
        sw.tick()

        assert host.current == "Low"
        # Previous is never announced
        assert sw.said == ["Switched to Low scene (low bitrate detected)"]

    def test_previous_from_another_server_is_forced_normal(self, http, host, make_switcher):
        host.scenes.append("A-Live")
        http.belabox("http://a", "live", 5000)
        sw = make_switcher(make_config([server("A", "http://a", normal="A-Live"),
                                        server("B", "http://b", priority=1)], retry_attempts=5))
        sw.tick()
        assert host.current == "A-Live"

        http.belabox("http://a", "live", 0)
        http.belabox("http://b", "live", 1)
        sw.tick()

        assert host.current == "Live"
        assert sw.last_server_name == "B"
        assert sw.status_snapshot()["switchType"] == SwitchType.NORMAL.value

    def test_offline_uses_last_server_override(self, http, host, make_switcher):
        host.scenes.append("A-Off")
        http.belabox("http://a", "live", 5000)
        sw = make_switcher(make_config([server("A", "http://a", offline="A-Off"),
                                        server("B", "http://b", priority=1)], retry_attempts=1))
        sw.tick()
        assert sw.last_server_name == "A"

        http.belabox("http://a", "live", 0)
        sw.tick()
        sw.tick()

        assert host.current == "A-Off"
        assert sw.last_server_name == "A"

    def test_override_scene_is_governable(self, http, host, make_switcher):
        host.scenes += ["A-Live", "A-Low"]
        host.current = "A-Live"
        http.belabox("http://a", "live", 500)
        sw = make_switcher(make_config([server("A", "http://a", normal="A-Live", low="A-Low")],
                                       retry_attempts=1))

        sw.tick()

        assert host.current == "A-Low"

    def test_missing_target_scene_keeps_state(self, http, host, make_switcher):
        host.scenes.remove("Low")
        http.belabox("http://a", "live", 500)
        sw = make_switcher(make_config([server("A", "http://a")], retry_attempts=1))

        assert sw.do_switch_check() is None
        assert host.current == "Live"
        assert sw.said == []


class TestOfflineTimeout:
    def test_stops_stream_once_after_timeout(self, host, clock, make_switcher):
        cfg = make_config([server("A", "http://a")], retry_attempts=1, only_when_streaming=True,
                          options=Options(offline_timeout_minutes=1))
        sw = make_switcher(cfg)
        host.streaming = True
        sw.on_streaming_started()

        sw.tick()
        assert host.current == "Offline"
        assert host.stream_stops == 0

        clock.advance(61)
        sw.tick()
        assert host.stream_stops == 1
        sw.tick()
        assert host.stream_stops == 1

    def test_startup_grace_snoozes_the_timer(self, host, clock, make_switcher):
        cfg = make_config([server("A", "http://a")], retry_attempts=1,
                          options=Options(offline_timeout_minutes=1))
        sw = make_switcher(cfg)
        host.streaming = True
        sw.on_streaming_started()

        clock.advance(5)
        sw.tick()
        clock.advance(57)
        sw.tick()
        assert host.stream_stops == 0

        clock.advance(4)
        sw.tick()
        assert host.stream_stops == 1

    def test_no_timeout_when_not_streaming(self, host, clock, make_switcher):
        sw = make_switcher(make_config([server("A", "http://a")], retry_attempts=1,
                                       options=Options(offline_timeout_minutes=1)))
        sw.tick()
        clock.advance(3600)
        sw.tick()
        assert host.stream_stops == 0


class TestStartingScene:
    def config(self, promote=True):
        return make_config([server("A", "http://a")], retry_attempts=1,
                           optional_scenes=OptionalScenes(starting="Starting"),
                           options=Options(switch_to_starting_on_stream_start=True,
                                           switch_from_starting_to_live=promote))

    def test_waits_on_starting_then_goes_live(self, http, host, make_switcher):
        host.scenes.append("Starting")
        sw = make_switcher(self.config())
        sw.on_streaming_started()
        assert host.current == "Starting"
        assert sw.on_starting_scene

        sw.tick()
        sw.tick()
        assert host.current == "Starting"

        http.belabox("http://a", "live", 5000)
        sw.tick()
        assert host.current == "Live"
        assert not sw.on_starting_scene

    def test_starting_scene_not_governed_without_promotion(self, http, host, make_switcher):
        host.scenes.append("Starting")
        sw = make_switcher(self.config(promote=False))
        sw.on_streaming_started()

        http.belabox("http://a", "live", 5000)
        sw.tick()

        assert host.current == "Starting"


class TestStreamEvents:
    def test_recording_follows_stream(self, host, make_switcher):
        host.scenes.append("Ending")
        cfg = make_config(optional_scenes=OptionalScenes(ending="Ending"),
                          options=Options(record_while_streaming=True))
        sw = make_switcher(cfg)

        sw.on_streaming_started()
        assert host.record_starts == 1
        assert sw.is_streaming
        sw.on_recording_started()

        sw.on_streaming_stopped()
        assert host.record_stops == 1
        assert host.current == "Ending"
        assert not sw.is_streaming

    def test_scene_changed_event(self, make_switcher):
        sw = make_switcher(make_config())
        sw.on_scene_changed("Low")
        assert sw.current_scene == "Low"

    def test_sync_outputs_catches_missed_transitions(self, http, host, make_switcher):
        host.scenes.append("Ending")
        http.belabox("http://a", "live", 500)
        sw = make_switcher(make_config([server("A", "http://a")], only_when_streaming=True,
                                       optional_scenes=OptionalScenes(ending="Ending")))
        sw.tick()
        assert host.switches == []

        # stream went live while OBS events were down
        host.streaming = True
        host.recording = True
        sw.sync_outputs()
        assert sw.is_streaming
        assert sw.status_snapshot()["isRecording"] is True

        sw.tick()
        assert host.switches == ["Low"]

        host.streaming = False
        sw.sync_outputs()
        assert not sw.is_streaming
        assert sw.get_status_string() == "Waiting for stream"
        # a resync only updates state; it does not cut to the ending scene
        assert host.switches == ["Low"]


class TestManual:
    def test_refresh_bounces_and_restores(self, http, host, clock):
        host.scenes.append("Refresh")
        cfg = make_config(optional_scenes=OptionalScenes(refresh="Refresh"))
        sw = Switcher(cfg, host, ServerRegistry(http=http), clock=clock, refresh_delay=0.05)

        assert sw.refresh_scene()
        assert host.switches[0] == "Refresh"
        assert wait_for(lambda: host.current == "Live")

    def test_second_refresh_still_restores_original_scene(self, http, host, clock):
        host.scenes.append("Refresh")
        cfg = make_config(optional_scenes=OptionalScenes(refresh="Refresh"))
        sw = Switcher(cfg, host, ServerRegistry(http=http), clock=clock, refresh_delay=0.1)

        assert sw.refresh_scene()
        assert sw.refresh_scene()

        assert wait_for(lambda: host.current == "Live")
        assert host.switches == ["Refresh", "Live"]

    def test_stop_cancels_pending_restore(self, http, host, clock):
        host.scenes.append("Refresh")
        cfg = make_config(optional_scenes=OptionalScenes(refresh="Refresh"))
        sw = Switcher(cfg, host, ServerRegistry(http=http), clock=clock, refresh_delay=0.2)

        sw.refresh_scene()
        sw.stop()
        time.sleep(0.3)

        assert host.current == "Refresh"

    def test_fix_without_refresh_scene_uses_offline(self, http, host, clock):
        sw = Switcher(make_config(), host, ServerRegistry(http=http), clock=clock, refresh_delay=0.05)
        assert sw.fix_stream()
        assert host.switches[0] == "Offline"
        assert wait_for(lambda: host.current == "Live")

    def test_refresh_without_scene_is_noop(self, host, make_switcher):
        assert not make_switcher(make_config()).refresh_scene()
        assert host.switches == []

    def test_switch_by_name_is_case_insensitive(self, host, make_switcher):
        sw = make_switcher(make_config())
        assert sw.switch_to_scene_by_name("offline")
        assert host.current == "Offline"
        assert not sw.switch_to_scene_by_name("Nope")

    def test_privacy_without_scene_is_noop(self, host, make_switcher):
        assert not make_switcher(make_config()).switch_to_privacy()


class TestHandleCommand:
    @pytest.fixture
    def sw(self, make_switcher):
        return make_switcher(make_config())

    def test_scene_commands(self, sw, host):
        assert sw.handle_command(ChatCommand.LOW) == "Switched to Low scene"
        assert sw.handle_command(ChatCommand.BRB) == "Switched to BRB scene"
        assert sw.handle_command(ChatCommand.LIVE) == "Switched to Live scene"
        assert host.switches == ["Low", "Offline", "Live"]

    def test_quiet_when_announcements_off(self, sw, host):
        sw.config.chat.announce_scene_changes = False
        assert sw.handle_command(ChatCommand.LOW) is None
        assert host.current == "Low"

    def test_switch_scene(self, sw, host):
        assert sw.handle_command(ChatCommand.SWITCH_SCENE, "") == "Usage: !ss <scene_name>"
        assert sw.handle_command(ChatCommand.SWITCH_SCENE, "low") == "Switched to scene: low"
        assert sw.handle_command(ChatCommand.SWITCH_SCENE, "Nope") == "Scene not found: Nope"
        assert host.current == "Low"

    def test_start_and_stop(self, sw, host):
        assert sw.handle_command(ChatCommand.START) == "Stream started"
        assert sw.handle_command(ChatCommand.START) == "Stream is already running"
        assert sw.handle_command(ChatCommand.STOP) == "Stream stopped"
        assert sw.handle_command(ChatCommand.STOP) == "Stream is not running"
        assert (host.stream_starts, host.stream_stops) == (1, 1)

    def test_status(self, sw):
        assert sw.handle_command(ChatCommand.STATUS) == "No servers configured"

    def test_none_is_ignored(self, sw):
        assert sw.handle_command(ChatCommand.NONE) is None


class TestStatus:
    def test_disabled(self, make_switcher):
        assert make_switcher(make_config(enabled=False)).get_status_string() == "Disabled"

    def test_waiting_for_stream(self, make_switcher):
        sw = make_switcher(make_config([server("A", "http://a")], only_when_streaming=True))
        assert sw.get_status_string() == "Waiting for stream"

    def test_online_and_offline(self, http, make_switcher):
        http.belabox("http://a", "live", 5000, rtt=42)
        sw = make_switcher(make_config([server("A", "http://a")]))
        sw.tick()
        assert sw.get_status_string() == "Online (A) - 5000 kbps, 42 ms"
        assert sw.get_current_bitrate().bitrate_kbps == 5000

        http.belabox("http://a", "live", 0)
        sw.tick()
        assert sw.get_status_string() == "Offline"

    def test_announce_failure_is_contained(self, http, host, clock):
        def boom(_msg):
            raise RuntimeError("chat down")

        http.belabox("http://a", "live", 500)
        sw = Switcher(make_config([server("A", "http://a")]), host, ServerRegistry(http=http),
                      announce=boom, clock=clock)
        sw.tick()
        assert host.current == "Low"


class TestLifecycle:
    def test_worker_ticks_until_stopped(self, http, host, clock):
        http.belabox("http://a", "live", 500)
        sw = Switcher(make_config([server("A", "http://a")]), host, ServerRegistry(http=http),
                      clock=clock, interval=0.01)
        sw.start()
        try:
            assert sw.running
            assert wait_for(lambda: host.current == "Low")
        finally:
            sw.stop()
        assert not sw.running

    def test_disabled_does_nothing(self, http, host, make_switcher):
        http.belabox("http://a", "live", 500)
        sw = make_switcher(make_config([server("A", "http://a")], enabled=False))
        sw.tick()
        assert host.switches == []
