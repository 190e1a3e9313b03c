"""The switch controller.

A background thread polls the server registry once a second and turns the
stream of classifications into scene switches:

* a classification must repeat ``retry_attempts`` times before it acts,
  unless instant recovery lets a return from Offline through at once;
* per-server override scenes win over the global ones, and while Offline
  the override of the last server that was actually serving is used;
* ``Previous`` restores the last scene picked for Normal/Low, except when a
  different server has taken over, which counts as Normal right away.

Manual actions (chat, control API) go through the same lock as the tick.
No lock is held across OBS or stats-server I/O.
"""
from __future__ import annotations
from typing import Any, Callable, Optional
import logging, threading, time

from .commands import ChatCommand
from .config import Config
from .registry import ServerRegistry
from .servers import BitrateInfo, StreamServer
from .triggers import SwitchType

log = logging.getLogger(__name__)

TICK_INTERVAL_SEC = 1.0
STARTUP_GRACE_EXTRA_SEC = 5
REFRESH_RESTORE_DELAY_SEC = 1.0

ANNOUNCEMENTS = {
    SwitchType.NORMAL: "Switched to Live scene (bitrate recovered)",
    SwitchType.LOW: "Switched to Low scene (low bitrate detected)",
    SwitchType.OFFLINE: "Switched to Offline scene",
}


class Switcher:
    def __init__(self, config: Config, host: Any, registry: Optional[ServerRegistry] = None,
                 announce: Optional[Callable[[str], None]] = None,
                 clock: Callable[[], float] = time.monotonic,
                 interval: float = TICK_INTERVAL_SEC,
                 refresh_delay: float = REFRESH_RESTORE_DELAY_SEC):
        self.config = config
        self.host = host
        self.registry = registry or ServerRegistry()
        self.announce = announce
        self._clock = clock
        self._interval = interval
        self._refresh_delay = refresh_delay

        self._lock = threading.Lock()
        self._check_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._refresh_timer: Optional[threading.Timer] = None
        self._restore_to = ""

        now = clock()
        self._prev_type = SwitchType.OFFLINE
        self._same_type_count = 0
        self._same_type_start = now
        self._offline_start = now
        self._stream_start: Optional[float] = None
        self._last_server_name = ""
        self._prev_scene = config.scenes.normal
        self._on_starting_scene = False
        self._streaming = False
        self._recording = False
        self._current_scene = ""
        self._last_info = BitrateInfo()

        # RIST stale-frame auto-fix
        self._stale_fix_pending = False
        self._stale_fix_trigger_at = 0.0

        self.reload_servers()

    # ------------------------------------------------------------------ lifecycle
    def reload_servers(self) -> None:
        self.registry.reload(self.config.servers)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self.sync_outputs()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="switcher")
        self._thread.start()
        log.info("Switcher started (%d servers)", len(self.registry))

    def stop(self) -> None:
        self._stop.set()
        with self._lock:
            timer, self._refresh_timer = self._refresh_timer, None
            self._restore_to = ""
        if timer is not None:
            timer.cancel()
        t, self._thread = self._thread, None
        if t is not None and t is not threading.current_thread():
            t.join()
        log.info("Switcher stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.tick()
            except Exception:
                log.exception("Switch check failed")

    def tick(self) -> None:
        cfg = self.config
        if not cfg.enabled:
            return
        with self._lock:
            streaming = self._streaming
        if cfg.only_when_streaming and not streaming:
            return

        current = self.host.current_scene_name()
        if current:
            with self._lock:
                self._current_scene = current
        if not self.is_scene_switchable(current):
            return
        self.do_switch_check(current)

    def is_scene_switchable(self, scene: str) -> bool:
        if not scene:
            return False
        cfg = self.config
        if scene in (cfg.scenes.normal, cfg.scenes.low, cfg.scenes.offline):
            return True
        if scene in self.registry.override_scene_names():
            return True
        with self._lock:
            starting = self._on_starting_scene
        if starting and scene == cfg.optional_scenes.starting:
            return cfg.options.switch_from_starting_to_live
        return False

    # ------------------------------------------------------------------ decision
    def do_switch_check(self, current_scene: Optional[str] = None) -> Optional[str]:
        """Run one poll + decision. Returns the scene switched to, if any."""
        with self._check_lock:
            kind, info, active = self.registry.poll_active(self.config.thresholds)
            if current_scene is None:
                current_scene = self.host.current_scene_name()

            with self._lock:
                target, effective, stop_stream = self._decide(kind, info, active)
                self._check_stale_frame_fix(effective, info)

            if stop_stream:
                log.info("Offline timeout reached (%d min), stopping stream",
                         self.config.options.offline_timeout_minutes)
                self.host.stop_streaming()

            if not target or target == current_scene:
                return None
            if not self.host.switch_to_scene(target):
                return None
            with self._lock:
                self._current_scene = target
            log.info("%s -> %s", effective.name, target)
            self._announce_switch(effective)
            return target

    def _decide(self, kind: SwitchType, info: BitrateInfo,
                active: Optional[StreamServer]) -> tuple[Optional[str], SwitchType, bool]:
        # caller holds self._lock
        cfg = self.config
        opts = cfg.options
        now = self._clock()
        self._last_info = info if active is not None else BitrateInfo()

        if self._on_starting_scene and opts.switch_from_starting_to_live \
                and kind in (SwitchType.NORMAL, SwitchType.LOW):
            self._on_starting_scene = False

        force = cfg.instant_recover and self._prev_type is SwitchType.OFFLINE \
            and kind is not SwitchType.OFFLINE

        if kind is SwitchType.PREVIOUS and active is not None and active.name != self._last_server_name:
            log.info("Failover %r -> %r", self._last_server_name, active.name)
            kind = SwitchType.NORMAL
            force = True

        if kind is self._prev_type:
            self._same_type_count += 1
        else:
            self._prev_type = kind
            self._same_type_count = 0
            self._same_type_start = now
            if kind is SwitchType.OFFLINE:
                self._offline_start = now

        if self._same_type_count < cfg.retry_attempts and not force:
            return None, kind, False
        self._same_type_count = 0

        # right after going live: snooze the offline timer, the counters above still advanced
        if not cfg.only_when_streaming and self._stream_start is not None \
                and now - self._stream_start <= cfg.retry_attempts + STARTUP_GRACE_EXTRA_SEC:
            self._same_type_start = now
            if kind is SwitchType.OFFLINE:
                self._offline_start = now

        stop_stream = self._offline_timeout_reached(now)

        if kind is SwitchType.PREVIOUS:
            target = self._prev_scene or cfg.scenes.normal
        else:
            server = active if kind is not SwitchType.OFFLINE else self.registry.find(self._last_server_name)
            target = self._scene_for(kind, server)

        if kind in (SwitchType.NORMAL, SwitchType.LOW):
            self._prev_scene = target
        if kind is not SwitchType.OFFLINE and active is not None:
            self._last_server_name = active.name

        if self._on_starting_scene and opts.switch_from_starting_to_live and kind is SwitchType.OFFLINE:
            return None, kind, stop_stream
        if not target:
            log.warning("No scene configured for %s", kind.name)
            return None, kind, stop_stream
        return target, kind, stop_stream

    def _offline_timeout_reached(self, now: float) -> bool:
        minutes = self.config.options.offline_timeout_minutes
        if self._prev_type is not SwitchType.OFFLINE or minutes <= 0 or not self._streaming:
            return False
        if now - self._offline_start <= minutes * 60:
            return False
        self._offline_start = now
        return True

    def _scene_for(self, kind: SwitchType, server: Optional[StreamServer]) -> str:
        scenes = self.config.scenes
        o = server.override_scenes if server is not None else None
        if kind is SwitchType.LOW:
            return (o.low if o else "") or scenes.low
        if kind is SwitchType.OFFLINE:
            return (o.offline if o else "") or scenes.offline
        return (o.normal if o else "") or scenes.normal

    def _check_stale_frame_fix(self, kind: SwitchType, info: BitrateInfo) -> None:
        """Extension point for the RIST stale-frame auto-fix.

        ``options.rist_stale_fix_delay_sec`` and the pending/trigger-time pair
        are kept, but no fix is applied yet.
        """
        if self.config.options.rist_stale_fix_delay_sec <= 0:
            self._stale_fix_pending = False
            self._stale_fix_trigger_at = 0.0

    # ------------------------------------------------------------------ chat output
    def _say(self, message: str) -> None:
        if self.announce is None or not message:
            return
        try:
            self.announce(message)
        except Exception as e:
            log.warning("Chat announcement failed: %s", e)

    def _announce_switch(self, kind: SwitchType) -> None:
        if self.config.chat.announce_scene_changes and kind in ANNOUNCEMENTS:
            self._say(ANNOUNCEMENTS[kind])

    # ------------------------------------------------------------------ manual actions
    def _manual_switch(self, scene: str, label: str) -> bool:
        if not scene:
            return False
        if not self.host.switch_to_scene(scene):
            return False
        with self._lock:
            self._current_scene = scene
        log.info("Manual switch to %s scene", label)
        return True

    def switch_to_live(self) -> bool:
        return self._manual_switch(self.config.scenes.normal, "Live")

    def switch_to_low(self) -> bool:
        return self._manual_switch(self.config.scenes.low, "Low")

    def switch_to_brb(self) -> bool:
        return self._manual_switch(self.config.scenes.offline, "BRB/Offline")

    def switch_to_privacy(self) -> bool:
        return self._manual_switch(self.config.optional_scenes.privacy, "Privacy")

    def switch_to_ending(self) -> bool:
        return self._manual_switch(self.config.optional_scenes.ending, "Ending")

    def switch_to_starting(self) -> bool:
        if not self._manual_switch(self.config.optional_scenes.starting, "Starting"):
            return False
        with self._lock:
            self._on_starting_scene = True
        return True

    def switch_to_scene_by_name(self, name: str) -> bool:
        found = self.host.find_scene_case_insensitive(name) if name else None
        if not found:
            log.warning("Scene not found: %s", name)
            return False
        return self._manual_switch(found, found)

    def _bounce_through(self, scene: str) -> bool:
        """Cut to ``scene`` and come back to the current one after the refresh delay."""
        if not scene:
            return False
        back = self.host.current_scene_name()
        if not self.host.switch_to_scene(scene):
            return False
        with self._lock:
            self._current_scene = scene
            old, self._refresh_timer = self._refresh_timer, None
            if old is not None and self._restore_to:
                # still inside an earlier bounce; return to where that one started
                back = self._restore_to
            self._restore_to = ""
            if back and back != scene and not self._stop.is_set():
                t = threading.Timer(self._refresh_delay, self._restore_scene, args=(back,))
                t.daemon = True
                self._refresh_timer = t
                self._restore_to = back
            else:
                t = None
        if old is not None:
            old.cancel()
        if t is not None:
            t.start()
        return True

    def _restore_scene(self, scene: str) -> None:
        with self._lock:
            # a newer bounce or stop() replaced this timer
            if self._refresh_timer is not threading.current_thread() or self._stop.is_set():
                return
            self._refresh_timer = None
            self._restore_to = ""
        if self.host.switch_to_scene(scene):
            with self._lock:
                self._current_scene = scene
            log.info("Restored scene after refresh: %s", scene)

    def refresh_scene(self) -> bool:
        return self._bounce_through(self.config.optional_scenes.refresh)

    def fix_stream(self) -> bool:
        # without a refresh scene, bounce through the BRB scene
        return self._bounce_through(self.config.optional_scenes.refresh or self.config.scenes.offline)

    def trigger_switch(self) -> Optional[str]:
        log.info("Manual trigger of switch check")
        return self.do_switch_check()

    def start_stream(self) -> bool:
        if self.host.is_streaming_active():
            return False
        return self.host.start_streaming()

    def stop_stream(self) -> bool:
        if not self.host.is_streaming_active():
            return False
        return self.host.stop_streaming()

    def handle_command(self, cmd: ChatCommand, args: str = "") -> Optional[str]:
        """Run a chat/RPC command; returns the reply line to post, if any."""
        announce = self.config.chat.announce_scene_changes

        def done(ok: bool, text: str) -> Optional[str]:
            return text if ok and announce else None

        if cmd is ChatCommand.LIVE:
            return done(self.switch_to_live(), "Switched to Live scene")
        if cmd is ChatCommand.LOW:
            return done(self.switch_to_low(), "Switched to Low scene")
        if cmd is ChatCommand.BRB:
            return done(self.switch_to_brb(), "Switched to BRB scene")
        if cmd is ChatCommand.REFRESH:
            return done(self.refresh_scene(), "Refreshing scene...")
        if cmd is ChatCommand.FIX:
            return done(self.fix_stream(), "Attempting to fix stream...")
        if cmd is ChatCommand.TRIGGER:
            self.trigger_switch()
            return done(True, "Triggered switch check")
        if cmd is ChatCommand.STATUS:
            return self.get_status_string()
        if cmd is ChatCommand.SWITCH_SCENE:
            if not args:
                word = self.config.chat.commands.get("switch_scene", "!ss")
                return f"Usage: {word} <scene_name>"
            if self.switch_to_scene_by_name(args):
                return done(True, f"Switched to scene: {args}")
            return f"Scene not found: {args}"
        if cmd is ChatCommand.START:
            return "Stream started" if self.start_stream() else "Stream is already running"
        if cmd is ChatCommand.STOP:
            return "Stream stopped" if self.stop_stream() else "Stream is not running"
        return None

    # ------------------------------------------------------------------ host events
    def on_streaming_started(self) -> None:
        now = self._clock()
        with self._lock:
            self._streaming = True
            self._stream_start = now
            self._same_type_start = now
            self._offline_start = now
            recording = self._recording
        log.info("Streaming started")

        opts = self.config.options
        starting = self.config.optional_scenes.starting
        if opts.switch_to_starting_on_stream_start and starting:
            self.switch_to_starting()
        if opts.record_while_streaming and not recording:
            self.host.start_recording()

    def on_streaming_stopped(self) -> None:
        with self._lock:
            self._streaming = False
            self._stream_start = None
            self._on_starting_scene = False
            recording = self._recording
        log.info("Streaming stopped")

        if self.config.options.record_while_streaming and recording:
            self.host.stop_recording()
        ending = self.config.optional_scenes.ending
        if ending:
            self.host.switch_to_scene(ending)

    def on_recording_started(self) -> None:
        with self._lock:
            self._recording = True
        log.info("Recording started")

    def on_recording_stopped(self) -> None:
        with self._lock:
            self._recording = False
        log.info("Recording stopped")

    def on_scene_changed(self, name: str) -> None:
        with self._lock:
            self._current_scene = name or ""

    def sync_outputs(self) -> None:
        """Re-read the stream/record state from OBS.

        Used at start-up and after the event connection comes back, so a start
        or stop that happened while events were down is not missed. Only the
        flags and timers are updated; the starting/ending scene hooks do not run.
        """
        streaming = self.host.is_streaming_active()
        recording = self.host.is_recording_active()
        now = self._clock()
        with self._lock:
            changed = streaming != self._streaming
            self._streaming = streaming
            self._recording = recording
            if streaming and self._stream_start is None:
                self._stream_start = now
            elif not streaming:
                self._stream_start = None
                self._on_starting_scene = False
        if changed:
            log.info("Stream state resynced: %s", "live" if streaming else "not live")

    # ------------------------------------------------------------------ read surface
    def get_current_bitrate(self) -> BitrateInfo:
        with self._lock:
            return self._last_info

    @property
    def is_streaming(self) -> bool:
        with self._lock:
            return self._streaming

    @property
    def current_scene(self) -> str:
        with self._lock:
            return self._current_scene

    @property
    def last_server_name(self) -> str:
        with self._lock:
            return self._last_server_name

    @property
    def previous_scene(self) -> str:
        with self._lock:
            return self._prev_scene

    @property
    def on_starting_scene(self) -> bool:
        with self._lock:
            return self._on_starting_scene

    def get_status_string(self) -> str:
        cfg = self.config
        with self._lock:
            streaming = self._streaming
            info = self._last_info
        if not cfg.enabled:
            return "Disabled"
        if cfg.only_when_streaming and not streaming:
            return "Waiting for stream"
        if len(self.registry) == 0:
            return "No servers configured"
        if info.is_online:
            status = "Online"
            if info.server_name:
                status += f" ({info.server_name})"
            if info.message:
                status += f" - {info.message}"
            return status
        return "Offline"

    def status_snapshot(self) -> dict[str, Any]:
        with self._lock:
            info = self._last_info
            snap = {
                "currentScene": self._current_scene,
                "isStreaming": self._streaming,
                "isRecording": self._recording,
                "switchType": self._prev_type.value,
                "lastServer": self._last_server_name,
            }
        snap.update({
            "bitrateKbps": info.bitrate_kbps,
            "rttMs": info.rtt_ms,
            "isOnline": info.is_online,
            "serverName": info.server_name,
            "statusMessage": info.message,
            "status": self.get_status_string(),
            "enabled": self.config.enabled,
        })
        return snap
