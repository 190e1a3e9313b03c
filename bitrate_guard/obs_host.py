"""OBS WebSocket (v5) side of the switcher: scene/stream requests and frontend events."""
from __future__ import annotations
from typing import Any, Callable, Optional
import contextlib, io, logging, socket, threading

from obsws_python import EventClient, ReqClient

log = logging.getLogger(__name__)

OUTPUT_STARTED = "OBS_WEBSOCKET_OUTPUT_STARTED"
OUTPUT_STOPPED = "OBS_WEBSOCKET_OUTPUT_STOPPED"


def _obs_port_open(host: str, port: int, timeout: float = 1.0) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class ObsSceneHost:
    """Scene and output control over one lazily (re)connected ReqClient.

    Calls never raise: a failed request drops the client so the next call
    reconnects, and the caller gets a falsy result.
    """

    def __init__(self, host: str, port: int, password: Optional[str], timeout: int = 5,
                 client_factory: Callable[..., Any] = ReqClient):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self._factory = client_factory
        self._client: Any = None
        self._lock = threading.Lock()

    def _connect(self) -> Any:
        if self._client is not None:
            return self._client
        if self._factory is ReqClient and not _obs_port_open(self.host, self.port):
            return None
        sink = io.StringIO()
        # obsws_python prints its own connection noise
        with contextlib.redirect_stderr(sink), contextlib.redirect_stdout(sink):
            c = self._factory(host=self.host, port=self.port, password=self.password, timeout=self.timeout)
        log.info("Connected to OBS at %s:%s", self.host, self.port)
        self._client = c
        return c

    def _call(self, what: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        with self._lock:
            try:
                c = self._connect()
                if c is None:
                    return default
                return fn(c)
            except Exception as e:
                log.warning("OBS %s failed: %s", what, e)
                self._client = None
                return default

    @property
    def connected(self) -> bool:
        return self._client is not None

    # --- scenes ---
    def list_scenes(self) -> list[str]:
        scenes = self._call("GetSceneList", lambda c: c.get_scene_list().scenes, [])
        return [s.get("sceneName", "") for s in scenes if isinstance(s, dict)]

    def find_scene_case_insensitive(self, name: str) -> Optional[str]:
        wanted = name.strip().lower()
        for s in self.list_scenes():
            if s.lower() == wanted:
                return s
        return None

    def current_scene_name(self) -> str:
        return self._call("GetCurrentProgramScene",
                          lambda c: c.get_current_program_scene().current_program_scene_name, "") or ""

    def switch_to_scene(self, name: str) -> bool:
        if not name:
            return False
        if self.current_scene_name() == name:
            return True
        if name not in self.list_scenes():
            log.warning("Scene not found: %s", name)
            return False
        ok = self._call("SetCurrentProgramScene", lambda c: c.set_current_program_scene(name) or True, False)
        if ok:
            log.info("Switched to scene: %s", name)
        return bool(ok)

    # --- outputs ---
    def is_streaming_active(self) -> bool:
        return bool(self._call("GetStreamStatus", lambda c: c.get_stream_status().output_active, False))

    def is_recording_active(self) -> bool:
        return bool(self._call("GetRecordStatus", lambda c: c.get_record_status().output_active, False))

    def start_streaming(self) -> bool:
        return bool(self._call("StartStream", lambda c: c.start_stream() or True, False))

    def stop_streaming(self) -> bool:
        return bool(self._call("StopStream", lambda c: c.stop_stream() or True, False))

    def start_recording(self) -> bool:
        return bool(self._call("StartRecord", lambda c: c.start_record() or True, False))

    def stop_recording(self) -> bool:
        return bool(self._call("StopRecord", lambda c: c.stop_record() or True, False))


class ObsEventBridge:
    """Forwards OBS frontend events to the switcher's on_* handlers."""

    def __init__(self, switcher: Any, host: str, port: int, password: Optional[str],
                 client_factory: Callable[..., Any] = EventClient):
        self.switcher = switcher
        self.host = host
        self.port = port
        self.password = password
        self._factory = client_factory
        self._client: Any = None

    def start(self) -> bool:
        try:
            self._client = self._factory(host=self.host, port=self.port, password=self.password, timeout=5)
        except Exception as e:
            log.warning("OBS event client not started: %s", e)
            return False
        # obsws_python maps on_<snake_case> callback names onto event types
        self._client.callback.register([
            self.on_stream_state_changed,
            self.on_record_state_changed,
            self.on_current_program_scene_changed,
        ])
        return True

    @property
    def alive(self) -> bool:
        # EventClient's reader thread exits when the websocket closes
        worker = getattr(self._client, "worker", None)
        return worker is not None and worker.is_alive()

    def stop(self) -> None:
        if self._client is not None:
            try:
                self._client.disconnect()
            except Exception as e:
                log.debug("OBS event client disconnect: %s", e)
            self._client = None

    def on_stream_state_changed(self, data: Any) -> None:
        state = getattr(data, "output_state", "")
        if state == OUTPUT_STARTED:
            self.switcher.on_streaming_started()
        elif state == OUTPUT_STOPPED:
            self.switcher.on_streaming_stopped()

    def on_record_state_changed(self, data: Any) -> None:
        state = getattr(data, "output_state", "")
        if state == OUTPUT_STARTED:
            self.switcher.on_recording_started()
        elif state == OUTPUT_STOPPED:
            self.switcher.on_recording_stopped()

    def on_current_program_scene_changed(self, data: Any) -> None:
        self.switcher.on_scene_changed(getattr(data, "scene_name", ""))
