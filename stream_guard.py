from __future__ import annotations
from logging.handlers import RotatingFileHandler
from typing import Optional
from dotenv import load_dotenv
from werkzeug.serving import make_server
import os, logging, signal, threading

from bitrate_guard import __version__
from bitrate_guard.chat import ChatGuard
from bitrate_guard.config import ConfigStore
from bitrate_guard.errors import ConfigError
from bitrate_guard.http_client import HttpClient
from bitrate_guard.obs_host import ObsEventBridge, ObsSceneHost
from bitrate_guard.registry import ServerRegistry
from bitrate_guard.switcher import Switcher
from app import create_app

load_dotenv()

# --- Configuration ---
CONFIG_PATH: str = os.getenv("CONFIG_PATH", os.path.join(os.path.dirname(__file__), "bitrate_guard.json"))

OBS_HOST: str = os.getenv("OBS_HOST", "localhost")
OBS_PORT: int = int(os.getenv("OBS_PORT", "4455"))
OBS_PASSWORD: Optional[str] = os.getenv("OBS_PASSWORD")
OBS_RECONNECT_INTERVAL_SEC: float = float(os.getenv("OBS_RECONNECT_INTERVAL_SEC", "10"))
MAX_RECONNECT_WAIT_SEC: float = float(os.getenv("OBS_MAX_RECONNECT_WAIT_SEC", "60"))

REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "5"))
VERIFY_TLS: bool = os.getenv("VERIFY_TLS", "true").lower() in ("1", "true", "yes", "y", "on")

CONTROL_API_ENABLED: bool = os.getenv("CONTROL_API_ENABLED", "true").lower() in ("1", "true", "yes", "y", "on")
CONTROL_API_HOST: str = os.getenv("CONTROL_API_HOST", "127.0.0.1")
CONTROL_API_PORT: int = int(os.getenv("CONTROL_API_PORT", "8765"))
CONTROL_API_KEY: Optional[str] = os.getenv("CONTROL_API_KEY") or None

LOGLEVEL: str = os.getenv("LOGLEVEL", "info").upper()
LOG_FILE: Optional[str] = os.getenv("LOG_FILE") or None

# ==== Twitch EventSub (WebSocket) ====
TWITCH_CLIENT_ID      = os.getenv("TWITCH_CLIENT_ID")
TWITCH_OAUTH_TOKEN    = os.getenv("TWITCH_OAUTH_TOKEN")
TWITCH_BROADCASTER_ID = os.getenv("TWITCH_BROADCASTER_ID")
TWITCH_TOKENS_PATH    = os.getenv("TWITCH_TOKENS_PATH", os.path.join(os.path.dirname(__file__), "twitch_tokens.json"))

log = logging.getLogger("stream_guard")


def setup_logging() -> None:
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(RotatingFileHandler(LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=5))
    logging.basicConfig(level=getattr(logging, LOGLEVEL, logging.INFO), format=fmt, handlers=handlers)
    # obsws_python logs every request at INFO
    for noisy in ("obsws_python", "websocket", "urllib3", "werkzeug"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def load_settings(path: str) -> ConfigStore:
    store = ConfigStore(path)
    try:
        store.load()
    except ConfigError as e:
        log.error("Settings file unusable, running with defaults: %s", e)
    return store


def start_control_api(switcher: Switcher, store: ConfigStore, chat: Optional[ChatGuard]):
    try:
        httpd = make_server(CONTROL_API_HOST, CONTROL_API_PORT,
                            create_app(switcher, store, api_key=CONTROL_API_KEY, chat=chat), threaded=True)
    except OSError as e:
        log.error("Control API not started on %s:%s: %s", CONTROL_API_HOST, CONTROL_API_PORT, e)
        return None
    threading.Thread(target=httpd.serve_forever, daemon=True, name="control-api").start()
    log.info("Control API on http://%s:%s/api", CONTROL_API_HOST, CONTROL_API_PORT)
    if not CONTROL_API_KEY:
        log.warning("CONTROL_API_KEY is not set; the control API is unauthenticated")
    return httpd


def watch_obs_events(bridge: ObsEventBridge, switcher: Switcher, stop: threading.Event,
                     poll: float = 1.0) -> None:
    """Keep the OBS event client connected until ``stop`` is set.

    The switcher starts on the first successful connect. After a reconnect
    the stream/record flags are re-read, since events sent while OBS was
    away are lost.
    """
    reconnect_wait = OBS_RECONNECT_INTERVAL_SEC
    connected = False
    while not stop.is_set():
        if bridge.alive:
            reconnect_wait = OBS_RECONNECT_INTERVAL_SEC
            stop.wait(poll)
            continue
        if connected:
            log.warning("OBS event connection lost")
            connected = False
        bridge.stop()
        if bridge.start():
            log.info("OBS events connected")
            connected = True
            if switcher.running:
                switcher.sync_outputs()
            else:
                switcher.start()
            continue
        log.info("OBS not reachable at %s:%s, retrying in %.0fs", OBS_HOST, OBS_PORT, reconnect_wait)
        stop.wait(reconnect_wait)
        reconnect_wait = min(max(OBS_RECONNECT_INTERVAL_SEC, reconnect_wait * 1.5), MAX_RECONNECT_WAIT_SEC)


def main() -> None:
    setup_logging()
    log.info("Starting bitrate-guard %s", __version__)

    stop = threading.Event()

    def _signal_handler(signum, frame):  # pragma: no cover
        log.info("Signal %s received, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    store = load_settings(CONFIG_PATH)
    cfg = store.config
    log.info("Scenes: normal=%r low=%r offline=%r", cfg.scenes.normal, cfg.scenes.low, cfg.scenes.offline)
    log.info("Thresholds: low<=%d kbps, rtt>=%d ms, retry=%d, instant_recover=%s",
             cfg.thresholds.low, cfg.thresholds.rtt_low, cfg.retry_attempts, cfg.instant_recover)

    host = ObsSceneHost(OBS_HOST, OBS_PORT, OBS_PASSWORD)
    registry = ServerRegistry(HttpClient(timeout=REQUEST_TIMEOUT, verify_tls=VERIFY_TLS))

    switcher = Switcher(cfg, host, registry)

    chat: Optional[ChatGuard] = None
    if cfg.chat.enabled:
        chat = ChatGuard(switcher, TWITCH_CLIENT_ID, TWITCH_BROADCASTER_ID,
                         oauth_token=TWITCH_OAUTH_TOKEN, tokens_path=TWITCH_TOKENS_PATH)
        switcher.announce = chat.send_message
        chat.start_thread()

    httpd = start_control_api(switcher, store, chat) if CONTROL_API_ENABLED else None

    bridge = ObsEventBridge(switcher, OBS_HOST, OBS_PORT, OBS_PASSWORD)
    try:
        watch_obs_events(bridge, switcher, stop)
    except KeyboardInterrupt:
        pass
    finally:
        switcher.stop()
        bridge.stop()
        if chat is not None:
            chat.stop()
        if httpd is not None:
            httpd.shutdown()
        log.info("Stopped")


if __name__ == "__main__":
    main()
