"""Switcher settings: dataclasses plus the JSON settings file they persist to.

The on-disk layout is flat (``trigger_low``, ``scene_normal`` ...) with a
``servers`` list and a ``chat`` block. Missing keys keep their defaults so an
old or hand-written file still loads.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional
import json, logging, os, threading

from .errors import ConfigError
from .triggers import Thresholds

log = logging.getLogger(__name__)

DEFAULT_RETRY_ATTEMPTS = 5

DEFAULT_COMMANDS: dict[str, str] = {
    "live": "!live",
    "low": "!low",
    "brb": "!brb",
    "refresh": "!refresh",
    "status": "!bitrate",
    "trigger": "!trigger",
    "fix": "!fix",
    "switch_scene": "!ss",
    "start": "!start",
    "stop": "!stop",
}


@dataclass
class Scenes:
    normal: str = "Live"
    low: str = "Low"
    offline: str = "Offline"


@dataclass
class OptionalScenes:
    starting: str = ""
    ending: str = ""
    privacy: str = ""
    refresh: str = ""


@dataclass
class OverrideScenes:
    normal: str = ""
    low: str = ""
    offline: str = ""

    def any(self) -> bool:
        return bool(self.normal or self.low or self.offline)


@dataclass
class Options:
    offline_timeout_minutes: int = 0
    record_while_streaming: bool = False
    switch_to_starting_on_stream_start: bool = False
    switch_from_starting_to_live: bool = False
    rist_stale_fix_delay_sec: int = 0


@dataclass
class ChatConfig:
    enabled: bool = False
    admins: list[str] = field(default_factory=list)
    announce_scene_changes: bool = True
    commands: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COMMANDS))


@dataclass
class ServerConfig:
    type: str = "belabox"
    name: str = ""
    stats_url: str = ""
    publisher: str = ""
    application: str = ""
    key: str = ""
    id: str = ""
    auth_user: str = ""
    auth_pass: str = ""
    priority: int = 0
    enabled: bool = True
    override_scenes: OverrideScenes = field(default_factory=OverrideScenes)
    # Persisted and editable, never read by the switch logic.
    depends_on: str = ""


@dataclass
class Config:
    enabled: bool = True
    only_when_streaming: bool = False
    instant_recover: bool = True
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    thresholds: Thresholds = field(default_factory=Thresholds)
    scenes: Scenes = field(default_factory=Scenes)
    optional_scenes: OptionalScenes = field(default_factory=OptionalScenes)
    options: Options = field(default_factory=Options)
    chat: ChatConfig = field(default_factory=ChatConfig)
    servers: list[ServerConfig] = field(default_factory=list)


# --- tolerant field readers ---
def _bool(v: Any, default: bool) -> bool:
    if v is None:
        return default
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "y", "on")
    return bool(v)


def _int(v: Any, default: int = 0) -> int:
    if v is None or v == "":
        return default
    try:
        return int(float(v))
    except (TypeError, ValueError):
        return default


def _str(v: Any, default: str = "") -> str:
    if v is None:
        return default
    return str(v)


def server_from_dict(d: dict[str, Any]) -> ServerConfig:
    return ServerConfig(
        type=_str(d.get("type"), "belabox").strip().lower() or "belabox",
        name=_str(d.get("name")),
        stats_url=_str(d.get("stats_url")),
        publisher=_str(d.get("publisher")),
        application=_str(d.get("application")),
        key=_str(d.get("key")),
        id=_str(d.get("id")),
        auth_user=_str(d.get("auth_user")),
        auth_pass=_str(d.get("auth_pass")),
        priority=_int(d.get("priority"), 0),
        enabled=_bool(d.get("enabled"), True),
        override_scenes=OverrideScenes(
            normal=_str(d.get("override_normal")),
            low=_str(d.get("override_low")),
            offline=_str(d.get("override_offline")),
        ),
        depends_on=_str(d.get("depends_on")),
    )


def server_to_dict(s: ServerConfig) -> dict[str, Any]:
    return {
        "type": s.type,
        "name": s.name,
        "stats_url": s.stats_url,
        "publisher": s.publisher,
        "application": s.application,
        "key": s.key,
        "id": s.id,
        "auth_user": s.auth_user,
        "auth_pass": s.auth_pass,
        "priority": s.priority,
        "enabled": s.enabled,
        "override_normal": s.override_scenes.normal,
        "override_low": s.override_scenes.low,
        "override_offline": s.override_scenes.offline,
        "depends_on": s.depends_on,
    }


def config_from_dict(d: dict[str, Any]) -> Config:
    cfg = Config()
    cfg.enabled = _bool(d.get("enabled"), cfg.enabled)
    cfg.only_when_streaming = _bool(d.get("only_when_streaming"), cfg.only_when_streaming)
    cfg.instant_recover = _bool(d.get("instant_recover"), cfg.instant_recover)
    cfg.retry_attempts = _int(d.get("retry_attempts"), DEFAULT_RETRY_ATTEMPTS) or DEFAULT_RETRY_ATTEMPTS

    t = cfg.thresholds
    cfg.thresholds = Thresholds(
        low=max(0, _int(d.get("trigger_low"), t.low)),
        rtt_low=max(0, _int(d.get("trigger_rtt"), t.rtt_low)),
        offline=max(0, _int(d.get("trigger_offline"), t.offline)),
        rtt_offline=max(0, _int(d.get("trigger_rtt_offline"), t.rtt_offline)),
    )

    # blank scene names keep the defaults
    for attr in ("normal", "low", "offline"):
        v = _str(d.get(f"scene_{attr}")).strip()
        if v:
            setattr(cfg.scenes, attr, v)
    for attr in ("starting", "ending", "privacy", "refresh"):
        setattr(cfg.optional_scenes, attr, _str(d.get(f"scene_{attr}")).strip())

    o = cfg.options
    o.offline_timeout_minutes = max(0, _int(d.get("offline_timeout"), 0))
    o.record_while_streaming = _bool(d.get("record_while_streaming"), False)
    o.switch_to_starting_on_stream_start = _bool(d.get("switch_to_starting"), False)
    o.switch_from_starting_to_live = _bool(d.get("switch_from_starting"), False)
    o.rist_stale_fix_delay_sec = max(0, _int(d.get("rist_stale_fix_delay"), 0))

    chat = d.get("chat")
    if isinstance(chat, dict):
        cfg.chat.enabled = _bool(chat.get("enabled"), False)
        admins = chat.get("admins") or []
        if isinstance(admins, str):
            admins = admins.split(",")
        cfg.chat.admins = [a.strip().lower() for a in admins if str(a).strip()]
        cfg.chat.announce_scene_changes = _bool(chat.get("announce_scene_changes"), True)
        cmds = chat.get("commands")
        if isinstance(cmds, dict):
            for k, v in cmds.items():
                if k in DEFAULT_COMMANDS and _str(v).strip():
                    cfg.chat.commands[k] = _str(v).strip().lower()

    servers = d.get("servers")
    if isinstance(servers, list):
        cfg.servers = [server_from_dict(s) for s in servers if isinstance(s, dict)]
    return cfg


def config_to_dict(cfg: Config) -> dict[str, Any]:
    return {
        "enabled": cfg.enabled,
        "only_when_streaming": cfg.only_when_streaming,
        "instant_recover": cfg.instant_recover,
        "retry_attempts": cfg.retry_attempts,
        "trigger_low": cfg.thresholds.low,
        "trigger_rtt": cfg.thresholds.rtt_low,
        "trigger_offline": cfg.thresholds.offline,
        "trigger_rtt_offline": cfg.thresholds.rtt_offline,
        "scene_normal": cfg.scenes.normal,
        "scene_low": cfg.scenes.low,
        "scene_offline": cfg.scenes.offline,
        "scene_starting": cfg.optional_scenes.starting,
        "scene_ending": cfg.optional_scenes.ending,
        "scene_privacy": cfg.optional_scenes.privacy,
        "scene_refresh": cfg.optional_scenes.refresh,
        "offline_timeout": cfg.options.offline_timeout_minutes,
        "record_while_streaming": cfg.options.record_while_streaming,
        "switch_to_starting": cfg.options.switch_to_starting_on_stream_start,
        "switch_from_starting": cfg.options.switch_from_starting_to_live,
        "rist_stale_fix_delay": cfg.options.rist_stale_fix_delay_sec,
        "chat": {
            "enabled": cfg.chat.enabled,
            "admins": list(cfg.chat.admins),
            "announce_scene_changes": cfg.chat.announce_scene_changes,
            "commands": dict(cfg.chat.commands),
        },
        "servers": [server_to_dict(s) for s in cfg.servers],
    }


class ConfigStore:
    """Owns the live Config object and its JSON file.

    The switcher holds a reference to ``store.config`` and reads it on every
    tick, so edits are made in place and followed by ``switcher.reload_servers()``.
    """

    def __init__(self, path: Optional[str]):
        self.path = path
        self.config = Config()
        self.lock = threading.Lock()

    def load(self) -> Config:
        if not self.path or not os.path.exists(self.path):
            log.info("No settings file at %s; using defaults", self.path)
            return self.config
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path}: top level must be an object")

        loaded = config_from_dict(data)
        with self.lock:
            # keep the object identity, collaborators hold references to it
            self.config.__dict__.update(loaded.__dict__)
        log.info("Loaded settings from %s (%d servers)", self.path, len(self.config.servers))
        return self.config

    def save(self) -> bool:
        if not self.path:
            return False
        with self.lock:
            data = config_to_dict(self.config)
        tmp = self.path + ".tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
            return True
        except OSError as e:
            log.error("Saving settings to %s failed: %s", self.path, e)
            return False

    def update(self, changes: dict[str, Any]) -> Config:
        """Merge flat-key ``changes`` into the live config (same parsing as load)."""
        with self.lock:
            data = config_to_dict(self.config)
            data.update(changes)
            self.config.__dict__.update(config_from_dict(data).__dict__)
        return self.config
