"""Common adapter base: one stats fetch per poll, normalized into a BitrateInfo.

Adapters only implement ``fetch_stats``. Anything that goes wrong while
fetching or parsing turns into an empty (offline) reading for that server,
so the registry simply moves on to the next one.
"""
from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Optional
import json, logging, math

from ..config import OverrideScenes, ServerConfig
from ..http_client import HttpClient
from ..triggers import SwitchType, Thresholds, classify

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BitrateInfo:
    bitrate_kbps: int = 0
    rtt_ms: float = 0.0
    dropped_packets: int = 0
    is_online: bool = False
    message: str = ""
    server_name: str = ""


# --- tolerant parsing helpers: missing -> 0, malformed -> 0 ---
def as_int(v: Any) -> int:
    if v is None or isinstance(v, bool):
        return 0
    try:
        n = float(str(v).strip().strip('"'))
    except ValueError:
        return 0
    if not math.isfinite(n) or n < 0:
        return 0
    return int(n)


def as_float(v: Any) -> float:
    if v is None or isinstance(v, bool):
        return 0.0
    try:
        n = float(str(v).strip().strip('"'))
    except ValueError:
        return 0.0
    if not math.isfinite(n) or n < 0:
        return 0.0
    return n


def dig(obj: Any, *path: Any) -> Any:
    """Walk nested dicts/lists; None as soon as a step is missing."""
    for p in path:
        if isinstance(obj, dict):
            obj = obj.get(p)
        elif isinstance(obj, list) and isinstance(p, int) and -len(obj) <= p < len(obj):
            obj = obj[p]
        else:
            return None
    return obj


def load_json(text: Optional[str]) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def join_url(base: str, *parts: str) -> str:
    url = base
    for p in parts:
        if not p:
            continue
        if not url.endswith("/"):
            url += "/"
        url += p.strip("/")
    return url


class StreamServer:
    kind = "base"

    def __init__(self, config: ServerConfig, http: Optional[HttpClient] = None):
        self.config = config
        self.http = http or HttpClient()
        self.name = config.name
        self.stats_url = config.stats_url
        self.override_scenes: OverrideScenes = config.override_scenes

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"

    @property
    def has_override_scenes(self) -> bool:
        return self.override_scenes.any()

    def empty(self) -> BitrateInfo:
        return BitrateInfo(server_name=self.name)

    def fetch_stats(self) -> BitrateInfo:
        raise NotImplementedError

    def classify(self, info: BitrateInfo, thresholds: Thresholds) -> SwitchType:
        return classify(info, thresholds)

    def format_message(self, info: BitrateInfo) -> str:
        if info.bitrate_kbps <= 0:
            return ""
        return f"{info.bitrate_kbps} kbps, {round(info.rtt_ms)} ms"

    def _safe_fetch(self) -> BitrateInfo:
        try:
            info = self.fetch_stats()
        except Exception as e:
            # parser bugs must not take the poll loop down
            log.warning("[%s] stats parse failed: %s", self.name, e)
            return self.empty()
        if info.server_name != self.name:
            info = replace(info, server_name=self.name)
        return info

    def poll(self, thresholds: Thresholds) -> tuple[SwitchType, BitrateInfo]:
        """Fetch once; return the classification and the reading with its summary line."""
        info = self._safe_fetch()
        kind = self.classify(info, thresholds)
        return kind, replace(info, message=self.format_message(info))

    def check_switch(self, thresholds: Thresholds) -> SwitchType:
        return self.poll(thresholds)[0]

    def get_bitrate(self) -> BitrateInfo:
        info = self._safe_fetch()
        return replace(info, message=self.format_message(info))

    def source_info(self) -> str:
        info = self.get_bitrate()
        if not info.is_online:
            return "Offline"
        return info.message or "Online"
