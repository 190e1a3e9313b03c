from __future__ import annotations
from typing import Callable, Iterable, Optional
import logging, threading

from .config import ServerConfig
from .http_client import HttpClient
from .servers import BitrateInfo, StreamServer, create_server
from .triggers import SwitchType, Thresholds

log = logging.getLogger(__name__)


class ServerRegistry:
    """Enabled stats servers in priority order (lower number first).

    The first server that is not Offline is the one serving; "best bitrate"
    never wins over the operator's declared order.
    """

    def __init__(self, http: Optional[HttpClient] = None,
                 factory: Callable[[ServerConfig, Optional[HttpClient]], StreamServer] = create_server):
        self._http = http or HttpClient()
        self._factory = factory
        self._lock = threading.Lock()
        self._servers: list[StreamServer] = []

    def reload(self, configs: Iterable[ServerConfig]) -> None:
        enabled = [c for c in configs if c.enabled]
        enabled.sort(key=lambda c: c.priority)  # stable: equal priority keeps file order
        servers = [self._factory(c, self._http) for c in enabled]

        seen: set[str] = set()
        for s in servers:
            if s.name in seen:
                log.warning("Duplicate server name %r; overrides will follow the first one", s.name)
            seen.add(s.name)

        with self._lock:
            self._servers = servers
        log.info("Loaded %d servers", len(servers))

    def servers(self) -> list[StreamServer]:
        with self._lock:
            return list(self._servers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._servers)

    def names(self) -> list[str]:
        return [s.name for s in self.servers()]

    def find(self, name: Optional[str]) -> Optional[StreamServer]:
        if not name:
            return None
        for s in self.servers():
            if s.name == name:
                return s
        return None

    def override_scene_names(self) -> set[str]:
        out: set[str] = set()
        for s in self.servers():
            if not s.has_override_scenes:
                continue
            o = s.override_scenes
            out.update(n for n in (o.normal, o.low, o.offline) if n)
        return out

    def poll_active(self, thresholds: Thresholds) -> tuple[SwitchType, BitrateInfo, Optional[StreamServer]]:
        # network I/O happens on a snapshot, never under the lock
        for server in self.servers():
            kind, info = server.poll(thresholds)
            if kind is not SwitchType.OFFLINE:
                return kind, info, server
        return SwitchType.OFFLINE, BitrateInfo(), None
