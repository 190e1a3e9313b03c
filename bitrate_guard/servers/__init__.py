"""Stats adapters, one per ingest server family, and the factory that picks one."""
from __future__ import annotations
from typing import Optional
import logging

from ..config import ServerConfig
from ..http_client import HttpClient
from .base import BitrateInfo, StreamServer
from .belabox import BelaboxServer
from .irlhosting import IrlHostingServer
from .mediamtx import MediamtxServer
from .nginx import NginxServer
from .nimble import NimbleServer
from .nms import NmsServer
from .openirl import OpenIRLServer
from .rist import RistServer
from .sls import SlsServer
from .xiu import XiuServer

log = logging.getLogger(__name__)

SERVER_TYPES: dict[str, type[StreamServer]] = {
    cls.kind: cls
    for cls in (BelaboxServer, NginxServer, SlsServer, MediamtxServer, NmsServer,
                NimbleServer, RistServer, OpenIRLServer, IrlHostingServer, XiuServer)
}


def create_server(config: ServerConfig, http: Optional[HttpClient] = None) -> StreamServer:
    cls = SERVER_TYPES.get((config.type or "").strip().lower())
    if cls is None:
        log.warning("Unknown server type %r for %r, using belabox", config.type, config.name)
        cls = BelaboxServer
    return cls(config, http)


__all__ = ["BitrateInfo", "StreamServer", "SERVER_TYPES", "create_server"]
