from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional

from .base import BitrateInfo, StreamServer, as_float, as_int, dig, load_json


def _find(items: Any, key: str, value: str) -> Optional[dict]:
    if not isinstance(items, list):
        return None
    for it in items:
        if isinstance(it, dict) and str(it.get(key, "")) == value:
            return it
    return None


@dataclass(frozen=True)
class _SrtExtras:
    mbps_bandwidth: float = 0.0
    mbps_recv_rate: float = 0.0


class IrlHostingServer(StreamServer):
    """IRLHosting stats: one endpoint that reports either its SRT or its RTMP ingest.

    SRT publishers are matched on their stream id (``publisher``, e.g.
    ``publish/live/feed1``); RTMP streams on ``application`` + ``key``.
    """

    kind = "irlhosting"

    def __init__(self, config, http=None):
        super().__init__(config, http)
        self.publisher = config.publisher
        self.application = config.application
        self.key = config.key
        self._extras = _SrtExtras()

    def _parse_srt(self, data: dict) -> BitrateInfo:
        pub = _find(data.get("publishers"), "stream", self.publisher)
        if pub is None:
            return self.empty()
        self._extras = _SrtExtras(as_float(pub.get("mbpsBandwidth")), as_float(pub.get("mbpsRecvRate")))
        bitrate = as_int(pub.get("bitrate"))
        return BitrateInfo(bitrate_kbps=bitrate, rtt_ms=as_float(pub.get("rtt")),
                           is_online=bitrate > 0, server_name=self.name)

    def _parse_rtmp(self, data: dict) -> BitrateInfo:
        app = _find(data.get("applications"), "name", self.application)
        stream = _find(dig(app, "live", "streams"), "name", self.key)
        if stream is None:
            return self.empty()
        bitrate = as_int(dig(stream, "bytes", "incoming")) // 1024
        return BitrateInfo(bitrate_kbps=bitrate, is_online=bitrate > 0, server_name=self.name)

    def fetch_stats(self) -> BitrateInfo:
        self._extras = _SrtExtras()
        data = load_json(self.http.get(self.stats_url))
        if not isinstance(data, dict):
            return self.empty()
        service = data.get("service")
        if service == "SRT":
            return self._parse_srt(data)
        if service == "RTMP":
            return self._parse_rtmp(data)
        return self.empty()

    def format_message(self, info: BitrateInfo) -> str:
        if info.bitrate_kbps <= 0:
            return ""
        if info.rtt_ms > 0:
            return f"{info.bitrate_kbps} kbps, {round(info.rtt_ms)} ms"
        return f"{info.bitrate_kbps} kbps"

    def source_info(self) -> str:
        info = self.get_bitrate()
        if not info.is_online:
            return "Offline"
        text = info.message
        x = self._extras
        if info.rtt_ms > 0 and x.mbps_bandwidth > 0:
            text += (f" | Estimated bandwidth {round(x.mbps_bandwidth)} Mbps,"
                     f" Receiving rate {x.mbps_recv_rate:.2f} Mbps")
        return text
