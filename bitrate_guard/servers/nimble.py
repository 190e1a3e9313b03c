from __future__ import annotations
from typing import Any

from .base import BitrateInfo, StreamServer, as_float, as_int, dig, load_json


def _records(data: Any, *keys: str) -> list:
    """Nimble answers either a bare list or an object wrapping one."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for k in keys:
            v = data.get(k)
            if isinstance(v, list):
                return v
    return []


class NimbleServer(StreamServer):
    """Nimble Streamer: RTT from the SRT receiver, bitrate from the RTMP republish status."""

    kind = "nimble"

    def __init__(self, config, http=None):
        super().__init__(config, http)
        self.receiver_id = config.id
        self.application = config.application
        self.key = config.key

    def _receiver_rtt(self) -> tuple[bool, float]:
        data = load_json(self.http.get(self.stats_url.rstrip("/") + "/manage/srt_receiver_stats"))
        if data is None:
            return False, 0.0
        for rec in _records(data, "SrtReceivers", "receivers"):
            if not isinstance(rec, dict) or str(rec.get("id", "")) != self.receiver_id:
                continue
            if "disconnected" in str(rec.get("state", "")).lower():
                return False, 0.0
            rtt = dig(rec, "stats", "link", "rtt")
            if rtt is None:
                rtt = dig(rec, "link", "rtt")
            return True, as_float(rtt)
        return False, 0.0

    def _rtmp_bitrate(self) -> int:
        data = load_json(self.http.get(self.stats_url.rstrip("/") + "/manage/rtmp_status"))
        for app in _records(data, "applications"):
            if not isinstance(app, dict) or app.get("app") != self.application:
                continue
            for st in app.get("streams") or []:
                if isinstance(st, dict) and st.get("strm") == self.key:
                    return as_int(st.get("bandwidth")) // 1024
        return 0

    def fetch_stats(self) -> BitrateInfo:
        found, rtt = self._receiver_rtt()
        if not found:
            return self.empty()
        bitrate = self._rtmp_bitrate()
        return BitrateInfo(
            bitrate_kbps=bitrate,
            rtt_ms=rtt,
            is_online=bitrate > 0 or rtt > 0,
            server_name=self.name,
        )
