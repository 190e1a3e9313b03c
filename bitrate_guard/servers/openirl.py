from __future__ import annotations

from .base import BitrateInfo, StreamServer, as_float, as_int, load_json


class OpenIRLServer(StreamServer):
    """OpenIRL: ``{"publisher": {...}}``; no ``publisher`` object means nobody is sending."""

    kind = "openirl"

    def fetch_stats(self) -> BitrateInfo:
        data = load_json(self.http.get(self.stats_url))
        pub = data.get("publisher") if isinstance(data, dict) else None
        if not isinstance(pub, dict):
            return self.empty()

        bitrate = as_int(pub.get("bitrate"))
        return BitrateInfo(
            bitrate_kbps=bitrate,
            rtt_ms=as_float(pub.get("rtt")),
            dropped_packets=as_int(pub.get("dropped_pkts")),
            is_online=bitrate > 0,
            server_name=self.name,
        )

    def source_info(self) -> str:
        info = self.get_bitrate()
        if not info.is_online:
            return "Offline"
        return f"{info.message} | dropped {info.dropped_packets} packets"
