from __future__ import annotations

from .base import BitrateInfo, StreamServer, as_float, as_int, dig, load_json


class BelaboxServer(StreamServer):
    """BELABOX cloud / srtla receiver: ``{"publishers": {"<name>": {"bitrate", "rtt", "dropped_pkts"}}}``."""

    kind = "belabox"

    def __init__(self, config, http=None):
        super().__init__(config, http)
        self.publisher = config.publisher

    def fetch_stats(self) -> BitrateInfo:
        data = load_json(self.http.get(self.stats_url))
        pub = dig(data, "publishers", self.publisher)
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
