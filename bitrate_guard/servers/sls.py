from __future__ import annotations

from .base import BitrateInfo, StreamServer, as_float, as_int, dig, load_json


class SlsServer(StreamServer):
    kind = "sls"

    def __init__(self, config, http=None):
        super().__init__(config, http)
        # the stream key from the settings is the publisher name in the stats JSON
        self.publisher = config.key or config.publisher

    def fetch_stats(self) -> BitrateInfo:
        data = load_json(self.http.get(self.stats_url))
        pub = dig(data, "publishers", self.publisher)
        if not isinstance(pub, dict):
            return self.empty()

        if pub.get("est_bitrate") not in (None, ""):
            bitrate = as_int(pub["est_bitrate"])
        elif pub.get("bitrate") not in (None, ""):
            bitrate = as_int(pub["bitrate"])
        elif pub.get("mbpsBandwidth") not in (None, ""):
            bitrate = int(as_float(pub["mbpsBandwidth"]) * 1000)
        else:
            bitrate = as_int(pub.get("kbpsBandwidth"))

        return BitrateInfo(
            bitrate_kbps=bitrate,
            rtt_ms=as_float(pub.get("rtt")),
            dropped_packets=as_int(pub.get("dropped_pkts")),
            is_online=bitrate > 0,
            server_name=self.name,
        )

    def format_message(self, info: BitrateInfo) -> str:
        if info.bitrate_kbps <= 0:
            return ""
        if info.rtt_ms > 0:
            return f"{info.bitrate_kbps} kbps, {round(info.rtt_ms)} ms"
        return f"{info.bitrate_kbps} kbps"
