from __future__ import annotations

from .base import BitrateInfo, StreamServer, as_float, as_int, dig, load_json


class RistServer(StreamServer):
    """librist receiver stats; bonded links show up as several peers that are summed."""

    kind = "rist"

    def fetch_stats(self) -> BitrateInfo:
        data = load_json(self.http.get(self.stats_url))
        peers = dig(data, "receiver-stats", "flowinstant", "peers")
        if not isinstance(peers, list):
            return self.empty()

        total_bps = 0
        total_rtt = 0.0
        count = 0
        for peer in peers:
            stats = dig(peer, "stats")
            if not isinstance(stats, dict):
                continue
            total_bps += as_int(stats.get("bitrate"))
            total_rtt += as_float(stats.get("rtt"))
            count += 1

        if count == 0:
            return self.empty()

        bitrate = total_bps // 1024
        return BitrateInfo(
            bitrate_kbps=bitrate,
            rtt_ms=total_rtt / count,
            is_online=bitrate > 0,
            server_name=self.name,
        )
