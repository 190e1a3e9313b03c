from __future__ import annotations

from .base import BitrateInfo, StreamServer, as_int, dig, load_json

BITRATE_FIELD = "recv_bitrate(kbits/s)"


class XiuServer(StreamServer):
    """Xiu HTTP API: POST the stream identifier, trust the payload only when error_code is 0."""

    kind = "xiu"

    def __init__(self, config, http=None):
        super().__init__(config, http)
        self.application = config.application
        self.key = config.key

    def request_body(self) -> dict:
        return {"identifier": {"rtmp": {"app_name": self.application, "stream_name": self.key}}}

    def fetch_stats(self) -> BitrateInfo:
        data = load_json(self.http.post_json(self.stats_url, self.request_body()))
        if not isinstance(data, dict) or str(data.get("error_code")) != "0":
            return self.empty()

        pub = dig(data, "data", 0, "publisher")
        if not isinstance(pub, dict):
            return self.empty()

        bitrate = as_int(pub.get(BITRATE_FIELD))
        return BitrateInfo(bitrate_kbps=bitrate, is_online=bitrate > 0, server_name=self.name)

    def format_message(self, info: BitrateInfo) -> str:
        return f"{info.bitrate_kbps} kbps" if info.bitrate_kbps > 0 else ""
