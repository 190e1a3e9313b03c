from __future__ import annotations

from ..triggers import SwitchType, Thresholds
from .base import BitrateInfo, StreamServer, as_int, join_url, load_json


class NmsServer(StreamServer):
    """Node-Media-Server ``/api/streams/<app>/<key>``, optionally behind basic auth."""

    kind = "nms"

    def __init__(self, config, http=None):
        super().__init__(config, http)
        self.application = config.application
        self.key = config.key
        self.auth = (config.auth_user, config.auth_pass) if config.auth_user else None

    @property
    def url(self) -> str:
        return join_url(self.stats_url, self.application, self.key)

    def fetch_stats(self) -> BitrateInfo:
        data = load_json(self.http.get(self.url, auth=self.auth))
        if not isinstance(data, dict) or data.get("isLive") is not True:
            return self.empty()
        return BitrateInfo(bitrate_kbps=as_int(data.get("bitrate")), is_online=True,
                           server_name=self.name)

    def classify(self, info: BitrateInfo, thresholds: Thresholds) -> SwitchType:
        # live but no bitrate sample yet
        if info.is_online and info.bitrate_kbps == 0:
            return SwitchType.PREVIOUS
        return super().classify(info, thresholds)

    def format_message(self, info: BitrateInfo) -> str:
        return f"{info.bitrate_kbps} kbps" if info.bitrate_kbps > 0 else ""
