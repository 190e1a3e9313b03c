from __future__ import annotations
from typing import Optional
from xml.etree import ElementTree as ET

from ..triggers import SwitchType, Thresholds
from .base import BitrateInfo, StreamServer, as_int


class NginxServer(StreamServer):
    """nginx-rtmp ``/stat`` XML.

    ``key`` is ``app/stream`` (app defaults to ``live``). A stream only counts
    as online while its ``<active/>`` marker is present; an active stream that
    has not reported any bandwidth yet is "just started", not offline.
    """

    kind = "nginx"

    def __init__(self, config, http=None):
        super().__init__(config, http)
        key = config.key or config.publisher
        if "/" in key:
            self.application, self.stream = key.split("/", 1)
        else:
            self.application, self.stream = config.application or "live", key

    def _find_stream(self, root: ET.Element) -> Optional[ET.Element]:
        for app in root.iter("application"):
            if (app.findtext("name") or "").strip() == self.application:
                for st in app.iter("stream"):
                    if (st.findtext("name") or "").strip() == self.stream:
                        return st
                return None
        for st in root.iter("stream"):
            if (st.findtext("name") or "").strip() == self.stream:
                return st
        return None

    def fetch_stats(self) -> BitrateInfo:
        body = self.http.get(self.stats_url)
        if not body:
            return self.empty()
        try:
            root = ET.fromstring(body)
        except ET.ParseError:
            return self.empty()

        st = self._find_stream(root)
        if st is None or st.find("active") is None:
            return self.empty()

        bitrate = as_int(st.findtext("bw_in")) * 8 // 1000
        return BitrateInfo(bitrate_kbps=bitrate, is_online=True, server_name=self.name)

    def classify(self, info: BitrateInfo, thresholds: Thresholds) -> SwitchType:
        if info.is_online and info.bitrate_kbps == 0:
            return SwitchType.PREVIOUS
        return super().classify(info, thresholds)

    def format_message(self, info: BitrateInfo) -> str:
        return f"{info.bitrate_kbps} kbps" if info.bitrate_kbps > 0 else ""
