from __future__ import annotations
from typing import Any, Optional
from urllib.parse import urlsplit
import threading, time

from ..triggers import PREVIOUS_SENTINEL_KBPS
from .base import BitrateInfo, StreamServer, as_float, as_int, join_url, load_json

MIN_SAMPLE_INTERVAL_SEC = 1.0


class MediamtxServer(StreamServer):
    """MediaMTX ``/v3/paths/get/<path>``.

    The API only exposes a running ``bytesReceived`` counter, so bitrate is the
    counter's rate of change between polls at least a second apart. A counter
    that has not moved since the previous poll replays the last computed rate
    instead of reporting a drop.
    """

    kind = "mediamtx"

    def __init__(self, config, http=None, clock=time.monotonic):
        super().__init__(config, http)
        self.publisher = config.publisher
        self.clock = clock
        self._lock = threading.Lock()
        self._last_bytes: Optional[int] = None
        self._last_sample_at = 0.0
        self._last_kbps = 0

    @property
    def url(self) -> str:
        return join_url(self.stats_url, self.publisher)

    def _reset_samples(self) -> None:
        with self._lock:
            self._last_bytes = None
            self._last_kbps = 0

    def _bitrate_from_counter(self, received: int) -> int:
        now = self.clock()
        with self._lock:
            if self._last_bytes is None or received < self._last_bytes:
                # first sample after (re)connect: no rate yet
                self._last_bytes = received
                self._last_sample_at = now
                self._last_kbps = PREVIOUS_SENTINEL_KBPS
                return self._last_kbps

            elapsed = now - self._last_sample_at
            if received == self._last_bytes or elapsed < MIN_SAMPLE_INTERVAL_SEC:
                return self._last_kbps

            kbps = int((received - self._last_bytes) * 8 / 1024 / elapsed)
            self._last_bytes = received
            self._last_sample_at = now
            self._last_kbps = kbps
            return kbps

    def _srt_rtt(self, source: Any) -> float:
        if not isinstance(source, dict) or source.get("type") != "srtConn" or not source.get("id"):
            return 0.0
        parts = urlsplit(self.stats_url)
        url = f"{parts.scheme}://{parts.netloc}/v3/srtconns/get/{source['id']}"
        data = load_json(self.http.get(url))
        if not isinstance(data, dict):
            return 0.0
        return as_float(data.get("msRTT"))

    def fetch_stats(self) -> BitrateInfo:
        data = load_json(self.http.get(self.url))
        if not isinstance(data, dict) or data.get("ready") is not True:
            self._reset_samples()
            return self.empty()

        received = as_int(data.get("bytesReceived"))
        if received <= 0:
            self._reset_samples()
            return self.empty()

        return BitrateInfo(
            bitrate_kbps=self._bitrate_from_counter(received),
            rtt_ms=self._srt_rtt(data.get("source")),
            is_online=True,
            server_name=self.name,
        )

    def format_message(self, info: BitrateInfo) -> str:
        if info.bitrate_kbps == PREVIOUS_SENTINEL_KBPS:
            return "Connected"
        return super().format_message(info)
