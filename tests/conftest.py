"""Shared fakes: stats HTTP, OBS scene host and a manual clock."""

import json

import pytest

from bitrate_guard.config import Config, OverrideScenes, ServerConfig
from bitrate_guard.registry import ServerRegistry
from bitrate_guard.switcher import Switcher
from bitrate_guard.triggers import Thresholds


class FakeHttp:
    """Stands in for HttpClient. Unknown URLs behave like a failed request."""

    def __init__(self):
        self.responses = {}
        self.calls = []

    def set(self, url, body):
        self.responses[url] = body if isinstance(body, str) or body is None else json.dumps(body)

    def get(self, url, auth=None):
        self.calls.append(("GET", url, auth))
        return self.responses.get(url)

    def post_json(self, url, body):
        self.calls.append(("POST", url, body))
        return self.responses.get(url)

    def belabox(self, url, publisher, bitrate, rtt=0):
        """Publish a BELABOX-style reading (bitrate 0 removes the publisher)."""
        pubs = {publisher: {"bitrate": bitrate, "rtt": rtt, "dropped_pkts": 0}} if bitrate else {}
        self.set(url, {"publishers": pubs})


class FakeHost:
    """OBS stand-in recording every side effect."""

    def __init__(self, scenes=("Live", "Low", "Offline"), current="Live"):
        self.scenes = list(scenes)
        self.current = current
        self.streaming = False
        self.recording = False
        self.switches = []
        self.stream_stops = 0
        self.stream_starts = 0
        self.record_starts = 0
        self.record_stops = 0

    def list_scenes(self):
        return list(self.scenes)

    def find_scene_case_insensitive(self, name):
        for s in self.scenes:
            if s.lower() == name.strip().lower():
                return s
        return None

    def current_scene_name(self):
        return self.current

    def switch_to_scene(self, name):
        if not name or name not in self.scenes:
            return False
        if name != self.current:
            self.switches.append(name)
            self.current = name
        return True

    def is_streaming_active(self):
        return self.streaming

    def is_recording_active(self):
        return self.recording

    def start_streaming(self):
        self.stream_starts += 1
        self.streaming = True
        return True

    def stop_streaming(self):
        self.stream_stops += 1
        self.streaming = False
        return True

    def start_recording(self):
        self.record_starts += 1
        self.recording = True
        return True

    def stop_recording(self):
        self.record_stops += 1
        self.recording = False
        return True


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def server(name, url, priority=0, type="belabox", publisher="live", **overrides):
    return ServerConfig(type=type, name=name, stats_url=url, publisher=publisher,
                        priority=priority, override_scenes=OverrideScenes(**overrides))


def make_config(servers=(), retry_attempts=1, **kw):
    cfg = Config(retry_attempts=retry_attempts,
                 thresholds=Thresholds(low=800, rtt_low=2500, offline=0, rtt_offline=0),
                 servers=list(servers))
    for k, v in kw.items():
        setattr(cfg, k, v)
    return cfg


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_switcher(http, host, clock):
    """Build a Switcher over FakeHttp/FakeHost; collects announcements in ``sw.said``."""

    def build(cfg):
        said = []
        sw = Switcher(cfg, host, ServerRegistry(http=http), announce=said.append, clock=clock)
        sw.said = said
        return sw

    return build
