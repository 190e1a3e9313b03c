from __future__ import annotations
from typing import Any, Optional
import logging, threading

import requests

from . import __version__

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 5.0


class HttpClient:
    """Blocking HTTP for stats endpoints. Returns the body text, or None on any failure."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SEC, verify_tls: bool = True):
        self.timeout = timeout
        self.verify_tls = verify_tls
        self._local = threading.local()

    def _session(self) -> requests.Session:
        # requests.Session is not thread-safe; one per calling thread
        s = getattr(self._local, "session", None)
        if s is None:
            s = requests.Session()
            s.headers["User-Agent"] = f"bitrate-guard/{__version__}"
            self._local.session = s
        return s

    def get(self, url: str, auth: Optional[tuple[str, str]] = None) -> Optional[str]:
        return self._request("GET", url, auth=auth)

    def post_json(self, url: str, body: Any) -> Optional[str]:
        return self._request("POST", url, json=body)

    def _request(self, method: str, url: str, **kw) -> Optional[str]:
        if not url:
            return None
        try:
            r = self._session().request(method, url, timeout=self.timeout,
                                        verify=self.verify_tls, **kw)
        except requests.RequestException as e:
            log.debug("%s %s failed: %s", method, url, e)
            return None
        if not 200 <= r.status_code < 300:
            log.debug("%s %s -> HTTP %s", method, url, r.status_code)
            return None
        return r.text
