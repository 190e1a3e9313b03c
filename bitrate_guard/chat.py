"""Twitch chat bridge: EventSub websocket in, Helix chat messages out.

Chat commands from admins are parsed with the configured command words and
run through ``Switcher.handle_command``; its reply (if any) is posted back.
The user token is re-read from the tokens file on every use so an external
refresher can rotate it without a restart.
"""
from __future__ import annotations
from typing import Any, Optional
import asyncio, json, logging, threading, time

import aiohttp
import requests

from .commands import ChatCommand, parse_command

log = logging.getLogger(__name__)

EVENTSUB_WS = "wss://eventsub.wss.twitch.tv/ws"
SUBSCRIBE_URL = "https://api.twitch.tv/helix/eventsub/subscriptions"
CHAT_MESSAGES_URL = "https://api.twitch.tv/helix/chat/messages"
RESUB_MIN_INTERVAL_SEC = 30
RECONNECT_DELAY_SEC = 3
MAX_MESSAGE_LEN = 480


class ChatGuard:
    def __init__(self, switcher, client_id: Optional[str], broadcaster_id: Optional[str],
                 oauth_token: Optional[str] = None, tokens_path: Optional[str] = None,
                 ws_url: str = EVENTSUB_WS, timeout: float = 5.0):
        self.switcher = switcher
        self.client_id = client_id or ""
        self.broadcaster_id = broadcaster_id or ""
        self.oauth_token = oauth_token or ""
        self.tokens_path = tokens_path
        self.ws_url = ws_url
        self.timeout = timeout

        self._state_lock = threading.Lock()
        self._state = {"chat_ws": False, "chat_subscribed": False}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def chat_config(self):
        return self.switcher.config.chat

    # --- state ---
    def _set(self, k: str, v: Any) -> None:
        with self._state_lock:
            self._state[k] = v

    def snapshot(self) -> dict[str, Any]:
        with self._state_lock:
            return dict(self._state)

    def configured(self) -> bool:
        return bool(self.client_id and self.broadcaster_id)

    def current_user_token(self) -> str:
        # the tokens file wins; it is rewritten whenever the token is refreshed
        if self.tokens_path:
            try:
                with open(self.tokens_path, "r", encoding="utf-8") as f:
                    js = json.load(f)
                if isinstance(js, dict) and js.get("access_token"):
                    return str(js["access_token"])
            except (OSError, ValueError):
                pass
        return self.oauth_token

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Client-Id": self.client_id,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    # --- outbound ---
    def send_message(self, message: str) -> bool:
        token = self.current_user_token()
        if not (token and self.configured() and message):
            return False
        payload = {
            "broadcaster_id": self.broadcaster_id,
            "sender_id": self.broadcaster_id,
            "message": message[:MAX_MESSAGE_LEN],
        }
        try:
            r = requests.post(CHAT_MESSAGES_URL, headers=self._headers(token), json=payload,
                              timeout=self.timeout)
        except requests.RequestException as e:
            log.warning("Chat send failed: %s", e)
            return False
        if r.status_code not in (200, 201):
            log.warning("Chat send failed %s: %s", r.status_code, r.text[:300])
            return False
        return True

    # --- inbound ---
    def is_admin(self, login: str, user_id: str = "") -> bool:
        if self.broadcaster_id and user_id == self.broadcaster_id:
            return True
        admins = self.chat_config.admins
        if not admins:
            return True
        return (login or "").lower() in admins

    def handle_message(self, login: str, text: str, user_id: str = "") -> Optional[str]:
        """Dispatch one chat line. Returns the reply that was sent, if any."""
        cmd, args = parse_command(text, self.chat_config.commands)
        if cmd is ChatCommand.NONE:
            return None
        if not self.is_admin(login, user_id):
            log.debug("Ignoring %s from non-admin %s", cmd.value, login)
            return None
        log.info("Chat command from %s: %s %s", login, cmd.value, args)
        reply = self.switcher.handle_command(cmd, args)
        if reply:
            self.send_message(reply)
        return reply

    async def _subscribe(self, http: aiohttp.ClientSession, session_id: str) -> bool:
        body = {
            "type": "channel.chat.message",
            "version": "1",
            "condition": {
                "broadcaster_user_id": self.broadcaster_id,
                "user_id": self.broadcaster_id,
            },
            "transport": {"method": "websocket", "session_id": session_id},
        }
        for attempt in (1, 2):
            token = self.current_user_token()
            async with http.post(SUBSCRIBE_URL, headers=self._headers(token), json=body) as r:
                if r.status in (200, 202, 409):
                    log.info("Subscribed to channel.chat.message")
                    self._set("chat_subscribed", True)
                    return True
                text = await r.text()
                # 401: the token may have been rotated on disk meanwhile
                if r.status == 401 and attempt == 1:
                    log.info("Subscribe got 401, retrying with the latest token")
                    continue
                log.warning("Subscribe failed %s: %s", r.status, text[:300])
                break
        self._set("chat_subscribed", False)
        return False

    def _on_notification(self, data: dict[str, Any]) -> Optional[tuple[str, str, str]]:
        payload = data.get("payload") or {}
        if (payload.get("subscription") or {}).get("type") != "channel.chat.message":
            return None
        ev = payload.get("event") or {}
        login = (ev.get("chatter_user_login") or "").lower()
        user_id = str(ev.get("chatter_user_id") or "")
        text = ((ev.get("message") or {}).get("text") or "").strip()
        return login, text, user_id

    async def _session(self, ws_url: str) -> Optional[str]:
        """One websocket session. Returns a reconnect URL when Twitch asks for one."""
        next_resub = 0.0
        async with aiohttp.ClientSession() as http:
            async with http.ws_connect(ws_url, autoping=True) as ws:
                session_id = None
                keepalive = 35.0
                self._set("chat_ws", True)
                self._set("chat_subscribed", False)

                while not self._stop.is_set():
                    now = time.monotonic()
                    if session_id and not self.snapshot()["chat_subscribed"] and now >= next_resub:
                        await self._subscribe(http, session_id)
                        next_resub = now + RESUB_MIN_INTERVAL_SEC

                    try:
                        msg = await asyncio.wait_for(ws.receive(), timeout=keepalive + 5.0)
                    except asyncio.TimeoutError:
                        log.info("EventSub keepalive timeout; reconnecting")
                        return None

                    if msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        return None
                    if msg.type != aiohttp.WSMsgType.TEXT:
                        continue

                    data = json.loads(msg.data)
                    mtype = (data.get("metadata") or {}).get("message_type")
                    session = (data.get("payload") or {}).get("session") or {}
                    if mtype == "session_welcome":
                        session_id = session.get("id")
                        try:
                            keepalive = float(session.get("keepalive_timeout_seconds") or keepalive)
                        except (TypeError, ValueError):
                            pass
                        next_resub = 0.0
                    elif mtype == "session_reconnect":
                        url = session.get("reconnect_url")
                        log.info("EventSub reconnect -> %s", url)
                        return url
                    elif mtype == "notification":
                        hit = self._on_notification(data)
                        if hit:
                            # OBS and Helix calls block; keep them off the event loop
                            await asyncio.to_thread(self.handle_message, *hit)
        return None

    async def run(self) -> None:
        if not self.configured():
            log.warning("TWITCH_CLIENT_ID/TWITCH_BROADCASTER_ID missing; chat disabled")
            return
        ws_url = self.ws_url
        while not self._stop.is_set():
            if not self.current_user_token():
                self._set("chat_ws", False)
                await asyncio.sleep(5)
                continue
            reconnect = None
            try:
                reconnect = await self._session(ws_url)
            except Exception as e:
                log.warning("EventSub loop error: %s", e)
            finally:
                self._set("chat_ws", False)
            if reconnect:
                ws_url = reconnect
                continue
            ws_url = self.ws_url
            await asyncio.sleep(RECONNECT_DELAY_SEC)

    def start_thread(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=lambda: asyncio.run(self.run()),
                                        daemon=True, name="chat-guard")
        self._thread.start()
        log.info("Chat guard started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        t, self._thread = self._thread, None
        # the websocket read only wakes up within one keepalive window
        if t is not None and t is not threading.current_thread():
            t.join(timeout)
            if t.is_alive():
                log.info("Chat guard still closing its websocket; leaving it to exit")
        log.info("Chat guard stopped")
