from __future__ import annotations
from enum import Enum
from typing import Mapping


class ChatCommand(Enum):
    NONE = "none"
    LIVE = "live"
    LOW = "low"
    BRB = "brb"
    REFRESH = "refresh"
    STATUS = "status"
    TRIGGER = "trigger"
    FIX = "fix"
    SWITCH_SCENE = "switch_scene"
    START = "start"
    STOP = "stop"


def parse_command(text: str, words: Mapping[str, str]) -> tuple[ChatCommand, str]:
    """Match ``text`` against the configured command words.

    Matching is case-insensitive on the command word only; arguments keep
    the case they were typed in (scene names are looked up case-insensitively later).
    """
    msg = (text or "").strip()
    lower = msg.lower()
    for cmd in ChatCommand:
        word = (words.get(cmd.value) or "").lower()
        if not word:
            continue
        if lower == word:
            return cmd, ""
        if lower.startswith(word + " "):
            return cmd, msg[len(word) + 1:].strip()
    return ChatCommand.NONE, ""
