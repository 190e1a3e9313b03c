from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .servers.base import BitrateInfo


class SwitchType(Enum):
    NORMAL = "normal"
    LOW = "low"
    OFFLINE = "offline"
    PREVIOUS = "previous"


# Reserved bitrate meaning "reconnected, no data yet": reuse the last good scene.
PREVIOUS_SENTINEL_KBPS = 1


@dataclass(frozen=True)
class Thresholds:
    low: int = 800
    rtt_low: int = 2500
    offline: int = 0       # 0 = disabled
    rtt_offline: int = 0   # 0 = disabled


def classify(info: "BitrateInfo", t: Thresholds) -> SwitchType:
    """Map a reading onto a switch type. First matching rule wins; cutoffs are inclusive."""
    if not info.is_online or info.bitrate_kbps == 0:
        return SwitchType.OFFLINE

    if t.offline > 0 and info.bitrate_kbps <= t.offline:
        return SwitchType.OFFLINE

    if t.rtt_offline > 0 and info.rtt_ms >= t.rtt_offline:
        return SwitchType.OFFLINE

    if info.bitrate_kbps == PREVIOUS_SENTINEL_KBPS:
        return SwitchType.PREVIOUS

    if t.low > 0 and info.bitrate_kbps <= t.low:
        return SwitchType.LOW

    if t.rtt_low > 0 and info.rtt_ms >= t.rtt_low:
        return SwitchType.LOW

    return SwitchType.NORMAL
