"""Participant state for the server."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from ..common.protocol import PlayerInfo, Position


@dataclass
class Participant:
    identity: str
    x: float = 0.0
    y: float = 0.0
    connected_at: float = field(default_factory=time.monotonic)

    @property
    def position(self) -> Position:
        return Position(self.x, self.y)

    def info(self) -> PlayerInfo:
        return PlayerInfo(self.identity, self.position)
