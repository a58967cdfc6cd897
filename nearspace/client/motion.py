"""Local prediction and remote interpolation."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..common.constants import (
    MOVE_SPEED,
    POSITION_SEND_INTERVAL,
    REMOTE_SMOOTHING,
    SNAP_DISTANCE,
)
from ..common.protocol import Position
from .throttle import CallLater, Throttle

if TYPE_CHECKING:
    from ..audio.mixer import ChannelSplitter


@dataclass
class Pointer:
    """Pressed/touched input location in world coordinates."""

    down: bool = False
    x: float = 0.0
    y: float = 0.0


@dataclass
class SelfView:
    pos: Position = field(default_factory=Position)
    last_reported: Position = field(default_factory=Position)


@dataclass
class RemotePeerView:
    identity: str
    pos: Position
    goal: Position
    audio_channel: ChannelSplitter | None = None


def local_goal(pos: Position, pointer: Pointer) -> Position:
    """Where the local player heads this frame: the pointer while pressed."""
    if pointer.down:
        return Position(pointer.x, pointer.y)
    return Position(pos.x, pos.y)


def advance_local(
    pos: Position, goal: Position, dt: float, speed: float = MOVE_SPEED
) -> Position:
    """Move at constant speed toward goal, snapping once within SNAP_DISTANCE."""
    dx = goal.x - pos.x
    dy = goal.y - pos.y
    distance = math.hypot(dx, dy)
    if distance <= SNAP_DISTANCE:
        return Position(goal.x, goal.y)
    step = min(speed * dt, distance)
    theta = math.atan2(dy, dx)
    return Position(pos.x + math.cos(theta) * step, pos.y + math.sin(theta) * step)


def advance_remote(
    pos: Position, goal: Position, dt: float, gain: float = REMOTE_SMOOTHING
) -> Position:
    """First-order smoothing: cover a fixed fraction of the remaining distance."""
    alpha = min(gain * dt, 1.0)
    return Position(pos.x + (goal.x - pos.x) * alpha, pos.y + (goal.y - pos.y) * alpha)


class MotionEngine:
    """Owns the local view and one view per remote peer.

    ``report`` receives ``(x, y)`` whenever the local position changes,
    rate-limited by a Throttle.
    """

    def __init__(
        self,
        report: Callable[[float, float], None],
        send_interval: float = POSITION_SEND_INTERVAL,
        call_later: CallLater | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.me = SelfView()
        self.peers: dict[str, RemotePeerView] = {}
        self._throttle = Throttle(
            report, send_interval, clock=clock, call_later=call_later
        )

    def add_peer(self, identity: str, position: Position) -> RemotePeerView:
        view = self.peers.get(identity)
        if view is not None:
            view.goal = Position(position.x, position.y)
            return view
        view = RemotePeerView(
            identity,
            pos=Position(position.x, position.y),
            goal=Position(position.x, position.y),
        )
        self.peers[identity] = view
        return view

    def set_goal(self, identity: str, position: Position) -> bool:
        """Update a known peer's goal. Unknown identities are dropped."""
        view = self.peers.get(identity)
        if view is None:
            return False
        view.goal = Position(position.x, position.y)
        return True

    def remove_peer(self, identity: str) -> RemotePeerView | None:
        return self.peers.pop(identity, None)

    def clear(self) -> None:
        """Forget all peers and any pending report (identity replaced)."""
        self.peers.clear()
        self._throttle.cancel()
        # A fresh session starts at the origin on the server
        self.me.last_reported = Position()

    def step(self, dt: float, pointer: Pointer) -> None:
        me = self.me
        me.pos = advance_local(me.pos, local_goal(me.pos, pointer), dt)
        if (me.pos.x, me.pos.y) != (me.last_reported.x, me.last_reported.y):
            me.last_reported = Position(me.pos.x, me.pos.y)
            self._throttle(me.pos.x, me.pos.y)

        for view in self.peers.values():
            view.pos = advance_remote(view.pos, view.goal, dt)
