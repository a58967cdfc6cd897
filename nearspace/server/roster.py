"""Table of connected participants and their last known positions."""

from __future__ import annotations

import math
import numbers
import uuid
from collections.abc import Callable, Iterator

from ..common.constants import POSITION_LIMIT
from ..common.protocol import PlayerInfo, Position
from .participant import Participant


def _new_identity() -> str:
    return str(uuid.uuid4())


def is_coordinate(value: object) -> bool:
    """True for finite real numbers. Booleans are not coordinates."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # Exact numbers too large for a float are still finite
        return True


class Roster:
    """Connected participants keyed by identity.

    Only mutated from the server's event loop, so no locking is needed.
    """

    def __init__(
        self,
        limit: float = POSITION_LIMIT,
        identity_factory: Callable[[], str] = _new_identity,
    ) -> None:
        self.limit = limit
        self._identity_factory = identity_factory
        self._participants: dict[str, Participant] = {}
        # Identities are never reused for the lifetime of the process
        self._issued: set[str] = set()

    def __len__(self) -> int:
        return len(self._participants)

    def __contains__(self, identity: object) -> bool:
        return identity in self._participants

    def __iter__(self) -> Iterator[Participant]:
        return iter(list(self._participants.values()))

    def get(self, identity: str) -> Participant | None:
        return self._participants.get(identity)

    def connect(self) -> str:
        """Register a new participant at the origin and return its identity."""
        identity = self._identity_factory()
        if identity in self._issued:
            raise ValueError(f"Identity {identity!r} was already issued")
        self._issued.add(identity)
        self._participants[identity] = Participant(identity)
        return identity

    def disconnect(self, identity: str) -> bool:
        """Remove a participant. Returns False if it was already gone."""
        return self._participants.pop(identity, None) is not None

    def snapshot(self, excluding: str | None = None) -> list[PlayerInfo]:
        """Identities and positions of everyone except ``excluding``."""
        return [
            p.info() for ident, p in self._participants.items() if ident != excluding
        ]

    def clamp(self, value: float) -> float:
        return float(max(-self.limit, min(self.limit, value)))

    def update_position(
        self, identity: str, x: object, y: object
    ) -> Position | None:
        """Store a clamped position.

        Returns the stored position, or None if the report was ignored
        (non-finite or non-numeric coordinates, unknown identity).
        """
        if not is_coordinate(x) or not is_coordinate(y):
            return None
        participant = self._participants.get(identity)
        if participant is None:
            return None
        participant.x = self.clamp(x)  # type: ignore[arg-type]
        participant.y = self.clamp(y)  # type: ignore[arg-type]
        return participant.position
