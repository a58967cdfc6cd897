"""Terminal rendering with blessed."""

from __future__ import annotations

from blessed import Terminal

from ..common.constants import POSITION_LIMIT
from .motion import Pointer, RemotePeerView, SelfView

# Lines reserved below the map for status, peer list and controls
RESERVED_LINES = 8


class TerminalUI:
    def __init__(self, terminal: Terminal, limit: float = POSITION_LIMIT) -> None:
        self.term = terminal
        self.limit = limit

    def _map_size(self) -> tuple[int, int]:
        height = max(10, self.term.height - RESERVED_LINES)
        width = max(20, self.term.width)
        return width, height

    def world_to_cell(
        self, x: float, y: float, width: int, height: int
    ) -> tuple[int, int]:
        """Map world coordinates in [-limit, limit] onto a width x height grid."""
        span = 2 * self.limit
        col = round((x + self.limit) / span * (width - 1))
        row = round((y + self.limit) / span * (height - 1))
        return min(max(col, 0), width - 1), min(max(row, 0), height - 1)

    def render(
        self,
        me: SelfView,
        peers: list[RemotePeerView],
        pointer: Pointer,
        identity: str | None,
        is_muted: bool,
        mic_level: float,
    ) -> None:
        width, height = self._map_size()
        grid = [
            ["." if (c + r) % 8 == 0 else " " for c in range(width)]
            for r in range(height)
        ]

        # Pointer first so players draw over it
        px, py = self.world_to_cell(pointer.x, pointer.y, width, height)
        grid[py][px] = "+" if pointer.down else "x"
        for view in peers:
            col, row = self.world_to_cell(view.pos.x, view.pos.y, width, height)
            grid[row][col] = view.identity[:1].upper() or "?"
        col, row = self.world_to_cell(me.pos.x, me.pos.y, width, height)
        grid[row][col] = "@"

        clear_eol = str(self.term.clear_eol)
        output = ["".join(row_chars) + clear_eol for row_chars in grid]

        mute_status = self.term.red("MUTED") if is_muted else self.term.green("LIVE")
        level_chars = int(min(mic_level, 1.0) * 20)
        meter = "#" * level_chars + " " * (20 - level_chars)
        output.append(
            f"[{mute_status}] {identity or 'connecting...'} "
            f"at ({me.pos.x:.0f}, {me.pos.y:.0f}) Mic: [{meter}]{clear_eol}"
        )

        output.append(f"Peers: {len(peers)}{clear_eol}")
        for view in peers[: RESERVED_LINES - 4]:
            channel = view.audio_channel
            audio = (
                f"L {channel.left:.2f} R {channel.right:.2f}"
                if channel is not None
                else "no audio"
            )
            output.append(
                f"  {view.identity[:8]} at ({view.pos.x:.0f}, {view.pos.y:.0f}) "
                f"{audio}{clear_eol}"
            )

        output.append(
            f"Controls: WASD/HJKL/Arrows=Pointer, Space=Walk, C=Center, "
            f"M=Mute, Q=Quit{clear_eol}"
        )
        output.append(str(self.term.clear_eos))
        print(self.term.home + "\n".join(output), end="", flush=True)

    def cleanup(self) -> None:
        """Restore terminal state."""
        print(self.term.normal + self.term.clear, end="")
