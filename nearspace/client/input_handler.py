"""Keyboard input handling."""

from blessed.keyboard import Keystroke

# Pointer mappings: key -> (dx, dy), screen-style y (down is positive)
POINTER_KEYS = {
    # WASD
    "w": (0, -1),
    "a": (-1, 0),
    "s": (0, 1),
    "d": (1, 0),
    # HJKL (vim-style)
    "h": (-1, 0),
    "j": (0, 1),
    "k": (0, -1),
    "l": (1, 0),
}

ARROW_KEYS = {
    "KEY_UP": (0, -1),
    "KEY_DOWN": (0, 1),
    "KEY_LEFT": (-1, 0),
    "KEY_RIGHT": (1, 0),
}


def get_pointer_move(key: Keystroke) -> tuple[int, int] | None:
    """Get pointer direction from key press, or None if not a pointer key."""
    if key.name in ARROW_KEYS:
        return ARROW_KEYS[key.name]
    return POINTER_KEYS.get(key.lower(), None)


def is_walk_key(key: Keystroke) -> bool:
    """Space presses/releases the pointer."""
    return str(key) == " "


def is_center_key(key: Keystroke) -> bool:
    return str(key).lower() == "c"


def is_mute_key(key: Keystroke) -> bool:
    return str(key).lower() == "m"


def is_quit_key(key: Keystroke) -> bool:
    return str(key).lower() == "q"
