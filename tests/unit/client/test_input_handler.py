"""Tests for keyboard mapping."""

from __future__ import annotations

import pytest
from blessed.keyboard import Keystroke

from nearspace.client.input_handler import (
    get_pointer_move,
    is_center_key,
    is_mute_key,
    is_quit_key,
    is_walk_key,
)


class TestPointerKeys:
    @pytest.mark.parametrize(
        "key, move",
        [("w", (0, -1)), ("A", (-1, 0)), ("s", (0, 1)), ("l", (1, 0))],
    )
    def test_letter_keys(self, key: str, move: tuple[int, int]) -> None:
        assert get_pointer_move(Keystroke(key)) == move

    def test_arrow_keys(self) -> None:
        key = Keystroke("\x1b[A", code=259, name="KEY_UP")
        assert get_pointer_move(key) == (0, -1)

    def test_other_keys(self) -> None:
        assert get_pointer_move(Keystroke("x")) is None


class TestCommandKeys:
    def test_commands(self) -> None:
        assert is_walk_key(Keystroke(" "))
        assert is_center_key(Keystroke("C"))
        assert is_mute_key(Keystroke("m"))
        assert is_quit_key(Keystroke("q"))
        assert not is_quit_key(Keystroke("w"))
