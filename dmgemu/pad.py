"""Joypad state as seen through the P1 register."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Button(Enum):
    """A pad input: (group, bit mask). Group 0 is buttons, group 1 directions."""

    A = (0, 0x1)
    B = (0, 0x2)
    SELECT = (0, 0x4)
    START = (0, 0x8)
    ALL = (0, 0xF)
    RIGHT = (1, 0x1)
    LEFT = (1, 0x2)
    UP = (1, 0x4)
    DOWN = (1, 0x8)

    @property
    def group(self) -> int:
        return self.value[0]

    @property
    def mask(self) -> int:
        return self.value[1]


@dataclass
class Joypad:
    """Pressed inputs; bits set to 1 mean pressed."""

    buttons: int = 0
    directions: int = 0

    def reset(self) -> None:
        self.buttons = 0
        self.directions = 0

    def set(self, button: Button, pressed: bool) -> None:
        if button.group == 0:
            self.buttons = self._apply(self.buttons, button.mask, pressed)
        else:
            self.directions = self._apply(self.directions, button.mask, pressed)

    @staticmethod
    def _apply(state: int, mask: int, pressed: bool) -> int:
        return state | mask if pressed else state & ~mask & 0xF

    def press(self, button: Button) -> None:
        self.set(button, True)

    def release(self, button: Button) -> None:
        self.set(button, False)

    def read(self, select: int) -> int:
        """Return the low nibble of P1 for the given select bits (0 = pressed)."""
        state = 0
        if select & 0x20:
            state = self.directions
        if select & 0x10:
            state = self.buttons
        return ~state & 0xF