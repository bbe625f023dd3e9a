"""Window, input, audio output and the command that runs a ROM."""

from __future__ import annotations

import argparse
import sys
import time
from array import array
from collections import deque
from pathlib import Path
from typing import Callable, Sequence

import pygame

from .cartridge import Cartridge
from .errors import EmulatorError, UndefinedOpcodeError
from .machine import DEFAULT_RATE, GameBoy
from .pad import Button, Joypad
from .ppu import DMG_PALETTE, SCREEN_HEIGHT, SCREEN_WIDTH
from .sound import SampleRing

LIMITED_FRAME_TIME = 1.0 / 60
UNLIMITED_FRAME_TIME = 1.0 / 1000
_AVERAGE_FRAMES = 8

QUIT = "quit"
TOGGLE_SOUND = "toggle_sound"
TOGGLE_LIMIT = "toggle_limit"
TOGGLE_BLEND = "toggle_blend"

_KEYMAP = {
    pygame.K_s: Button.START,
    pygame.K_a: Button.SELECT,
    pygame.K_z: Button.B,
    pygame.K_x: Button.A,
    pygame.K_RETURN: Button.ALL,
    pygame.K_DOWN: Button.DOWN,
    pygame.K_UP: Button.UP,
    pygame.K_LEFT: Button.LEFT,
    pygame.K_RIGHT: Button.RIGHT,
}

_COMMAND_KEYS = {
    pygame.K_F12: TOGGLE_SOUND,
    pygame.K_F8: TOGGLE_LIMIT,
    pygame.K_F9: TOGGLE_BLEND,
}


class FrameLimiter:
    """Holds each frame to a minimum duration and tracks the frame rate."""

    def __init__(self, clock: Callable[[], float] = time.perf_counter) -> None:
        self.clock = clock
        self._last = clock()
        self._durations: deque[float] = deque(maxlen=_AVERAGE_FRAMES)

    def wait(self, limited: bool = True) -> float:
        """Block until the frame has lasted long enough; return its duration."""
        target = LIMITED_FRAME_TIME if limited else UNLIMITED_FRAME_TIME
        while True:
            now = self.clock()
            elapsed = now - self._last
            if elapsed >= target:
                break
            remaining = target - elapsed
            if remaining > 0.002:
                time.sleep(remaining - 0.001)
        self._last = now
        self._durations.append(elapsed)
        return elapsed

    def average_fps(self) -> float:
        """Frames per second over the last few frames, 0 if unknown."""
        if not self._durations:
            return 0.0
        average = sum(self._durations) / len(self._durations)
        return 1.0 / average if average > 0 else 0.0


def format_title(title: str, fps: float) -> str:
    """Window caption showing the game title and frame rate."""
    return f"GameBoy - {title} [{int(fps)} fps]"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dmgemu", description="Run a Game Boy ROM.")
    parser.add_argument("rom", nargs="?", help="ROM image to load")
    parser.add_argument("--scale", type=int, default=4, help="pixel scale factor")
    parser.add_argument("--border", type=int, default=0, help="border width in pixels")
    parser.add_argument("--no-limit", action="store_true", help="do not hold 60 fps")
    parser.add_argument("--no-blend", action="store_true", help="no LCD ghosting")
    parser.add_argument("--skip-boot", action="store_true", help="skip the boot ROM")
    parser.add_argument("--mute", action="store_true", help="start with sound off")
    args = parser.parse_args(argv)
    if args.rom and args.rom.startswith('"'):
        args.rom = args.rom[1:-1]
    if args.scale < 1:
        parser.error("scale must be at least 1")
    if args.border < 0:
        parser.error("border must not be negative")
    return args


def _rgb(colour: int) -> tuple[int, int, int]:
    return (colour >> 16) & 0xFF, (colour >> 8) & 0xFF, colour & 0xFF


class Window:
    """Scaled LCD output with keyboard input."""

    def __init__(self, title: str, scale: int = 4, border: int = 0) -> None:
        self.scale = scale
        self.border = border
        pygame.display.init()
        size = (
            (SCREEN_WIDTH + 2 * border) * scale,
            (SCREEN_HEIGHT + 2 * border) * scale,
        )
        self.surface = pygame.display.set_mode(size)
        self._set_title(f"GameBoy - {title}")
        self.surface.fill((0, 0, 0))
        pygame.display.flip()

    def _set_title(self, text: str) -> None:
        pygame.display.set_caption(text)

    def blit(self, pixels: Sequence[int]) -> None:
        """Show a frame of 0xRRGGBB pixels."""
        if len(pixels) != SCREEN_WIDTH * SCREEN_HEIGHT:
            raise ValueError("frame must hold 160x144 pixels")
        colours = array("I", (p | 0xFF000000 for p in pixels))
        if sys.byteorder == "little":
            colours.byteswap()
        image = pygame.image.frombuffer(
            colours.tobytes(), (SCREEN_WIDTH, SCREEN_HEIGHT), "ARGB"
        )
        scale = self.scale
        scaled = pygame.transform.scale(
            image, (SCREEN_WIDTH * scale, SCREEN_HEIGHT * scale)
        )
        if self.border:
            self.surface.fill(_rgb(DMG_PALETTE[0]))
        offset = self.border * scale
        self.surface.blit(scaled, (offset, offset))
        pygame.display.flip()

    def poll(self, joypad: Joypad) -> list[str]:
        """Apply pending key events to the pad and return requested commands."""
        commands: list[str] = []
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                commands.append(QUIT)
            elif event.type in (pygame.KEYDOWN, pygame.KEYUP):
                pressed = event.type == pygame.KEYDOWN
                if event.key in _COMMAND_KEYS:
                    if not pressed:
                        commands.append(_COMMAND_KEYS[event.key])
                elif event.key in _KEYMAP:
                    joypad.set(_KEYMAP[event.key], pressed)
        return commands

    def close(self) -> None:
        pygame.display.quit()


class _AudioOutput:
    """Plays queued samples from a ring buffer through the mixer."""

    def __init__(self, rate: int) -> None:
        pygame.mixer.init(frequency=rate, size=-8, channels=2, buffer=512)
        self._channel = pygame.mixer.Channel(0)

    def feed(self, ring: SampleRing) -> None:
        nbytes = ring.pending() * 2
        if not nbytes:
            return
        sound = pygame.mixer.Sound(buffer=ring.pull(nbytes))
        if self._channel.get_busy():
            self._channel.queue(sound)
        else:
            self._channel.play(sound)

    def close(self) -> None:
        pygame.mixer.quit()


def _open_audio(rate: int) -> _AudioOutput | None:
    try:
        return _AudioOutput(rate)
    except pygame.error:
        return None


def _load_cartridge(rom: str | None) -> Cartridge:
    if not rom:
        return Cartridge.empty()
    try:
        return Cartridge.from_file(rom, Path.cwd())
    except OSError as exc:
        raise EmulatorError(f"couldn't load game '{rom}'") from exc


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        cartridge = _load_cartridge(args.rom)
    except EmulatorError as exc:
        print(f"SYSTEM ERROR: {exc}")
        return 1

    ring = SampleRing()
    audio = None if args.mute else _open_audio(DEFAULT_RATE)
    try:
        gb = GameBoy(cartridge, ring if audio else None, DEFAULT_RATE, args.skip_boot)
    except EmulatorError as exc:
        print(f"SYSTEM ERROR: {exc}")
        if audio:
            audio.close()
        return 1
    gb.ppu.blend = not args.no_blend
    limited = not args.no_limit
    title = getattr(cartridge, "title", "")

    window = Window(title, args.scale, args.border)
    limiter = FrameLimiter()
    frames = 0
    try:
        while True:
            frame = gb.run_frame()
            limiter.wait(limited)
            window.blit(frame)
            if audio:
                audio.feed(ring)
            for command in window.poll(gb.joypad):
                if command == QUIT:
                    gb.shutdown()
                    return 0
                if command == TOGGLE_LIMIT:
                    limited = not limited
                elif command == TOGGLE_BLEND:
                    gb.ppu.blend = not gb.ppu.blend
                elif command == TOGGLE_SOUND:
                    if audio:
                        audio.close()
                        audio = None
                        gb.apu.sink = None
                    else:
                        audio = _open_audio(DEFAULT_RATE)
                        if audio:
                            gb.apu.reset(gb.cpu.clock)
                            gb.apu.sink = ring
            frames += 1
            if frames % _AVERAGE_FRAMES == 0:
                window._set_title(format_title(title, limiter.average_fps()))
    except UndefinedOpcodeError as exc:
        print(f"GB SM83 and hardware register map: {gb.register_dump()}")
        print(f"SYSTEM ERROR: {exc}")
        return 1
    except EmulatorError as exc:
        print(f"SYSTEM ERROR: {exc}")
        return 1
    finally:
        window.close()
        if audio:
            audio.close()