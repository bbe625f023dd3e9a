"""Picture processing: tile decoding, sprite selection and line rendering.

`vram` is the 8 KiB video RAM (0x8000-0x9FFF). `hram` is the 512-byte
block covering 0xFE00-0xFFFF: OAM lives at offset 0, I/O registers at
offset 0x100. Rendered pixels are 0xRRGGBB integers kept in `frame`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import MutableSequence, Sequence

SCREEN_WIDTH = 160
SCREEN_HEIGHT = 144

# Milk-to-coffee shades for colour numbers 0..3.
DMG_PALETTE = (0xFFE78F, 0xDFB05F, 0x90783F, 0x4F381F)

BGP = 0
OBP0 = 1
OBP1 = 2
_PALETTE_OFFSETS = {BGP: 0, OBP0: 4, OBP1: 8}

SPR_PRIORITY = 0x80
SPR_FLIP_Y = 0x40
SPR_FLIP_X = 0x20
SPR_PALETTE = 0x10

MAX_SPRITES_PER_LINE = 10
OAM_ENTRIES = 40

_IO = 0x100
_LCDC = _IO + 0x40
_SCY = _IO + 0x42
_SCX = _IO + 0x43
_LY = _IO + 0x44
_WY = _IO + 0x4A
_WX = _IO + 0x4B

_LINE_OFFSET = 8
_LINE_SIZE = 192
_WINDOW_OFF = 167
_HALF_MASK = 0x7F7F7F


@dataclass(frozen=True)
class Sprite:
    """One OAM entry."""

    y: int
    x: int
    tile: int
    attributes: int

    @classmethod
    def from_oam(cls, oam: Sequence[int], index: int) -> Sprite:
        base = index * 4
        return cls(oam[base], oam[base + 1], oam[base + 2], oam[base + 3])


class Ppu:
    """Scanline renderer for background, window and sprites."""

    def __init__(
        self,
        vram: MutableSequence[int] | None = None,
        hram: MutableSequence[int] | None = None,
    ) -> None:
        self.vram = vram if vram is not None else bytearray(0x2000)
        self.hram = hram if hram is not None else bytearray(0x200)
        self.blend = True
        self.reset()

    def reset(self) -> None:
        """Clear the tile cache, palettes, line buffer and frame."""
        self._tiles: dict[tuple[int, bool], bytes] = {}
        self.line = bytearray(_LINE_SIZE)
        self.palette = [0] * 64
        self.frame = [0] * (SCREEN_WIDTH * SCREEN_HEIGHT)
        self.window_line = -1
        self.sprites: list[Sprite] = []

    # ------------------------------------------------------------------
    # tiles and palettes

    def invalidate_tile(self, address: int) -> None:
        """Forget the decoded tile covering a video RAM address."""
        tile = (address & 0x1FFF) >> 4
        self._tiles.pop((tile, False), None)
        self._tiles.pop((tile, True), None)

    def _decode(self, tile: int, mirrored: bool) -> bytes:
        base = tile * 16
        vram = self.vram
        out = bytearray(64)
        for row in range(8):
            lo = vram[base + 2 * row]
            hi = vram[base + 2 * row + 1]
            for x in range(8):
                bit = x if mirrored else 7 - x
                out[row * 8 + x] = ((lo >> bit) & 1) | (((hi >> bit) & 1) << 1)
        return bytes(out)

    def _tile_row(self, tile: int, mirrored: bool, row: int) -> bytes:
        key = (tile, mirrored)
        data = self._tiles.get(key)
        if data is None:
            data = self._decode(tile, mirrored)
            self._tiles[key] = data
        return data[row * 8 : row * 8 + 8]

    def set_palette(self, which: int, value: int) -> None:
        """Load BGP, OBP0 or OBP1 from a register value."""
        try:
            offset = _PALETTE_OFFSETS[which]
        except KeyError:
            raise ValueError(f"unknown palette {which!r}") from None
        for shade in range(4):
            self.palette[offset + shade] = (value >> (shade * 2)) & 3

    # ------------------------------------------------------------------
    # sprites

    def enumerate_sprites(self) -> list[Sprite]:
        """Select up to ten sprites on the current line, ordered by X."""
        hram = self.hram
        lcdc = hram[_LCDC]
        height = ((lcdc & 4) << 1) + 8
        line = hram[_LY] + 16
        self.sprites = []
        if not lcdc & 2:
            return self.sprites
        used = [
            sprite
            for sprite in (Sprite.from_oam(hram, i) for i in range(OAM_ENTRIES))
            if 0 <= line - sprite.y < height
        ]
        if len(used) >= 2:
            # Exchange sort of only the first ten positions, as the hardware
            # list keeps just the leftmost ten.
            for i in range(min(len(used) - 1, MAX_SPRITES_PER_LINE)):
                for j in range(i + 1, len(used)):
                    if used[i].x > used[j].x:
                        used[i], used[j] = used[j], used[i]
            del used[MAX_SPRITES_PER_LINE:]
        self.sprites = used
        return self.sprites

    # ------------------------------------------------------------------
    # rendering

    @staticmethod
    def _map_tile(entry: int, tile_mask: int) -> int:
        signed = entry - 256 if entry & 0x80 else entry
        return (signed + 256) & tile_mask

    def render_line(self) -> None:
        """Draw line LY into the line buffer and copy it to the frame."""
        hram = self.hram
        vram = self.vram
        line = self.line
        lcdc = hram[_LCDC]
        ly = hram[_LY]

        wx = _WINDOW_OFF
        if lcdc & 0x20 and hram[_WY] <= ly:
            self.window_line += 1
            if hram[_WX] < _WINDOW_OFF:
                wx = hram[_WX]

        tile_mask = ~((lcdc & 0x10) << 4)

        if lcdc & 1 and wx > 7:
            scx = hram[_SCX]
            y = ly + hram[_SCY]
            map_base = 0x1800 + ((lcdc & 8) << 7) + ((y & 0xF8) << 2)
            column = (scx >> 3) & 31
            row = y & 7
            at = _LINE_OFFSET - (scx & 7)
            for _ in range(((scx + wx) >> 3) - (scx >> 3)):
                tile = self._map_tile(vram[map_base + column], tile_mask)
                line[at : at + 8] = self._tile_row(tile, False, row)
                column = (column + 1) & 31
                at += 8

        if wx < _WINDOW_OFF:
            y = self.window_line
            map_base = 0x1800 + ((lcdc & 0x40) << 4) + ((y & 0xF8) << 2)
            row = y & 7
            at = 1 + wx
            for offset in range((166 + 8 - wx) >> 3):
                tile = self._map_tile(vram[map_base + offset], tile_mask)
                line[at : at + 8] = self._tile_row(tile, False, row)
                at += 8

        self._draw_sprites(lcdc, ly)
        self._refresh(ly)

    def _draw_sprites(self, lcdc: int, ly: int) -> None:
        line = self.line
        height_mask = ((lcdc & 4) << 1) + 7
        tile_mask = ~((lcdc & 4) >> 2)
        for sprite in self.sprites:
            x = sprite.x
            if not 1 <= x <= _WINDOW_OFF:
                continue
            attr = sprite.attributes
            y = ly + 16 - sprite.y
            if attr & SPR_FLIP_Y:
                y ^= height_mask
            pixels = self._tile_row(
                (sprite.tile & tile_mask) + (y >> 3), bool(attr & SPR_FLIP_X), y & 7
            )
            palette = ((attr & SPR_PALETTE) >> 2) + 4
            if attr & SPR_PRIORITY:
                for j, pixel in enumerate(pixels):
                    if pixel:
                        current = line[x + j] or pixel + palette
                        line[x + j] = current | 0x80
            else:
                palette |= 0x80
                for j, pixel in enumerate(pixels):
                    if pixel and line[x + j] < 0x80:
                        line[x + j] = pixel + palette

    def _refresh(self, ly: int) -> None:
        if ly >= SCREEN_HEIGHT:
            return
        start = ly * SCREEN_WIDTH
        palette = self.palette
        colours = [
            DMG_PALETTE[palette[value & 0x3F]]
            for value in self.line[_LINE_OFFSET : _LINE_OFFSET + SCREEN_WIDTH]
        ]
        if self.blend:
            frame = self.frame
            for i, colour in enumerate(colours, start):
                frame[i] = (_HALF_MASK & (frame[i] >> 1)) + (_HALF_MASK & (colour >> 1))
        else:
            self.frame[start : start + SCREEN_WIDTH] = colours

    def vsync(self) -> list[int]:
        """Finish the frame: reset the window line counter, return the pixels."""
        self.window_line = -1
        return self.frame