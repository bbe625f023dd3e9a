"""CPU address space: ROM/RAM dispatch, I/O registers, timer and DMA."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable

from .apu import Apu
from .cartridge import Cartridge
from .pad import Joypad
from .ppu import BGP, OBP0, OBP1, Ppu

_MASK32 = 0xFFFFFFFF
TIMER_OFF = 0xFFFFFFFF

# TAC input clock select -> shift of the 1048576 Hz machine clock.
TIMER_SHIFTS = (8, 2, 4, 6)

_IO = 0x100
R_PAD = _IO + 0x00
R_DIV = _IO + 0x04
R_TIMA = _IO + 0x05
R_TMA = _IO + 0x06
R_TAC = _IO + 0x07
R_IF = _IO + 0x0F
R_LY = _IO + 0x44
R_LYC = _IO + 0x45
R_BANK = _IO + 0x50
R_IE = _IO + 0xFF

_PALETTE_REGISTERS = {0x47: BGP, 0x48: OBP0, 0x49: OBP1}

BOOT_ROM = bytes(
    [
        0x31, 0xFE, 0xFF, 0xAF, 0x21, 0xFF, 0x9F, 0x32, 0xCB, 0x7C, 0x20, 0xFB, 0x21, 0x26, 0xFF, 0x0E,
        0x11, 0x3E, 0x80, 0x32, 0xE2, 0x0C, 0x3E, 0xF3, 0xE2, 0x32, 0x3E, 0x77, 0x77, 0x3E, 0xFC, 0xE0,
        0x47, 0x11, 0x04, 0x01, 0x21, 0x10, 0x80, 0x1A, 0xCD, 0x95, 0x00, 0xCD, 0x96, 0x00, 0x13, 0x7B,
        0xFE, 0x34, 0x20, 0xF3, 0x11, 0xD8, 0x00, 0x06, 0x08, 0x1A, 0x13, 0x22, 0x23, 0x05, 0x20, 0xF9,
        0x3E, 0x19, 0xEA, 0x10, 0x99, 0x21, 0x2F, 0x99, 0x0E, 0x0C, 0x3D, 0x28, 0x08, 0x32, 0x0D, 0x20,
        0xF9, 0x2E, 0x0F, 0x18, 0xF3, 0x67, 0x3E, 0x64, 0x57, 0xE0, 0x42, 0x3E, 0x91, 0xE0, 0x40, 0x04,
        0x1E, 0x02, 0x0E, 0x0C, 0xF0, 0x44, 0xFE, 0x90, 0x20, 0xFA, 0x0D, 0x20, 0xF7, 0x1D, 0x20, 0xF2,
        0x0E, 0x13, 0x24, 0x7C, 0x1E, 0x83, 0xFE, 0x62, 0x28, 0x06, 0x1E, 0xC1, 0xFE, 0x64, 0x20, 0x06,
        0x7B, 0xE2, 0x0C, 0x3E, 0x87, 0xE2, 0xF0, 0x42, 0x90, 0xE0, 0x42, 0x15, 0x20, 0xD2, 0x05, 0x20,
        0x4F, 0x16, 0x20, 0x18, 0xCB, 0x4F, 0x06, 0x04, 0xC5, 0xCB, 0x11, 0x17, 0xC1, 0xCB, 0x11, 0x17,
        0x05, 0x20, 0xF5, 0x22, 0x23, 0x22, 0x23, 0xC9, 0xCE, 0xED, 0x66, 0x66, 0xCC, 0x0D, 0x00, 0x0B,
        0x03, 0x73, 0x00, 0x83, 0x00, 0x0C, 0x00, 0x0D, 0x00, 0x08, 0x11, 0x1F, 0x88, 0x89, 0x00, 0x0E,
        0xDC, 0xCC, 0x6E, 0xE6, 0xDD, 0xDD, 0xD9, 0x99, 0xBB, 0xBB, 0x67, 0x63, 0x6E, 0x0E, 0xEC, 0xCC,
        0xDD, 0xDC, 0x99, 0x9F, 0xBB, 0xB9, 0x33, 0x3E, 0x3C, 0x42, 0xB9, 0xA5, 0xB9, 0xA5, 0x42, 0x3C,
        0x21, 0x04, 0x01, 0x11, 0xA8, 0x00, 0x1A, 0x13, 0xBE, 0x20, 0xFE, 0x23, 0x7D, 0xFE, 0x34, 0x20,
        0xF5, 0x06, 0x19, 0x78, 0x86, 0x23, 0x05, 0x20, 0xFB, 0x86, 0x20, 0xFE, 0x3E, 0x01, 0xE0, 0x50,
    ]
)


def _noop() -> None:
    return None


@dataclass
class Timer:
    """DIV and TIMA counters derived from the machine clock.

    The counters are not stored; their value at time `now` is the clock
    shifted down plus a base that is adjusted whenever they are written.
    """

    div_base: int = 0
    base: int = 0
    shift: int = 0
    deadline: int = 0x7FFFFFFF

    def reload(self, value: int, now: int) -> None:
        """Set TIMA to `value` at time `now` and recompute the overflow time."""
        ticks = (now & _MASK32) >> self.shift
        self.base = (value - ticks - 256) & _MASK32
        self.deadline = (((ticks - self.base) & _MASK32) << self.shift) & _MASK32

    def counter(self, now: int) -> int:
        """Current TIMA value."""
        return (((now & _MASK32) >> self.shift) + self.base) & 0xFF

    def divider(self, now: int) -> int:
        """Current DIV value."""
        return (((now & _MASK32) >> 6) + self.div_base) & 0xFF

    def reset_divider(self, now: int) -> None:
        """Make DIV read 0 at time `now`."""
        self.div_base = -((now & _MASK32) >> 6) & _MASK32


class Memory:
    """The 64 KiB address space seen by the CPU.

    `clock` is a zero-argument callable giving the current machine clock.
    `interrupt_hook` runs after IF or IE is written and `lyc_hook` after
    LYC is written; both default to doing nothing.
    """

    def __init__(
        self,
        cartridge: Cartridge | None = None,
        ppu: Ppu | None = None,
        apu: Apu | None = None,
        joypad: Joypad | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.cartridge = cartridge if cartridge is not None else Cartridge.empty()
        self.clock = clock if clock is not None else (lambda: 0)
        self.ppu = ppu if ppu is not None else Ppu()
        self.vram = self.ppu.vram
        self.hram = self.ppu.hram
        if apu is None:
            apu = Apu(memoryview(self.hram)[_IO:], None, 44100, self.clock())
        self.apu = apu
        self.joypad = joypad if joypad is not None else Joypad()
        self.ram = bytearray(0x2000)
        self.timer = Timer()
        self.interrupt_hook: Callable[[], None] = _noop
        self.lyc_hook: Callable[[], None] = _noop

    def clear_ram(self, randomize: bool = True) -> None:
        """Fill work RAM with random bytes or zeros and zero OAM and I/O.

        The register page is shared with the APU, which must be reset
        afterwards to restore its power-on values.
        """
        if randomize:
            self.ram[:] = random.randbytes(len(self.ram))
        else:
            self.ram[:] = bytes(len(self.ram))
        self.hram[:] = bytes(len(self.hram))

    @property
    def boot_rom_mapped(self) -> bool:
        return self.hram[R_BANK] == 0

    # ------------------------------------------------------------------
    # byte access

    def read(self, address: int) -> int:
        address &= 0xFFFF
        if address < 0x4000:
            if address < 0x100 and self.boot_rom_mapped:
                return BOOT_ROM[address]
            return self.cartridge.read_rom0(address)
        if address < 0x8000:
            return self.cartridge.read_romx(address)
        if address < 0xA000:
            return self.vram[address & 0x1FFF]
        if address < 0xC000:
            return self.cartridge.read_ram(address)
        if address < 0xFE00:
            return self.ram[address & 0x1FFF]
        return self._read_io(address)

    def write(self, address: int, value: int) -> None:
        address &= 0xFFFF
        value &= 0xFF
        if address < 0x8000:
            self.cartridge.write_control(address, value)
        elif address < 0xA000:
            self.vram[address & 0x1FFF] = value
            self.ppu.invalidate_tile(address)
        elif address < 0xC000:
            self.cartridge.write_ram(address, value)
        elif address < 0xFE00:
            self.ram[address & 0x1FFF] = value
        else:
            self._write_io(address, value)

    def read16(self, address: int) -> int:
        return self.read(address) | (self.read((address + 1) & 0xFFFF) << 8)

    def write16(self, address: int, value: int) -> None:
        self.write(address, value & 0xFF)
        self.write((address + 1) & 0xFFFF, (value >> 8) & 0xFF)

    # ------------------------------------------------------------------
    # I/O page

    def _read_io(self, address: int) -> int:
        hram = self.hram
        if address >= 0xFF00:
            if 0xFF10 <= address <= 0xFF3F:
                return self.apu.read(address & 0xFF, self.clock())
            register = address & 0xFF
            if register == 0x00:
                return self.joypad.read(hram[R_PAD])
            if register == 0x04:
                return self.timer.divider(self.clock())
            if register == 0x05 and hram[R_TAC] & 4:
                return self.timer.counter(self.clock())
            if register == 0x50:
                return hram[R_BANK] & 1
        return hram[address & 0x1FF]

    def _write_io(self, address: int, value: int) -> None:
        hram = self.hram
        if address >= 0xFF00:
            if 0xFF10 <= address <= 0xFF3F:
                self.apu.write(address & 0xFF, value, self.clock())
                return
            register = address & 0xFF
            timer = self.timer
            if register == 0x04:
                timer.reset_divider(self.clock())
                return
            if register == 0x05:
                hram[R_TIMA] = value
                timer.reload(value, self.clock())
                return
            if register == 0x07:
                self._write_tac(value)
                return
            if register == 0x0F:
                hram[R_IF] = value
                self.interrupt_hook()
                return
            if register == 0xFF:
                hram[R_IE] = value
                self.interrupt_hook()
                return
            if register == 0x44:
                hram[R_LY] = 0
                return
            if register == 0x45:
                hram[R_LYC] = value
                self.lyc_hook()
                return
            if register == 0x46:
                source = value << 8
                for offset in range(0xA0):
                    hram[offset] = self.read(source + offset)
            elif register in _PALETTE_REGISTERS:
                self.ppu.set_palette(_PALETTE_REGISTERS[register], value)
        hram[address & 0x1FF] = value

    def _write_tac(self, value: int) -> None:
        hram = self.hram
        timer = self.timer
        if hram[R_TAC] == value:
            return
        now = self.clock()
        if hram[R_TAC] & 4:
            hram[R_TIMA] = timer.counter(now)
        timer.shift = TIMER_SHIFTS[value & 3]
        timer.deadline = TIMER_OFF
        if value & 4:
            timer.reload(hram[R_TIMA], now)
        hram[R_TAC] = value