"""Cartridge images, ROM headers and memory bank controllers."""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass
from pathlib import Path

from .errors import CartridgeError, MemoryTrapError

_KBIT = 128
_MBIT = 128 * 1024

ROM_SIZES = {
    0: 256 * _KBIT,
    1: 512 * _KBIT,
    2: 1 * _MBIT,
    3: 2 * _MBIT,
    4: 4 * _MBIT,
    5: 8 * _MBIT,
    6: 16 * _MBIT,
    7: 32 * _MBIT,
    8: 64 * _MBIT,
    52: 9 * _MBIT,
    53: 10 * _MBIT,
    54: 12 * _MBIT,
    64: 20 * _MBIT,
    65: 24 * _MBIT,
    74: 36 * _MBIT,
    75: 40 * _MBIT,
    76: 48 * _MBIT,
}

RAM_SIZES = {
    0: 0,
    1: 16 * _KBIT,
    2: 64 * _KBIT,
    3: 256 * _KBIT,
    4: 1 * _MBIT,
}

ROM_BANK_SIZE = 0x4000
RAM_BANK_SIZE = 0x2000

_TITLE_START = 0x134
_CHECKSUM_END = 0x14D
_HEADER_END = 0x150


def header_checksum(data) -> int:
    """Return the header checksum byte computed over the title area."""
    if len(data) < _CHECKSUM_END:
        raise CartridgeError("ROM image is too small to hold a header")
    total = sum(data[_TITLE_START:_CHECKSUM_END])
    return (0x100 - (total + 25)) & 0xFF


def rom_size_from_code(code: int) -> int:
    """Return the ROM size in bytes for a header size code."""
    try:
        return ROM_SIZES[code]
    except KeyError:
        raise CartridgeError("Unknown ROM size") from None


def ram_size_from_code(code: int) -> int:
    """Return the RAM size in bytes for a header size code."""
    try:
        return RAM_SIZES[code]
    except KeyError:
        raise CartridgeError("Unknown RAM size") from None


def _pow2_at_least(n: int) -> int:
    p = 1
    while p < n:
        p <<= 1
    return p


@dataclass(frozen=True)
class RomHeader:
    """The cartridge header found at 0x100 in every ROM image."""

    entry: bytes = bytes(4)
    logo: bytes = bytes(48)
    title: str = ""
    cart_type: int = 0
    rom_size_code: int = 0
    ram_size_code: int = 0
    country: int = 0
    licensee: int = 0
    version: int = 0
    header_checksum: int = 0
    global_checksum: int = 0
    computed_checksum: int = 0

    @classmethod
    def from_rom(cls, data) -> RomHeader:
        if len(data) < _HEADER_END:
            raise CartridgeError("ROM image is too small to hold a header")
        title = bytes(data[0x134:0x144]).split(b"\0", 1)[0].decode("latin-1")
        return cls(
            entry=bytes(data[0x100:0x104]),
            logo=bytes(data[0x104:0x134]),
            title=title,
            cart_type=data[0x147],
            rom_size_code=data[0x148],
            ram_size_code=data[0x149],
            country=data[0x14A],
            licensee=data[0x14B],
            version=data[0x14C],
            header_checksum=data[0x14D],
            global_checksum=int.from_bytes(bytes(data[0x14E:0x150]), "little"),
            computed_checksum=header_checksum(data),
        )

    def checksum_valid(self) -> bool:
        return self.header_checksum == self.computed_checksum


class RamAccess(enum.Enum):
    """How the external RAM window at 0xA000-0xBFFF currently behaves."""

    UNMAPPED = "unmapped"  # reads trap, writes are dropped
    DISABLED = "disabled"  # reads give 0, writes are dropped
    ENABLED = "enabled"


class Mapper:
    """Plain cartridge: no banking, optional RAM enable register."""

    maps_romx = False
    initial_ram_access = RamAccess.UNMAPPED

    def __init__(self, cartridge: Cartridge, ram_control: bool = False) -> None:
        self.cartridge = cartridge
        self.ram_control = ram_control

    def write(self, address: int, value: int) -> None:
        if self.ram_control and address < 0x2000:
            self.cartridge._set_ram_enabled((value & 0x0F) == 0x0A)


class MBC1(Mapper):
    """MBC1: 5+2 bit ROM bank with a ROM/RAM banking mode switch."""

    maps_romx = True

    def __init__(self, cartridge: Cartridge, ram_control: bool = False) -> None:
        super().__init__(cartridge, ram_control)
        self.mode2 = False

    def write(self, address: int, value: int) -> None:
        cart = self.cartridge
        if address < 0x2000:
            super().write(address, value)
        elif address < 0x4000:
            bank = (value & 0x1F) or 1
            if not self.mode2:
                bank |= cart.rom_bank & 0x60
            cart.set_rom_bank(bank)
        elif address < 0x6000:
            bank = value & 3
            if self.mode2:
                if cart.ram_bank_count:
                    cart.set_ram_bank(bank)
            else:
                cart.set_rom_bank((bank << 5) + (cart.rom_bank & 0x1F))
        elif address < 0x8000:
            mode2 = bool(value & 1)
            if mode2 == self.mode2:
                return
            self.mode2 = mode2
            cart.set_rom_bank((cart.rom_bank & 0x1F) or 1)
            if cart.ram_bank_count:
                cart.set_ram_bank(0)


class MBC2(Mapper):
    """MBC2: 4 bit ROM bank and 512 cells of built-in RAM."""

    maps_romx = True
    initial_ram_access = RamAccess.DISABLED

    def write(self, address: int, value: int) -> None:
        if address >= 0x4000:
            return
        nibble = value & 0x0F
        if address & 0x2100:
            self.cartridge.set_rom_bank(nibble or 1)
        else:
            self.cartridge._set_ram_enabled(nibble == 0x0A)


class MBC3(Mapper):
    """MBC3: 7 bit ROM bank; the real-time clock is not emulated."""

    maps_romx = True

    def write(self, address: int, value: int) -> None:
        cart = self.cartridge
        if address < 0x2000:
            super().write(address, value)
        elif address < 0x4000:
            cart.set_rom_bank(value or 1)
        elif address < 0x6000:
            if not value & ~3 and cart.ram_bank_count:
                cart.set_ram_bank(value)


class MBC5(Mapper):
    """MBC5: 9 bit ROM bank split over two registers."""

    maps_romx = True

    def write(self, address: int, value: int) -> None:
        cart = self.cartridge
        if address < 0x2000:
            super().write(address, value)
        elif address < 0x3000:
            cart.set_rom_bank(value | (cart.rom_bank & 0x100))
        elif address < 0x4000:
            cart.set_rom_bank((value << 8) | (cart.rom_bank & 0xFF))
        elif address < 0x6000:
            cart.set_ram_bank(value)


_MAPPERS = {
    0x00: (Mapper, False),
    0x08: (Mapper, True),
    0x09: (Mapper, True),
    0x01: (MBC1, False),
    0x02: (MBC1, True),
    0x03: (MBC1, True),
    0x05: (MBC2, False),
    0x06: (MBC2, False),
    0x0F: (MBC3, False),
    0x11: (MBC3, False),
    0x10: (MBC3, True),
    0x12: (MBC3, True),
    0x13: (MBC3, True),
    0x19: (MBC5, False),
    0x1C: (MBC5, False),
    0x1A: (MBC5, True),
    0x1B: (MBC5, True),
    0x1D: (MBC5, True),
    0x1E: (MBC5, True),
}

# Cartridge types whose RAM is battery backed and the size kept on save.
_BATTERY_TYPES = {0x09, 0x0D, 0x0F, 0x10, 0x13, 0x1B, 0x1E, 0xFE}


def create_mapper(cartridge: Cartridge) -> Mapper:
    """Build the bank controller that the cartridge's header asks for."""
    cart_type = cartridge.header.cart_type
    try:
        cls, ram_control = _MAPPERS[cart_type]
    except KeyError:
        raise CartridgeError(f"unknown cart type - {cart_type:X}!") from None
    return cls(cartridge, ram_control)


class Cartridge:
    """A loaded ROM image with its bank state and external RAM."""

    def __init__(self, data=None, sram_dir=None) -> None:
        self.data = bytes(data) if data is not None else None
        self.sram_dir = Path(sram_dir) if sram_dir is not None else Path(".")

        if self.data is None:
            self.header = RomHeader()
            self.title = "NO CARD"
            rom_size = ram_size = 0
        else:
            self.header = RomHeader.from_rom(self.data)
            rom_size = rom_size_from_code(self.header.rom_size_code)
            ram_size = ram_size_from_code(self.header.ram_size_code)
            self.title = self.header.title[:15]
        if self.header.cart_type in (5, 6):
            ram_size = 512

        self.rom_size = rom_size
        self.ram_size = ram_size
        self.rom_bank_count = (rom_size + ROM_BANK_SIZE - 1) >> 14
        self.rom_mask = _pow2_at_least(self.rom_bank_count) - 1
        self.rom_bank = 0
        self.set_rom_bank(1)

        self.ram_bank = 0
        if ram_size:
            self.ram_bank_count = (ram_size + RAM_BANK_SIZE - 1) >> 13
            self.ram_address_mask = 0x1FFF
            if self.ram_bank_count == 1:
                self.ram_address_mask = _pow2_at_least(ram_size) - 1
            self.ram_mask = _pow2_at_least(self.ram_bank_count) - 1
            self.ram = self._load_sram(ram_size)
        else:
            self.ram_bank_count = 0
            self.ram_address_mask = 0
            self.ram_mask = 0
            self.ram = bytearray()

        self.mapper = create_mapper(self)
        self.ram_access = self.mapper.initial_ram_access
        self.romx_mapped = self.mapper.maps_romx or rom_size > ROM_BANK_SIZE

    @classmethod
    def from_file(cls, path, sram_dir=None) -> Cartridge:
        try:
            data = Path(path).read_bytes()
        except OSError:
            raise CartridgeError(f"couldn't load game '{path}'") from None
        return cls(data, sram_dir)

    @classmethod
    def empty(cls) -> Cartridge:
        return cls(None)

    @property
    def sram_path(self) -> Path:
        return self.sram_dir / f"{self.header.title}.sav"

    def _load_sram(self, size: int) -> bytearray:
        try:
            with self.sram_path.open("rb") as handle:
                saved = handle.read(size)
        except OSError:
            saved = b""
        return bytearray(saved) + bytearray(random.randbytes(size - len(saved)))

    def _set_ram_enabled(self, enable: bool) -> None:
        if enable:
            self.ram_access = RamAccess.ENABLED
        elif self.ram_access is RamAccess.ENABLED:
            self.ram_access = RamAccess.DISABLED

    def set_rom_bank(self, bank: int) -> None:
        self.rom_bank = bank & self.rom_mask

    def set_ram_bank(self, bank: int) -> None:
        self.ram_bank = bank & self.ram_mask

    def read_rom0(self, address: int) -> int:
        if self.data is None:
            return 0xFF
        address &= 0x3FFF
        return self.data[address] if address < len(self.data) else 0xFF

    def read_romx(self, address: int) -> int:
        if not self.romx_mapped or self.data is None:
            raise MemoryTrapError(address)
        offset = self.rom_bank * ROM_BANK_SIZE + (address & 0x3FFF)
        return self.data[offset] if offset < len(self.data) else 0xFF

    def _ram_offset(self, address: int) -> int | None:
        offset = self.ram_bank * RAM_BANK_SIZE + (address & self.ram_address_mask)
        return offset if offset < len(self.ram) else None

    def read_ram(self, address: int) -> int:
        if self.ram_access is RamAccess.UNMAPPED:
            raise MemoryTrapError(address)
        if self.ram_access is RamAccess.DISABLED:
            return 0x00
        offset = self._ram_offset(address)
        return 0xFF if offset is None else self.ram[offset]

    def write_ram(self, address: int, value: int) -> None:
        if self.ram_access is not RamAccess.ENABLED:
            return
        offset = self._ram_offset(address)
        if offset is not None:
            self.ram[offset] = value & 0xFF

    def write_control(self, address: int, value: int) -> None:
        """Handle a CPU write into the ROM area (0x0000-0x7FFF)."""
        self.mapper.write(address & 0xFFFF, value & 0xFF)

    def battery_ram_size(self) -> int:
        """Number of RAM bytes kept in the save file for this cartridge type."""
        cart_type = self.header.cart_type
        size = self.ram_size
        if cart_type == 0x06:
            return min(size, 512)
        if cart_type in (0xFF, 0x03):
            return min(size, 8192)
        if cart_type in _BATTERY_TYPES:
            return size
        return 0

    def save_sram(self) -> Path | None:
        """Write battery-backed RAM to the save file; return its path if written."""
        size = self.battery_ram_size()
        if not size:
            return None
        path = self.sram_path
        try:
            path.write_bytes(bytes(self.ram[:size]))
        except OSError:
            return None
        return path