import pytest

from dmgemu.cartridge import Cartridge
from dmgemu.errors import MemoryTrapError
from dmgemu.memory import BOOT_ROM, Memory, Timer
from dmgemu.pad import Button, Joypad
from dmgemu.ppu import Ppu


class Clock:
    def __init__(self) -> None:
        self.now = 0

    def __call__(self) -> int:
        return self.now


def make_rom(cart_type=0, rom_code=0, size=0x8000):
    data = bytearray(size)
    for i in range(0x150, size):
        data[i] = (i * 7) & 0xFF
    data[0] = 0x42
    data[0x147] = cart_type
    data[0x148] = rom_code
    data[0x149] = 0
    return data


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def memory(clock):
    return Memory(Cartridge(make_rom()), clock=clock)


def test_boot_rom_visible_until_bank_register_set(memory):
    assert memory.read(0) == BOOT_ROM[0]
    assert memory.read(0xFF) == BOOT_ROM[0xFF]
    memory.write(0xFF50, 1)
    assert memory.read(0) == 0x42


def test_rom_beyond_boot_area(memory):
    rom = make_rom()
    assert memory.read(0x150) == rom[0x150]
    assert memory.read(0x4321) == rom[0x4321]


def test_empty_cartridge_reads():
    memory = Memory()
    assert memory.read(0x200) == 0xFF
    with pytest.raises(MemoryTrapError):
        memory.read(0x4000)
    with pytest.raises(MemoryTrapError):
        memory.read(0xA000)


def test_plain_rom_ignores_control_writes(memory):
    before = memory.read(0x4000)
    memory.write(0x2000, 5)
    assert memory.read(0x4000) == before


def test_mbc1_bank_switch_through_memory():
    data = make_rom(cart_type=1, rom_code=2, size=0x20000)
    for bank in range(8):
        data[bank * 0x4000] = bank
    memory = Memory(Cartridge(data))
    memory.write(0x2000, 3)
    assert memory.read(0x4000) == 3
    memory.write(0x2000, 0)
    assert memory.read(0x4000) == 1


def test_work_ram_echo(memory):
    memory.write(0xC123, 0x5A)
    assert memory.read(0xE123) == 0x5A
    memory.write(0xE200, 0x77)
    assert memory.read(0xC200) == 0x77


def test_vram_shared_with_ppu(memory):
    memory.write(0x8010, 0xAB)
    assert memory.read(0x8010) == 0xAB
    assert memory.ppu.vram[0x10] == 0xAB


def test_high_ram_and_oam_round_trip(memory):
    memory.write(0xFF80, 0x12)
    memory.write(0xFE05, 0x34)
    assert memory.read(0xFF80) == 0x12
    assert memory.read(0xFE05) == 0x34
    assert memory.ppu.hram[5] == 0x34


def test_read16_write16_little_endian(memory):
    memory.write16(0xC000, 0x1234)
    assert memory.read(0xC000) == 0x34
    assert memory.read(0xC001) == 0x12
    assert memory.read16(0xC000) == 0x1234


def test_divider_reset_and_count(memory, clock):
    clock.now = 1000
    memory.write(0xFF04, 0x99)
    assert memory.read(0xFF04) == 0
    clock.now += 64 * 5
    assert memory.read(0xFF04) == 5


def test_tima_counts_when_enabled(memory, clock):
    memory.write(0xFF07, 0x05)
    memory.write(0xFF05, 0x10)
    assert memory.read(0xFF05) == 0x10
    clock.now += 4 * 3
    assert memory.read(0xFF05) == 0x13


def test_tima_frozen_when_disabled(memory, clock):
    memory.write(0xFF05, 0x20)
    clock.now += 10000
    assert memory.read(0xFF05) == 0x20


@pytest.mark.parametrize("value", [0, 1, 0x7F, 0xFF])
@pytest.mark.parametrize("now", [0, 12345, 0xFFFFF000])
@pytest.mark.parametrize("shift", [2, 4, 6, 8])
def test_timer_reload_round_trip(value, now, shift):
    timer = Timer(shift=shift)
    timer.reload(value, now)
    assert timer.counter(now) == value


def test_timer_divider_reset_is_zero():
    timer = Timer()
    timer.reset_divider(987654)
    assert timer.divider(987654) == 0


def test_interrupt_hook_on_if_and_ie(memory):
    calls = []
    memory.interrupt_hook = lambda: calls.append(memory.hram[0x10F])
    memory.write(0xFF0F, 0x04)
    memory.write(0xFFFF, 0x1F)
    assert calls == [0x04, 0x04]
    assert memory.read(0xFFFF) == 0x1F


def test_lyc_hook_and_ly_reset(memory):
    seen = []
    memory.lyc_hook = lambda: seen.append(memory.read(0xFF45))
    memory.write(0xFF45, 0x30)
    assert seen == [0x30]
    memory.hram[0x144] = 0x50
    memory.write(0xFF44, 0x12)
    assert memory.read(0xFF44) == 0


def test_dma_copies_to_oam(memory):
    for i in range(0xA0):
        memory.write(0xC000 + i, i ^ 0x55)
    memory.write(0xFF46, 0xC0)
    assert bytes(memory.hram[:0xA0]) == bytes(i ^ 0x55 for i in range(0xA0))
    assert memory.read(0xFF46) == 0xC0


def test_palette_write_updates_ppu(memory):
    memory.write(0xFF47, 0xE4)
    assert memory.ppu.palette[:4] == [0, 1, 2, 3]
    memory.write(0xFF48, 0x1B)
    assert memory.ppu.palette[4:8] == [3, 2, 1, 0]
    assert memory.read(0xFF47) == 0xE4


def test_joypad_select_buttons(clock):
    pad = Joypad()
    memory = Memory(Cartridge(make_rom()), joypad=pad, clock=clock)
    pad.press(Button.A)
    memory.write(0xFF00, 0x10)
    assert memory.read(0xFF00) == (~Button.A.mask & 0xF)
    memory.write(0xFF00, 0x20)
    assert memory.read(0xFF00) == 0xF


def test_bank_register_reads_low_bit(memory):
    memory.write(0xFF50, 0x03)
    assert memory.read(0xFF50) == 1


def test_sound_register_round_trip(memory):
    memory.write(0xFF24, 0x55)
    assert memory.read(0xFF24) == 0x55
    assert memory.hram[0x124] == 0x55


def test_clear_ram_zeroes_and_keeps_sharing():
    ppu = Ppu()
    memory = Memory(Cartridge(make_rom()), ppu=ppu)
    memory.write(0xC010, 9)
    memory.write(0xFF80, 9)
    memory.clear_ram(False)
    assert memory.read(0xC010) == 0
    assert memory.read(0xFF80) == 0
    assert memory.hram is ppu.hram
    assert not any(memory.ram)


def test_clear_ram_randomize_keeps_size(memory):
    memory.clear_ram(True)
    assert len(memory.ram) == 0x2000
    assert len(memory.hram) == 0x200
    assert not any(memory.hram)