import pytest

from dmgemu.cartridge import Cartridge
from dmgemu.machine import LINE_CYCLES, R_STAT, GameBoy
from dmgemu.memory import R_IF, R_LY, R_LYC


def make_cartridge(directory, program=b"", handler=b""):
    data = bytearray(0x8000)
    data[0x40 : 0x40 + len(handler)] = handler
    data[0x100:0x103] = bytes([0xC3, 0x50, 0x01])  # JP 0x0150
    data[0x134:0x13B] = b"TESTROM"
    data[0x150 : 0x150 + len(program)] = program
    return Cartridge(bytes(data), sram_dir=directory)


LOOP = bytes([0x18, 0xFE])  # JR -2


@pytest.fixture
def gameboy(tmp_path):
    return GameBoy(make_cartridge(tmp_path, LOOP), None, 44100, True)


def test_skip_boot_rom_starts_at_cartridge_entry(gameboy):
    assert gameboy.cpu.pc == 0x100
    assert gameboy.memory.read(0xFF50) == 1


def test_frame_advances_clock_by_154_lines(gameboy):
    frame = gameboy.run_frame()
    assert len(frame) == 160 * 144
    assert gameboy.event_clock == 154 * LINE_CYCLES
    assert gameboy.memory.hram[R_LY] == 154


def test_frame_ends_in_vblank_with_interrupt_requested(gameboy):
    gameboy.run_frame()
    hram = gameboy.memory.hram
    assert hram[R_STAT] & 3 == 1
    assert hram[R_IF] & 1 == 1


def test_blank_lcd_gives_uniform_frame(gameboy):
    frame = gameboy.run_frame()
    assert len(set(frame)) == 1


def test_program_runs_during_frame(tmp_path):
    program = bytes([0x3E, 0x42, 0xEA, 0x00, 0xC0]) + LOOP
    gb = GameBoy(make_cartridge(tmp_path, program), None, 44100, True)
    gb.run_frame()
    assert gb.memory.read(0xC000) == 0x42


def test_vblank_interrupt_dispatches_handler(tmp_path):
    program = bytes([0x3E, 0x01, 0xE0, 0xFF, 0xFB]) + LOOP
    handler = bytes([0x3E, 0x99, 0xEA, 0x01, 0xC0]) + LOOP
    gb = GameBoy(make_cartridge(tmp_path, program, handler), None, 44100, True)
    gb.memory.write(0xC001, 0)
    gb.run_frame()
    assert gb.memory.read(0xC001) == 0x99
    assert gb.cpu.ime is False


def test_check_lyc_sets_coincidence_and_interrupt(gameboy):
    hram = gameboy.memory.hram
    hram[R_IF] = 0
    hram[R_LY] = 5
    hram[R_LYC] = 5
    hram[R_STAT] = 0x40
    gameboy.check_lyc()
    assert hram[R_STAT] == 0x44
    assert hram[R_IF] & 2 == 2


def test_check_lyc_clears_coincidence_on_mismatch(gameboy):
    hram = gameboy.memory.hram
    hram[R_LY] = 5
    hram[R_LYC] = 6
    hram[R_STAT] = 0x44
    gameboy.check_lyc()
    assert hram[R_STAT] == 0x40


def test_lyc_write_triggers_compare(gameboy):
    hram = gameboy.memory.hram
    hram[R_LY] = 7
    hram[R_STAT] = 0
    gameboy.memory.write(0xFF45, 7)
    assert hram[R_STAT] & 4 == 4


def test_clocks_wrap_after_large_value(gameboy):
    start = 4 << 28
    gameboy.cpu.clock = start
    gameboy.event_clock = start
    gameboy.apu.reset(start)
    gameboy.run_frame()
    assert gameboy.event_clock == start + 154 * LINE_CYCLES - (3 << 28)
    assert gameboy.cpu.clock < start


def test_register_dump_lists_registers(gameboy):
    dump = gameboy.register_dump()
    assert "PC=0100" in dump
    assert "WAVE:\nAC DD DA 48 " in dump
    assert "NR52=F1" in dump


def test_shutdown_without_battery_writes_nothing(tmp_path):
    gb = GameBoy(make_cartridge(tmp_path, LOOP), None, 44100, True)
    gb.shutdown()
    assert list(tmp_path.iterdir()) == []