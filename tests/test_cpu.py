import pytest

from dmgemu import alu
from dmgemu.cpu import BASE_CYCLES, Cpu
from dmgemu.errors import UndefinedOpcodeError
from dmgemu.memory import R_IE, R_IF, Memory

START = 0xC000
STACK = 0xDFFE
ALL_FLAGS = int(alu.Flag.Z | alu.Flag.N | alu.Flag.H | alu.Flag.C)


@pytest.fixture
def cpu():
    memory = Memory()
    core = Cpu(memory)
    memory.clock = lambda: core.clock
    core.pc = START
    core.sp = STACK
    return core


def load(cpu, code, at=START):
    for offset, byte in enumerate(code):
        cpu.memory.write(at + offset, byte)


def run(cpu, count):
    return [cpu.step() for _ in range(count)]


def test_boot_rom_first_instruction_sets_stack():
    memory = Memory()
    core = Cpu(memory)
    cycles = core.step()
    assert core.sp == 0xFFFE
    assert core.pc == 3
    assert cycles == BASE_CYCLES[0x31]


def test_load_immediate_and_register_copy(cpu):
    load(cpu, [0x06, 0x42, 0x48, 0x7E])  # LD B,n; LD C,B; LD A,(HL)
    cpu.hl = START + 1
    run(cpu, 3)
    assert cpu.b == 0x42
    assert cpu.c == 0x42
    assert cpu.a == 0x42


def test_push_pop_round_trip(cpu):
    load(cpu, [0x01, 0x34, 0x12, 0xC5, 0xD1])  # LD BC; PUSH BC; POP DE
    run(cpu, 3)
    assert cpu.de == 0x1234
    assert cpu.sp == STACK


def test_pop_af_masks_low_flag_bits(cpu):
    load(cpu, [0x01, 0xFF, 0x12, 0xC5, 0xF1])  # LD BC; PUSH BC; POP AF
    run(cpu, 3)
    assert cpu.a == 0x12
    assert cpu.f == ALL_FLAGS


def test_add_register_matches_alu(cpu):
    load(cpu, [0x3E, 0x3A, 0x06, 0xC6, 0x80])  # LD A; LD B; ADD A,B
    run(cpu, 3)
    assert (cpu.a, cpu.f) == alu.add(0x3A, 0xC6)


def test_compare_keeps_accumulator(cpu):
    load(cpu, [0x3E, 0x3A, 0x06, 0x50, 0xB8])  # LD A; LD B; CP B
    run(cpu, 3)
    assert cpu.a == 0x3A
    assert cpu.f == alu.sub(0x3A, 0x50)[1]


def test_daa_after_add_matches_alu(cpu):
    load(cpu, [0x3E, 0x45, 0x06, 0x38, 0x80, 0x27])
    run(cpu, 4)
    added = alu.add(0x45, 0x38)
    assert (cpu.a, cpu.f) == alu.daa(*added)


def test_call_then_return(cpu):
    load(cpu, [0xCD, 0x00, 0xC1])  # CALL 0xC100
    load(cpu, [0xC9], at=0xC100)  # RET
    cpu.step()
    assert cpu.pc == 0xC100
    assert cpu.memory.read16(cpu.sp) == START + 3
    cpu.step()
    assert cpu.pc == START + 3
    assert cpu.sp == STACK


def test_conditional_jump_timing(cpu):
    load(cpu, [0xAF, 0x20, 0x05, 0x28, 0x05])  # XOR A; JR NZ; JR Z
    cpu.step()
    not_taken = cpu.step()
    assert cpu.pc == START + 3
    taken = cpu.step()
    assert cpu.pc == START + 5 + 5
    assert taken == not_taken + 1


def test_ld_hl_increment_store(cpu):
    load(cpu, [0x21, 0x00, 0xC1, 0x3E, 0x77, 0x22])
    run(cpu, 3)
    assert cpu.memory.read(0xC100) == 0x77
    assert cpu.hl == 0xC100 + 1


def test_store_stack_pointer(cpu):
    load(cpu, [0x31, 0x34, 0x12, 0x08, 0x00, 0xC1])
    run(cpu, 2)
    assert cpu.memory.read16(0xC100) == 0x1234


def test_cb_set_res_bit_on_memory(cpu):
    load(cpu, [0x21, 0x00, 0xC1, 0xCB, 0xDE, 0xCB, 0x9E, 0xCB, 0x5E])
    cpu.memory.write(0xC100, 0)
    run(cpu, 2)
    assert cpu.memory.read(0xC100) & (1 << 3)
    cpu.step()
    assert cpu.memory.read(0xC100) == 0
    cpu.step()
    assert cpu.f & alu.Flag.Z


def test_swap_twice_restores_value(cpu):
    load(cpu, [0x3E, 0x3C, 0xCB, 0x37, 0xCB, 0x37])
    run(cpu, 2)
    assert cpu.a == alu.swap(0x3C)[0]
    cpu.step()
    assert cpu.a == 0x3C


def test_rst_pushes_return_address(cpu):
    load(cpu, [0xFF])
    cpu.step()
    assert cpu.pc == 0x38
    assert cpu.memory.read16(cpu.sp) == START + 1


def test_execute_until_runs_nops(cpu):
    cpu.execute_until(10)
    assert cpu.clock == 10
    assert cpu.pc == START + 10


def test_halt_consumes_remaining_time(cpu):
    load(cpu, [0x76])
    cpu.execute_until(100)
    assert cpu.halted
    assert cpu.clock == 100
    assert cpu.step() == 0
    cpu.execute_until(200)
    assert cpu.clock == 200
    assert cpu.pc == START + 1


def test_interrupt_dispatch(cpu):
    cpu.ime = True
    hram = cpu.memory.hram
    hram[R_IE] = 1
    hram[R_IF] = 1
    assert cpu.check_interrupts()
    assert cpu.pc == 0x40
    assert hram[R_IF] == 0
    assert not cpu.ime
    assert cpu.memory.read16(cpu.sp) == START


def test_interrupt_priority_takes_lowest_bit(cpu):
    cpu.ime = True
    hram = cpu.memory.hram
    hram[R_IE] = 0x1F
    hram[R_IF] = 0x14
    cpu.check_interrupts()
    assert cpu.pc == 0x50
    assert hram[R_IF] == 0x10


def test_disabled_interrupts_are_not_taken(cpu):
    hram = cpu.memory.hram
    hram[R_IE] = 1
    hram[R_IF] = 1
    assert not cpu.check_interrupts()
    assert cpu.pc == START
    assert hram[R_IF] == 1


def test_ei_takes_pending_interrupt(cpu):
    hram = cpu.memory.hram
    hram[R_IE] = 1
    hram[R_IF] = 1
    load(cpu, [0xFB])
    cpu.step()
    assert cpu.pc == 0x40
    assert cpu.memory.read16(cpu.sp) == START + 1


def test_writing_if_wakes_halted_cpu(cpu):
    load(cpu, [0x76])
    cpu.step()
    cpu.ime = True
    cpu.memory.hram[R_IE] = 1
    cpu.memory.write(0xFF0F, 1)
    assert not cpu.halted
    assert cpu.pc == 0x40


def test_undefined_opcode_raises(cpu):
    load(cpu, [0xD3])
    with pytest.raises(UndefinedOpcodeError) as info:
        cpu.step()
    assert info.value.opcode == 0xD3
    assert info.value.pc == START
    assert cpu.pc == START


def test_reset_clears_state(cpu):
    cpu.ime = True
    cpu.halted = True
    cpu.reset()
    assert cpu.pc == 0
    assert not cpu.halted
    assert not cpu.ime